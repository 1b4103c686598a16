"""
Scheduled acquisition pipeline.

One run fetches every source concurrently, publishes each result as a
canonical JSON artifact, and writes the hash manifest last, so a manifest
on disk always describes a completed run.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from ..config.loader import PipelineConfig
from ..core.health import perform_health_check
from ..core.integrity import MANIFEST_NAME, DataArtifact, IntegrityManifest, canonical_json
from .sources import (
    LitigationSummary,
    StockSnapshot,
    fetch_litigation_summary,
    fetch_sec_filings,
    fetch_stock_snapshot,
)

logger = logging.getLogger(__name__)

STOCK_ARTIFACT = "stock-data.json"
LITIGATION_ARTIFACT = "litigation-data.json"
SEC_ARTIFACT = "sec-filings.json"
HEALTH_ARTIFACT = "health-checks.json"
LOCK_NAME = ".pipeline.lock"


class PipelineError(Exception):
    """Raised when a run cannot publish its artifacts or manifest."""


class PipelineBusyError(PipelineError):
    """Raised when another run holds the output directory lock."""


@dataclass(frozen=True)
class PipelineResult:
    """Artifacts and manifest published by one run."""
    artifacts: List[DataArtifact]
    manifest: IntegrityManifest
    output_dir: Path

    @property
    def files_generated(self) -> int:
        return len(self.artifacts) + 1


class RunLock:
    """Exclusive lock file guarding an output directory for one run.

    A lock left behind by a crashed run must be removed by hand.
    """

    def __init__(self, path: Path):
        self.path = path

    def __enter__(self) -> "RunLock":
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            raise PipelineBusyError(f"Another run holds {self.path}")
        except OSError as e:
            raise PipelineError(f"Cannot create lock {self.path}: {e}") from e
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        return self

    def __exit__(self, *exc_info) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


def write_atomic(path: Path, content: bytes) -> None:
    """Replace a file's content in one step."""
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        tmp_path.write_bytes(content)
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


class AcquisitionPipeline:
    """Fetches external sources and publishes them with an integrity manifest."""

    def __init__(self, config: PipelineConfig, client: Optional[httpx.AsyncClient] = None):
        """Initialize the pipeline.

        Args:
            config: Pipeline configuration
            client: HTTP client to use; one is created per run if omitted
        """
        self.config = config
        self.client = client

    async def _isolated(self, name: str, task: Callable[[], Awaitable[Any]], fallback: Callable[[], Any]) -> Any:
        try:
            return await task()
        except Exception:
            logger.exception("Source %s failed, publishing empty value", name)
            return fallback()

    async def _health_checks(self, client: httpx.AsyncClient) -> List[Dict[str, Any]]:
        results = await asyncio.gather(*(
            perform_health_check(client, target.provider, target.endpoint, self.config.health_timeout)
            for target in self.config.health_checks
        ))
        return [result.to_dict() for result in results]

    async def _acquire(self, client: httpx.AsyncClient) -> List[Tuple[str, Any]]:
        config = self.config
        stock, litigation, filings, health = await asyncio.gather(
            self._isolated(
                STOCK_ARTIFACT,
                lambda: fetch_stock_snapshot(client, config),
                lambda: StockSnapshot.unavailable(config.ticker, "Stock source failed"),
            ),
            self._isolated(
                LITIGATION_ARTIFACT,
                lambda: fetch_litigation_summary(client, config),
                lambda: LitigationSummary(
                    query=config.litigation_query,
                    count=0,
                    date=datetime.now(timezone.utc).date().isoformat(),
                ),
            ),
            self._isolated(SEC_ARTIFACT, lambda: fetch_sec_filings(client, config), list),
            self._isolated(HEALTH_ARTIFACT, lambda: self._health_checks(client), list),
        )
        return [
            (STOCK_ARTIFACT, stock.to_dict()),
            (LITIGATION_ARTIFACT, litigation.to_dict()),
            (SEC_ARTIFACT, [filing.to_dict() for filing in filings]),
            (HEALTH_ARTIFACT, health),
        ]

    def _publish(self, output_dir: Path, name: str, payload: Any) -> DataArtifact:
        artifact = DataArtifact.from_payload(name, payload, int(datetime.now(timezone.utc).timestamp() * 1000))
        try:
            write_atomic(output_dir / name, artifact.content)
        except OSError as e:
            raise PipelineError(f"Cannot write artifact {name}: {e}") from e
        logger.info("Published %s (%d bytes, sha256 %s)", name, artifact.size, artifact.digest)
        return artifact

    async def run(self) -> PipelineResult:
        """Execute one acquisition run.

        Returns:
            PipelineResult describing what was published

        Raises:
            PipelineBusyError: If another run is in progress
            PipelineError: If the output directory, an artifact or the
                manifest cannot be written
        """
        output_dir = Path(self.config.output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PipelineError(f"Cannot create output directory {output_dir}: {e}") from e

        with RunLock(output_dir / LOCK_NAME):
            client = self.client or httpx.AsyncClient(timeout=self.config.request_timeout)
            try:
                payloads = await self._acquire(client)
            finally:
                if self.client is None:
                    await client.aclose()

            artifacts = [self._publish(output_dir, name, payload) for name, payload in payloads]

            manifest = IntegrityManifest.for_artifacts(artifacts)
            try:
                write_atomic(output_dir / MANIFEST_NAME, canonical_json(manifest.to_dict()))
            except OSError as e:
                raise PipelineError(f"Cannot write manifest: {e}") from e
            logger.info("Hash manifest saved with %d entries", len(manifest.hashes))

        return PipelineResult(artifacts=artifacts, manifest=manifest, output_dir=output_dir)


async def handle_scheduled_invocation(
    config: PipelineConfig,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    """Entry point for the twice-daily schedule.

    Returns:
        Dictionary with ``statusCode`` and a JSON ``body``
    """
    logger.info("Starting scheduled data fetch")
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        result = await AcquisitionPipeline(config, client).run()
    except PipelineBusyError as e:
        logger.warning("Scheduled data fetch skipped: %s", e)
        return {
            "statusCode": 409,
            "body": json.dumps({"message": "Data fetch already running", "error": str(e), "timestamp": timestamp}),
        }
    except PipelineError as e:
        logger.error("Scheduled data fetch failed: %s", e)
        return {
            "statusCode": 500,
            "body": json.dumps({"message": "Data fetch failed", "error": str(e), "timestamp": timestamp}),
        }

    return {
        "statusCode": 200,
        "body": json.dumps({
            "message": "Data fetch completed successfully",
            "filesGenerated": result.files_generated,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
    }
