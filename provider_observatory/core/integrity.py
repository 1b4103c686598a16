"""
Integrity digests and manifest verification.

Every artifact is published in one canonical byte form, and the manifest
records the SHA-256 digest of exactly those bytes. Verifying a download is
recomputing the digest and comparing it with the manifest entry.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

MANIFEST_NAME = "hash-manifest.json"


def canonical_json(value: Any) -> bytes:
    """Serialize a JSON value to its canonical UTF-8 byte form.

    Keys are sorted and no whitespace is emitted, so re-serializing a parsed
    artifact reproduces the published bytes.
    """
    return json.dumps(
        value, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def compute_digest(content: Union[bytes, Any]) -> str:
    """SHA-256 hex digest of canonical bytes.

    Args:
        content: Published bytes, or a JSON value to canonicalize first

    Returns:
        Lowercase hex digest
    """
    if not isinstance(content, bytes):
        content = canonical_json(content)
    return hashlib.sha256(content).hexdigest()


@dataclass(frozen=True)
class DataArtifact:
    """One externally sourced payload captured by a pipeline run."""
    name: str
    payload: Any
    content: bytes
    digest: str
    size: int
    timestamp: int  # epoch milliseconds

    @classmethod
    def from_payload(cls, name: str, payload: Any, timestamp: int) -> "DataArtifact":
        content = canonical_json(payload)
        return cls(
            name=name,
            payload=payload,
            content=content,
            digest=compute_digest(content),
            size=len(content),
            timestamp=timestamp,
        )


@dataclass(frozen=True)
class ArtifactDigest:
    """Manifest entry for one artifact."""
    name: str
    hash: str
    timestamp: int
    size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "hash": self.hash,
            "timestamp": self.timestamp,
            "size": self.size,
        }


@dataclass
class IntegrityManifest:
    """Ordered digest summary of the artifacts of one pipeline run."""
    generated: str
    hashes: List[ArtifactDigest] = field(default_factory=list)

    @classmethod
    def for_artifacts(cls, artifacts: List[DataArtifact], generated: Optional[datetime] = None) -> "IntegrityManifest":
        generated = generated or datetime.now(timezone.utc)
        return cls(
            generated=generated.isoformat(),
            hashes=[
                ArtifactDigest(a.name, a.digest, a.timestamp, a.size)
                for a in artifacts
            ],
        )

    def get(self, name: str) -> Optional[ArtifactDigest]:
        for entry in self.hashes:
            if entry.name == name:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated": self.generated,
            "hashes": [entry.to_dict() for entry in self.hashes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntegrityManifest":
        """Parse a manifest.

        Raises:
            ValueError: If the manifest is malformed
        """
        if not isinstance(data, dict) or not isinstance(data.get("hashes"), list):
            raise ValueError("Manifest must be an object with a 'hashes' list")
        try:
            hashes = [
                ArtifactDigest(
                    name=str(item["name"]),
                    hash=str(item["hash"]),
                    timestamp=int(item["timestamp"]),
                    size=int(item["size"]),
                )
                for item in data["hashes"]
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed manifest entry: {e}")
        return cls(generated=str(data.get("generated", "")), hashes=hashes)


def load_manifest(path: Union[str, Path]) -> IntegrityManifest:
    """Load a published manifest file.

    Raises:
        FileNotFoundError: If the manifest doesn't exist
        ValueError: If the manifest is not valid JSON or malformed
    """
    with open(path, "r", encoding="utf-8") as f:
        return IntegrityManifest.from_dict(json.load(f))


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of checking one artifact against the manifest."""
    name: str
    verified: bool
    expected: Optional[str]
    actual: Optional[str]
    reason: Optional[str] = None


def verify_artifact(name: str, content: bytes, manifest: IntegrityManifest) -> VerificationResult:
    """Check downloaded artifact bytes against the manifest.

    Args:
        name: Artifact name as recorded in the manifest
        content: Downloaded bytes
        manifest: Manifest of the run that published the artifact

    Returns:
        VerificationResult; hex digests compare case-insensitively
    """
    actual = compute_digest(content)
    entry = manifest.get(name)
    if entry is None:
        return VerificationResult(name, False, None, actual, "not listed in manifest")
    if entry.hash.lower() != actual:
        return VerificationResult(name, False, entry.hash, actual, "digest mismatch")
    return VerificationResult(name, True, entry.hash, actual)


def verify_directory(directory: Union[str, Path]) -> List[VerificationResult]:
    """Verify every manifest entry against the files in a directory.

    Raises:
        FileNotFoundError: If the directory holds no manifest
        ValueError: If the manifest is malformed
    """
    directory = Path(directory)
    manifest = load_manifest(directory / MANIFEST_NAME)
    results = []
    for entry in manifest.hashes:
        if Path(entry.name).name != entry.name:
            results.append(VerificationResult(entry.name, False, entry.hash, None, "invalid artifact name"))
            continue
        path = directory / entry.name
        if not path.is_file():
            results.append(VerificationResult(entry.name, False, entry.hash, None, "file missing"))
            continue
        results.append(verify_artifact(entry.name, path.read_bytes(), manifest))
    return results
