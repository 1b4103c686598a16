"""
Instrumented HTTP transports.

Records usage records for tracked provider calls without modifying
behavior. The transports wrap a real httpx transport and are handed to
clients explicitly, so nothing global is patched.
"""

import asyncio
import logging
import secrets
import string
import time
from typing import Any, Optional, Set, Tuple

import httpx

from ..core.providers import Provider, classify_provider
from ..storage.models import UsageRecord
from ..storage.repository import UsageLedger

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_record_id() -> str:
    """Return a session-unique id: epoch milliseconds plus a random suffix."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"{int(time.time() * 1000)}-{suffix}"


def _as_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(int(value), 0)


def _copy_response(
    response: httpx.Response,
    body: bytes,
    headers: httpx.Headers,
    request: httpx.Request,
) -> httpx.Response:
    return httpx.Response(
        status_code=response.status_code,
        headers=headers,
        stream=httpx.ByteStream(body),
        request=request,
        extensions=response.extensions,
    )


def _preloaded_body(response: httpx.Response) -> Optional[Tuple[bytes, httpx.Headers]]:
    """Return the decoded body of a response the wrapped transport already read.

    Its raw bytes are gone, so the encoding and length headers no longer
    describe the body and are dropped. Returns None when the stream was
    consumed without being read.
    """
    try:
        body = response.content
    except httpx.ResponseNotRead:
        return None
    headers = response.headers.copy()
    headers.pop("content-encoding", None)
    headers.pop("content-length", None)
    return body, headers


def build_usage_record(
    provider: Provider,
    url: str,
    response: httpx.Response,
    elapsed_ms: int,
) -> Optional[UsageRecord]:
    """Derive a usage record from a provider response.

    The response body must already be readable. A body that is not JSON,
    or that has no ``usage`` object, yields no record.

    Args:
        provider: Classified provider of the call
        url: Full request URL
        response: Independent copy of the provider response
        elapsed_ms: Milliseconds from request start to body capture

    Returns:
        UsageRecord, or None when the body carries no usage data
    """
    try:
        response.read()
        payload = response.json()
    except (ValueError, httpx.DecodingError):
        logger.debug("Response from %s is not JSON, skipping", url)
        return None

    if not isinstance(payload, dict):
        return None
    usage = payload.get("usage")
    if not isinstance(usage, dict):
        return None

    model = payload.get("model")
    return UsageRecord(
        id=generate_record_id(),
        timestamp=int(time.time() * 1000),
        provider=provider.value,
        model=model if isinstance(model, str) and model else "unknown",
        request_tokens=_as_count(usage.get("prompt_tokens")),
        response_tokens=_as_count(usage.get("completion_tokens")),
        total_tokens=_as_count(usage.get("total_tokens")),
        endpoint=url,
        response_time=max(elapsed_ms, 0),
    )


class InstrumentedAsyncTransport(httpx.AsyncBaseTransport):
    """Async transport that taps tracked provider responses into a ledger.

    The wrapped transport's result is returned unchanged and its errors
    propagate unchanged. For successful tracked calls the body is captured
    once and split into two independent responses: one for the caller and
    one parsed in a background task. Ledger failures are logged and never
    reach the caller.
    """

    def __init__(self, ledger: UsageLedger, transport: Optional[httpx.AsyncBaseTransport] = None):
        """Initialize the instrumented transport.

        Args:
            ledger: Ledger receiving usage records
            transport: Real transport to delegate to (defaults to
                httpx.AsyncHTTPTransport). An instrumented transport is
                unwrapped so calls are never counted twice.
        """
        if isinstance(transport, InstrumentedAsyncTransport):
            transport = transport.transport
        self.ledger = ledger
        self.transport = transport or httpx.AsyncHTTPTransport()
        self._pending: Set[asyncio.Task] = set()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        start = time.monotonic()
        url = str(request.url)
        provider = classify_provider(url)

        response = await self.transport.handle_async_request(request)

        if provider is None or not response.is_success:
            return response

        if response.is_stream_consumed:
            captured = _preloaded_body(response)
            if captured is None:
                return response
            body, headers = captured
        else:
            try:
                body = b"".join([chunk async for chunk in response.aiter_raw()])
            finally:
                await response.aclose()
            headers = response.headers
        elapsed_ms = int((time.monotonic() - start) * 1000)

        try:
            tap_copy = _copy_response(response, body, headers, request)
            task = asyncio.create_task(self._record(provider, url, tap_copy, elapsed_ms))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        except Exception:
            logger.warning("Failed to start usage tap for %s", url, exc_info=True)

        return _copy_response(response, body, headers, request)

    async def _record(self, provider: Provider, url: str, response: httpx.Response, elapsed_ms: int) -> None:
        try:
            record = build_usage_record(provider, url, response, elapsed_ms)
            if record is not None:
                await asyncio.to_thread(self.ledger.append, record)
        except Exception:
            logger.warning("Failed to persist usage record for %s", url, exc_info=True)

    async def drain(self) -> None:
        """Wait for in-flight usage taps to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self.transport.aclose()


class InstrumentedTransport(httpx.BaseTransport):
    """Synchronous counterpart of InstrumentedAsyncTransport.

    The usage record is persisted inline before the response is returned.
    """

    def __init__(self, ledger: UsageLedger, transport: Optional[httpx.BaseTransport] = None):
        if isinstance(transport, InstrumentedTransport):
            transport = transport.transport
        self.ledger = ledger
        self.transport = transport or httpx.HTTPTransport()

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        start = time.monotonic()
        url = str(request.url)
        provider = classify_provider(url)

        response = self.transport.handle_request(request)

        if provider is None or not response.is_success:
            return response

        if response.is_stream_consumed:
            captured = _preloaded_body(response)
            if captured is None:
                return response
            body, headers = captured
        else:
            try:
                body = b"".join(response.iter_raw())
            finally:
                response.close()
            headers = response.headers
        elapsed_ms = int((time.monotonic() - start) * 1000)

        try:
            record = build_usage_record(provider, url, _copy_response(response, body, headers, request), elapsed_ms)
            if record is not None:
                self.ledger.append(record)
        except Exception:
            logger.warning("Failed to persist usage record for %s", url, exc_info=True)

        return _copy_response(response, body, headers, request)

    def close(self) -> None:
        self.transport.close()


def instrument_transport(ledger: UsageLedger, transport: Optional[httpx.AsyncBaseTransport] = None) -> InstrumentedAsyncTransport:
    """Wrap a transport once.

    Returns an already-instrumented transport unchanged.
    """
    if isinstance(transport, InstrumentedAsyncTransport):
        return transport
    return InstrumentedAsyncTransport(ledger, transport)


def create_instrumented_client(
    ledger: UsageLedger,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **client_kwargs: Any,
) -> httpx.AsyncClient:
    """Create an httpx.AsyncClient whose traffic is recorded in the ledger."""
    return httpx.AsyncClient(transport=instrument_transport(ledger, transport), **client_kwargs)
