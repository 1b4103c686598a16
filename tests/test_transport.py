"""
Unit tests for the instrumented transports.

Tests that usage is recorded for tracked providers without changing the
responses or errors seen by the caller.
"""

import gzip
import json
import re
from unittest.mock import Mock

import httpx
import pytest

from provider_observatory.sdk.transport import (
    InstrumentedAsyncTransport,
    InstrumentedTransport,
    build_usage_record,
    create_instrumented_client,
    generate_record_id,
    instrument_transport,
)
from provider_observatory.core.providers import Provider
from provider_observatory.storage.db import MemoryKeyValueStore
from provider_observatory.storage.repository import UsageLedger

OPENAI_URL = "https://api.openai.com/v1/chat/completions"

COMPLETION = {
    "id": "chatcmpl-123",
    "model": "gpt-4o",
    "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hi"}}],
    "usage": {"prompt_tokens": 12, "completion_tokens": 30, "total_tokens": 42},
}


def json_handler(payload, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload)
    return handler


class TestAsyncTransport:
    """Test InstrumentedAsyncTransport."""

    def setup_method(self):
        self.ledger = UsageLedger(MemoryKeyValueStore())

    def _client(self, handler):
        transport = InstrumentedAsyncTransport(self.ledger, httpx.MockTransport(handler))
        return transport, httpx.AsyncClient(transport=transport)

    @pytest.mark.asyncio
    async def test_records_usage_and_keeps_body_readable(self):
        """One record per tracked call; the caller can still read the body."""
        transport, client = self._client(json_handler(COMPLETION))
        async with client:
            response = await client.post(OPENAI_URL, json={"model": "gpt-4o"})
            assert response.json() == COMPLETION
            await transport.drain()

        records = self.ledger.list_all()
        assert len(records) == 1
        record = records[0]
        assert record.provider == "OpenAI"
        assert record.model == "gpt-4o"
        assert record.request_tokens == 12
        assert record.response_tokens == 30
        assert record.total_tokens == 42
        assert record.endpoint == OPENAI_URL
        assert record.response_time >= 0

    @pytest.mark.asyncio
    async def test_streamed_body_remains_readable(self):
        """Streaming callers receive the full body."""
        transport, client = self._client(json_handler(COMPLETION))
        async with client:
            async with client.stream("POST", OPENAI_URL) as response:
                body = await response.aread()
            await transport.drain()

        assert json.loads(body) == COMPLETION
        assert len(self.ledger.list_all()) == 1

    @pytest.mark.asyncio
    async def test_gzip_body_is_decoded_for_both_parties(self):
        """Content-encoded bodies are copied raw and decoded independently."""
        raw = gzip.compress(json.dumps(COMPLETION).encode())

        def handler(request):
            return httpx.Response(200, content=raw, headers={"Content-Encoding": "gzip"})

        transport, client = self._client(handler)
        async with client:
            response = await client.get(OPENAI_URL)
            assert response.json() == COMPLETION
            await transport.drain()

        assert self.ledger.list_all()[0].total_tokens == 42

    @pytest.mark.asyncio
    async def test_preloaded_response_is_copied_decoded(self):
        """A response the wrapped transport already read still reaches the caller."""
        raw = gzip.compress(json.dumps(COMPLETION).encode())
        preloaded = []

        def handler(request):
            response = httpx.Response(200, content=raw, headers={"Content-Encoding": "gzip"})
            preloaded.append(response.is_stream_consumed)
            return response

        transport, client = self._client(handler)
        async with client:
            response = await client.post(OPENAI_URL)
            assert response.json() == COMPLETION
            assert "content-encoding" not in response.headers
            await transport.drain()

        assert preloaded == [True]
        assert self.ledger.list_all()[0].total_tokens == 42

    @pytest.mark.asyncio
    async def test_unread_stream_is_copied_raw(self):
        """An unread streaming response is captured from its raw bytes."""
        raw = gzip.compress(json.dumps(COMPLETION).encode())

        def handler(request):
            return httpx.Response(200, headers={"Content-Encoding": "gzip"}, stream=httpx.ByteStream(raw))

        transport, client = self._client(handler)
        async with client:
            response = await client.post(OPENAI_URL)
            assert response.headers["content-encoding"] == "gzip"
            assert response.json() == COMPLETION
            await transport.drain()

        assert len(self.ledger.list_all()) == 1

    @pytest.mark.asyncio
    async def test_no_usage_section_records_nothing(self):
        """A parseable body without usage yields zero records."""
        payload = {"object": "list", "data": [{"id": "gpt-4o"}]}
        transport, client = self._client(json_handler(payload))
        async with client:
            response = await client.get("https://api.openai.com/v1/models")
            assert response.json() == payload
            await transport.drain()

        assert self.ledger.list_all() == []

    @pytest.mark.asyncio
    async def test_non_json_body_records_nothing(self):
        """A non-JSON body is the expected no-data branch."""
        def handler(request):
            return httpx.Response(200, text="<html>ok</html>")

        transport, client = self._client(handler)
        async with client:
            response = await client.get(OPENAI_URL)
            assert response.text == "<html>ok</html>"
            await transport.drain()

        assert self.ledger.list_all() == []

    @pytest.mark.asyncio
    async def test_untracked_url_records_nothing(self):
        """Calls to untracked hosts pass straight through."""
        transport, client = self._client(json_handler(COMPLETION))
        async with client:
            response = await client.get("https://example.com/v1/chat")
            assert response.json() == COMPLETION
            await transport.drain()

        assert self.ledger.list_all() == []

    @pytest.mark.asyncio
    async def test_error_status_records_nothing(self):
        """Non-2xx responses are returned unchanged without a record."""
        error_body = {"error": {"message": "rate limited"}, "usage": {"total_tokens": 5}}
        transport, client = self._client(json_handler(error_body, status_code=429))
        async with client:
            response = await client.post(OPENAI_URL)
            assert response.status_code == 429
            assert response.json() == error_body
            await transport.drain()

        assert self.ledger.list_all() == []

    @pytest.mark.asyncio
    async def test_missing_fields_use_defaults(self):
        """Model defaults to unknown and token counts to 0."""
        transport, client = self._client(json_handler({"usage": {}}))
        async with client:
            await client.post("https://api.anthropic.com/v1/messages")
            await transport.drain()

        record = self.ledger.list_all()[0]
        assert record.provider == "Anthropic"
        assert record.model == "unknown"
        assert (record.request_tokens, record.response_tokens, record.total_tokens) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_total_tokens_is_not_recomputed(self):
        """total_tokens is taken as reported."""
        payload = {"usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 7}}
        transport, client = self._client(json_handler(payload))
        async with client:
            await client.post(OPENAI_URL)
            await transport.drain()

        assert self.ledger.list_all()[0].total_tokens == 7

    @pytest.mark.asyncio
    async def test_transport_error_propagates_unchanged(self):
        """The original exception reaches the caller and nothing is recorded."""
        error = httpx.ConnectError("connection refused")

        def handler(request):
            raise error

        transport, client = self._client(handler)
        async with client:
            with pytest.raises(httpx.ConnectError) as exc_info:
                await client.post(OPENAI_URL)
            await transport.drain()

        assert exc_info.value is error
        assert self.ledger.list_all() == []

    @pytest.mark.asyncio
    async def test_ledger_failure_is_swallowed(self):
        """A failing ledger never affects the tapped call."""
        ledger = Mock()
        ledger.append.side_effect = RuntimeError("disk full")
        transport = InstrumentedAsyncTransport(ledger, httpx.MockTransport(json_handler(COMPLETION)))

        async with httpx.AsyncClient(transport=transport) as client:
            response = await client.post(OPENAI_URL)
            await transport.drain()

        assert response.json() == COMPLETION
        ledger.append.assert_called_once()

    @pytest.mark.asyncio
    async def test_concurrent_calls_each_recorded_once(self):
        """Many in-flight calls produce one record each."""
        import asyncio

        transport, client = self._client(json_handler(COMPLETION))
        async with client:
            await asyncio.gather(*(client.post(OPENAI_URL) for _ in range(10)))
            await transport.drain()

        records = self.ledger.list_all()
        assert len(records) == 10
        assert len({r.id for r in records}) == 10

    @pytest.mark.asyncio
    async def test_aclose_drains_pending_records(self):
        """Closing the client waits for background writes."""
        transport, client = self._client(json_handler(COMPLETION))
        async with client:
            await client.post(OPENAI_URL)

        assert len(self.ledger.list_all()) == 1


class TestSingleInstall:
    """Test that wrapping never double counts."""

    def setup_method(self):
        self.ledger = UsageLedger(MemoryKeyValueStore())

    def test_instrument_transport_is_idempotent(self):
        """Instrumenting an instrumented transport returns it unchanged."""
        first = instrument_transport(self.ledger, httpx.MockTransport(json_handler(COMPLETION)))
        assert instrument_transport(self.ledger, first) is first

    @pytest.mark.asyncio
    async def test_rewrapping_counts_each_call_once(self):
        """Constructing around an instrumented transport unwraps it."""
        inner = InstrumentedAsyncTransport(self.ledger, httpx.MockTransport(json_handler(COMPLETION)))
        outer = InstrumentedAsyncTransport(self.ledger, inner)
        assert outer.transport is inner.transport

        async with httpx.AsyncClient(transport=outer) as client:
            await client.post(OPENAI_URL)

        assert len(self.ledger.list_all()) == 1

    @pytest.mark.asyncio
    async def test_create_instrumented_client(self):
        """The client factory installs the instrumented transport."""
        client = create_instrumented_client(self.ledger, httpx.MockTransport(json_handler(COMPLETION)))
        async with client:
            await client.post(OPENAI_URL)
        assert len(self.ledger.list_all()) == 1


class TestSyncTransport:
    """Test InstrumentedTransport."""

    def setup_method(self):
        self.ledger = UsageLedger(MemoryKeyValueStore())

    def test_records_usage_and_keeps_body_readable(self):
        transport = InstrumentedTransport(self.ledger, httpx.MockTransport(json_handler(COMPLETION)))
        with httpx.Client(transport=transport) as client:
            response = client.post(OPENAI_URL)

        assert response.json() == COMPLETION
        records = self.ledger.list_all()
        assert len(records) == 1
        assert records[0].total_tokens == 42

    def test_preloaded_gzip_response(self):
        raw = gzip.compress(json.dumps(COMPLETION).encode())

        def handler(request):
            return httpx.Response(200, content=raw, headers={"Content-Encoding": "gzip"})

        transport = InstrumentedTransport(self.ledger, httpx.MockTransport(handler))
        with httpx.Client(transport=transport) as client:
            response = client.post(OPENAI_URL)

        assert response.json() == COMPLETION
        assert self.ledger.list_all()[0].total_tokens == 42

    def test_unread_stream_is_copied_raw(self):
        def handler(request):
            return httpx.Response(200, stream=httpx.ByteStream(json.dumps(COMPLETION).encode()))

        transport = InstrumentedTransport(self.ledger, httpx.MockTransport(handler))
        with httpx.Client(transport=transport) as client:
            response = client.post(OPENAI_URL)

        assert response.json() == COMPLETION
        assert len(self.ledger.list_all()) == 1

    def test_error_propagates(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out")

        transport = InstrumentedTransport(self.ledger, httpx.MockTransport(handler))
        with httpx.Client(transport=transport) as client:
            with pytest.raises(httpx.ReadTimeout):
                client.post(OPENAI_URL)
        assert self.ledger.list_all() == []

    def test_ledger_failure_is_swallowed(self):
        ledger = Mock()
        ledger.append.side_effect = OSError("read-only")
        transport = InstrumentedTransport(ledger, httpx.MockTransport(json_handler(COMPLETION)))
        with httpx.Client(transport=transport) as client:
            response = client.post(OPENAI_URL)
        assert response.json() == COMPLETION

    def test_rewrapping_unwraps(self):
        inner = InstrumentedTransport(self.ledger, httpx.MockTransport(json_handler(COMPLETION)))
        outer = InstrumentedTransport(self.ledger, inner)
        with httpx.Client(transport=outer) as client:
            client.post(OPENAI_URL)
        assert len(self.ledger.list_all()) == 1


class TestRecordHelpers:
    """Test id generation and record building."""

    def test_record_id_format(self):
        """Ids are epoch milliseconds plus a 7 character suffix."""
        assert re.fullmatch(r"\d{13}-[0-9a-z]{7}", generate_record_id())

    def test_record_ids_are_unique(self):
        ids = {generate_record_id() for _ in range(1000)}
        assert len(ids) == 1000

    def test_non_numeric_tokens_default_to_zero(self):
        response = httpx.Response(200, json={"model": "m", "usage": {"prompt_tokens": "12", "total_tokens": 5}})
        record = build_usage_record(Provider.DEEPSEEK, "https://api.deepseek.com/chat", response, 10)
        assert record.request_tokens == 0
        assert record.total_tokens == 5
        assert record.provider == "DeepSeek"

    def test_non_object_usage_records_nothing(self):
        response = httpx.Response(200, json={"usage": [1, 2]})
        assert build_usage_record(Provider.OPENAI, OPENAI_URL, response, 1) is None

    def test_json_array_body_records_nothing(self):
        response = httpx.Response(200, json=[{"usage": {}}])
        assert build_usage_record(Provider.OPENAI, OPENAI_URL, response, 1) is None
