"""
Instrumented OpenAI clients.

Builds OpenAI SDK clients whose HTTP traffic passes through the usage
transports, so usage is recorded without modifying behavior.
"""

from typing import Any, Optional

import httpx
from openai import AsyncOpenAI, OpenAI

from ..storage.repository import UsageLedger
from .transport import InstrumentedTransport, instrument_transport


def create_openai_client(
    ledger: UsageLedger,
    transport: Optional[httpx.BaseTransport] = None,
    **kwargs: Any
) -> OpenAI:
    """Create a synchronous OpenAI client recording usage into the ledger.

    Args:
        ledger: Ledger receiving usage records (required)
        transport: Real transport to delegate to (optional)
        **kwargs: Additional OpenAI client parameters

    Returns:
        OpenAI client whose responses are returned unchanged

    Raises:
        ValueError: If ledger is missing
    """
    if ledger is None:
        raise ValueError("ledger is required")
    http_client = httpx.Client(transport=InstrumentedTransport(ledger, transport))
    return OpenAI(http_client=http_client, **kwargs)


def create_async_openai_client(
    ledger: UsageLedger,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs: Any
) -> AsyncOpenAI:
    """Create an AsyncOpenAI client recording usage into the ledger.

    Usage records are written in background tasks; close the client to
    wait for them.

    Raises:
        ValueError: If ledger is missing
    """
    if ledger is None:
        raise ValueError("ledger is required")
    http_client = httpx.AsyncClient(transport=instrument_transport(ledger, transport))
    return AsyncOpenAI(http_client=http_client, **kwargs)
