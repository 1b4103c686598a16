"""
SDK for Provider Observatory.

Provides instrumented HTTP transports and client factories.
"""

from .openai_client import create_async_openai_client, create_openai_client
from .transport import (
    InstrumentedAsyncTransport,
    InstrumentedTransport,
    create_instrumented_client,
    instrument_transport,
)

__all__ = [
    "InstrumentedAsyncTransport",
    "InstrumentedTransport",
    "create_async_openai_client",
    "create_instrumented_client",
    "create_openai_client",
    "instrument_transport",
]
