"""
Data models for storage layer.

Defines the records persisted in the key-value store.
"""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class UsageRecord:
    """Immutable observation of a single tracked provider call.

    Append-only records that form the local usage ledger.
    Once written, these records must never be modified.
    """
    id: str
    timestamp: int  # epoch milliseconds
    provider: str
    model: str
    request_tokens: int
    response_tokens: int
    total_tokens: int
    endpoint: str
    response_time: int  # milliseconds

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the stored field names."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "provider": self.provider,
            "model": self.model,
            "requestTokens": self.request_tokens,
            "responseTokens": self.response_tokens,
            "totalTokens": self.total_tokens,
            "endpoint": self.endpoint,
            "responseTime": self.response_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageRecord":
        return cls(
            id=data["id"],
            timestamp=int(data["timestamp"]),
            provider=data["provider"],
            model=data.get("model") or "unknown",
            request_tokens=int(data.get("requestTokens") or 0),
            response_tokens=int(data.get("responseTokens") or 0),
            total_tokens=int(data.get("totalTokens") or 0),
            endpoint=data.get("endpoint", ""),
            response_time=int(data.get("responseTime") or 0),
        )


@dataclass(frozen=True)
class ProviderConfig:
    """User-supplied provider settings kept alongside the ledger."""
    name: str
    api_base: str
    models_endpoint: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "apiBase": self.api_base,
            "modelsEndpoint": self.models_endpoint,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderConfig":
        return cls(
            name=data["name"],
            api_base=data["apiBase"],
            models_endpoint=data["modelsEndpoint"],
        )
