"""Intercept log schema enforcement."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator

SOURCES = ["network", "cache", "stale-cache", "fallback", "synthetic", "passthrough"]

INTERCEPT_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": [
        "request_id",
        "received_at",
        "method",
        "url",
        "rule",
        "partition",
        "strategy",
        "source",
        "status",
        "latency_ms",
    ],
    "properties": {
        "request_id": {"type": "string"},
        "received_at": {"type": "string", "format": "date-time"},
        "method": {"type": "string"},
        "url": {"type": "string"},
        "rule": {
            "type": "string",
            "enum": ["bypass", "excluded", "image", "static", "api", "document", "default", "inactive", "error"],
        },
        "partition": {"type": ["string", "null"]},
        "strategy": {"type": ["string", "null"], "enum": ["cache-first", "network-first", None]},
        "source": {"type": "string", "enum": SOURCES},
        "status": {"type": "integer", "minimum": 100, "maximum": 599},
        "latency_ms": {"type": "number", "minimum": 0},
        "queued_mutation": {"type": ["string", "null"]},
        "generation": {"type": "string"},
    },
}

_validator = Draft7Validator(INTERCEPT_SCHEMA)


def validate_record(payload: Dict[str, Any]) -> None:
    errors = sorted(_validator.iter_errors(payload), key=lambda e: e.path)
    if errors:
        messages = ", ".join(error.message for error in errors)
        raise ValueError(f"intercept log validation failed: {messages}")


@dataclass
class InterceptRecord:
    request_id: str
    method: str
    url: str
    rule: str
    partition: Optional[str]
    strategy: Optional[str]
    source: str
    status: int
    latency_ms: float
    generation: str = ""
    queued_mutation: Optional[str] = None
    received_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "request_id": self.request_id,
            "received_at": self.received_at,
            "method": self.method,
            "url": self.url,
            "rule": self.rule,
            "partition": self.partition,
            "strategy": self.strategy,
            "source": self.source,
            "status": self.status,
            "latency_ms": self.latency_ms,
            "queued_mutation": self.queued_mutation,
            "generation": self.generation,
        }
        validate_record(payload)
        return payload
