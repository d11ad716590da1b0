"""Control channel: version and cache-management commands from the host app."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping

from jsonschema import Draft7Validator

if TYPE_CHECKING:
    from .proxy import OfflineProxy

logger = logging.getLogger(__name__)

# Message types used by the original page-side helper
ALIASES = {
    "SKIP_WAITING": "activate-new-version",
    "CACHE_URLS": "pre-cache",
    "CLEAR_CACHE": "purge-all",
}

COMMAND_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["type"],
    "properties": {
        "type": {
            "type": "string",
            "enum": [
                "activate-new-version", "pre-cache", "purge-all", "purge-matching", "sync", "status",
            ],
        },
        "urls": {"type": "array", "items": {"type": "string"}},
        "pattern": {"type": "string", "minLength": 1},
        "tag": {"type": "string"},
    },
    "allOf": [
        {
            "if": {"properties": {"type": {"const": "pre-cache"}}},
            "then": {"required": ["urls"]},
        },
        {
            "if": {"properties": {"type": {"const": "purge-matching"}}},
            "then": {"required": ["pattern"]},
        },
    ],
}

_validator = Draft7Validator(COMMAND_SCHEMA)


class ControlChannel:
    def __init__(self, proxy: "OfflineProxy") -> None:
        self._proxy = proxy
        self._handlers: Dict[str, Callable[[Mapping[str, Any]], Dict[str, Any]]] = {
            "activate-new-version": self._activate,
            "pre-cache": self._pre_cache,
            "purge-all": self._purge_all,
            "purge-matching": self._purge_matching,
            "sync": self._sync,
            "status": self._status,
        }

    def dispatch(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        """Run one command. Never raises; failures come back as ``ok: false``."""
        if not isinstance(message, Mapping):
            return {"ok": False, "error": "control message must be an object"}

        message = dict(message)
        message["type"] = ALIASES.get(message.get("type"), message.get("type"))

        errors = sorted(_validator.iter_errors(message), key=lambda e: e.path)
        if errors:
            error = ", ".join(e.message for e in errors)
            logger.warning("Rejected control message: %s", error)
            return {"ok": False, "error": error}

        command = message["type"]
        logger.info("Control command received: %s", command)
        try:
            result = self._handlers[command](message)
        except Exception as e:  # noqa: BLE001
            logger.error("Control command %s failed: %s", command, e)
            return {"ok": False, "type": command, "error": str(e)}
        return {"ok": True, "type": command, **result}

    def _activate(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        deleted = self._proxy.lifecycle.activate(force=True)
        return {"deleted_partitions": deleted, "state": self._proxy.lifecycle.state.value}

    def _pre_cache(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        report = self._proxy.lifecycle.precache(message["urls"])
        if not report.ok:
            raise RuntimeError(f"pre-cache failed for: {', '.join(report.failed)}")
        return {"cached": report.cached}

    def _purge_all(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        return {"deleted_partitions": self._proxy.store.purge_all()}

    def _purge_matching(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        return {"deleted_entries": self._proxy.store.delete_matching(message["pattern"])}

    def _sync(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        report = self._proxy.on_connectivity_restored()
        return {"tag": message.get("tag", "sync-mutations"), **report.to_dict()}

    def _status(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        return self._proxy.status()
