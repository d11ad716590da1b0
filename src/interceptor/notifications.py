"""
Notification Bridge: push payload in, rendered notification out,
click → destination URL.

The payload is opaque business data. The bridge only reads the display
fields and ``data.url`` / ``data.view`` for click routing.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from jsonschema import Draft7Validator

from .config import NotificationConfig

logger = logging.getLogger(__name__)

PAYLOAD_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "body": {"type": "string"},
        "icon": {"type": "string"},
        "badge": {"type": "string"},
        "tag": {"type": "string"},
        "data": {
            "type": "object",
            "properties": {
                "url": {"type": "string"},
                "view": {"type": "string"},
            },
        },
    },
}

_validator = Draft7Validator(PAYLOAD_SCHEMA)

DEFAULT_ACTIONS = (
    {"action": "view", "title": "View"},
    {"action": "dismiss", "title": "Dismiss"},
)


@dataclass
class Notification:
    title: str
    body: str
    icon: str = ""
    badge: str = ""
    tag: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    actions: List[Dict[str, str]] = field(default_factory=lambda: [dict(a) for a in DEFAULT_ACTIONS])
    require_interaction: bool = False
    vibrate: List[int] = field(default_factory=lambda: [200, 100, 200])


@dataclass(frozen=True)
class ClickDecision:
    """What the host should do with a click: focus a session or open one."""
    action: str  # "focus" | "open"
    url: str
    session: Optional[str] = None


def log_renderer(notification: Notification) -> None:
    logger.info("Notification [%s] %s: %s", notification.tag, notification.title, notification.body)


class NotificationBridge:
    def __init__(
        self,
        config: NotificationConfig = None,
        renderer: Callable[[Notification], None] = None,
    ) -> None:
        self._config = config or NotificationConfig()
        self._renderer = renderer or log_renderer

    def parse(self, raw: Union[bytes, str, Mapping[str, Any], None]) -> Notification:
        cfg = self._config
        fields: Dict[str, Any] = {
            "title": cfg.title,
            "body": cfg.body,
            "icon": cfg.icon,
            "badge": cfg.badge,
            "tag": cfg.tag,
            "data": {},
        }
        if raw is None or raw == b"" or raw == "":
            return Notification(**fields)

        payload: Any = raw
        if isinstance(raw, bytes):
            payload = raw.decode("utf-8", errors="replace")
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except ValueError:
                fields["body"] = payload
                return Notification(**fields)

        if not isinstance(payload, Mapping):
            fields["body"] = str(payload)
            return Notification(**fields)

        bad = {".".join(str(p) for p in e.absolute_path) for e in _validator.iter_errors(dict(payload))}
        for key in fields:
            if key not in payload:
                continue
            if key in bad or any(b.startswith(f"{key}.") for b in bad):
                logger.warning("Ignoring invalid notification field: %s", key)
                continue
            fields[key] = payload[key]
        return Notification(**fields)

    def receive(self, raw: Union[bytes, str, Mapping[str, Any], None]) -> Notification:
        """Parse a push payload and hand it to the renderer."""
        notification = self.parse(raw)
        self._renderer(notification)
        return notification

    def resolve_destination(self, data: Optional[Mapping[str, Any]]) -> str:
        data = data or {}
        if data.get("url"):
            return data["url"]
        view = data.get("view")
        if view and view in self._config.views:
            return self._config.views[view]
        return "/"

    def click(
        self,
        notification: Notification,
        action: Optional[str] = None,
        open_sessions: Iterable[str] = (),
    ) -> Optional[ClickDecision]:
        if action == "dismiss":
            return None

        url = self.resolve_destination(notification.data)
        for session_url in open_sessions:
            if url in session_url:
                return ClickDecision(action="focus", url=url, session=session_url)
        return ClickDecision(action="open", url=url)
