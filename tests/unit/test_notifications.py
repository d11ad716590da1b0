#!/usr/bin/env python3
"""
Unit tests for the Notification Bridge
payload defaults, destination resolution, click handling
"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from interceptor.config import NotificationConfig
from interceptor.notifications import ClickDecision, Notification, NotificationBridge

CONFIG = NotificationConfig(
    title="ReRide",
    body="You have a new notification",
    icon="/icon-192.png",
    badge="/icon-192.png",
    tag="reride-notification",
    views={"chat": "/?view=chat", "listings": "/?view=listings"},
)


@pytest.fixture
def rendered():
    return []


@pytest.fixture
def bridge(rendered):
    return NotificationBridge(CONFIG, renderer=rendered.append)


class TestReceive:

    def test_empty_payload_uses_defaults(self, bridge, rendered):
        n = bridge.receive(None)

        assert n.title == "ReRide"
        assert n.body == "You have a new notification"
        assert n.tag == "reride-notification"
        assert [a["action"] for a in n.actions] == ["view", "dismiss"]
        assert n.vibrate == [200, 100, 200]
        assert rendered == [n]

    def test_json_payload_overrides_defaults(self, bridge):
        n = bridge.receive(b'{"title": "New message", "body": "Hi!", "data": {"view": "chat"}}')

        assert n.title == "New message"
        assert n.body == "Hi!"
        assert n.icon == "/icon-192.png"
        assert n.data == {"view": "chat"}

    def test_plain_text_becomes_body(self, bridge):
        n = bridge.receive("Price dropped on your saved car")
        assert n.title == "ReRide"
        assert n.body == "Price dropped on your saved car"

    def test_invalid_field_ignored(self, bridge):
        n = bridge.receive({"title": 42, "body": "still shown"})
        assert n.title == "ReRide"
        assert n.body == "still shown"

    def test_unknown_fields_do_not_break_parsing(self, bridge):
        n = bridge.receive({"body": "x", "listing": {"id": 5}})
        assert n.body == "x"


class TestDestination:

    def test_explicit_url_wins(self, bridge):
        assert bridge.resolve_destination({"url": "/listings/5", "view": "chat"}) == "/listings/5"

    def test_view_mapped(self, bridge):
        assert bridge.resolve_destination({"view": "listings"}) == "/?view=listings"

    def test_unknown_view_goes_home(self, bridge):
        assert bridge.resolve_destination({"view": "garage"}) == "/"

    def test_no_data_goes_home(self, bridge):
        assert bridge.resolve_destination(None) == "/"


class TestClick:

    def test_dismiss_does_nothing(self, bridge):
        n = Notification(title="t", body="b", data={"url": "/listings/5"})
        assert bridge.click(n, action="dismiss") is None

    def test_focuses_session_already_on_destination(self, bridge):
        n = Notification(title="t", body="b", data={"view": "chat"})

        decision = bridge.click(
            n, open_sessions=["https://app.test/", "https://app.test/?view=chat"],
        )

        assert decision == ClickDecision("focus", "/?view=chat", "https://app.test/?view=chat")

    def test_opens_new_session_otherwise(self, bridge):
        n = Notification(title="t", body="b", data={"url": "/listings/5"})

        decision = bridge.click(n, action="view", open_sessions=["https://app.test/profile"])

        assert decision.action == "open"
        assert decision.url == "/listings/5"
        assert decision.session is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
