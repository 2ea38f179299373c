"""Best-effort "your video is ready" notifications."""
from __future__ import annotations

import logging
import os
from typing import Protocol

import requests

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "Video ready"


def edit_complete_body(project_title: str | None = None) -> str:
    if project_title:
        return f"{project_title} has finished processing."
    return "Your video is ready to view."


class Notifier(Protocol):
    def request_permission(self) -> bool: ...

    def send_edit_complete(self, project_title: str | None = None) -> bool: ...


class NullNotifier:
    def request_permission(self) -> bool:
        return False

    def send_edit_complete(self, project_title: str | None = None) -> bool:
        return False


class WebhookNotifier:
    """POSTs a JSON notification to a webhook (ntfy, Slack-compatible relays, ...)."""

    def __init__(
        self,
        url: str | None,
        timeout_seconds: float = 10,
        session: requests.Session | None = None,
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def request_permission(self) -> bool:
        return bool(self.url)

    def send_edit_complete(self, project_title: str | None = None) -> bool:
        if not self.url:
            return False
        payload = {"title": NOTIFICATION_TITLE, "body": edit_complete_body(project_title)}
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout_seconds)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to send notification: %s", exc)
            return False
        return True


def build_notifier() -> Notifier:
    url = os.getenv("NOTIFY_WEBHOOK_URL", "").strip()
    return WebhookNotifier(url) if url else NullNotifier()
