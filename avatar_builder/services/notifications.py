"""Best-effort realtime fan-out of gallery mutations through the Ably REST API."""
from __future__ import annotations

import json
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests
from flask import current_app

FOLDERS_CHANNEL = "folders"
IMAGES_CHANNEL = "images"
CHARACTERS_CHANNEL = "characters"


class RealtimeNotifier:
    """Publishes events so other open clients can refresh their views.

    Publishing never raises: a missing key disables it, and HTTP failures are
    logged as warnings.
    """

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://rest.ably.io",
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return ":" in self.api_key

    def publish(self, channel: str, event: str, data: Optional[Dict[str, Any]] = None) -> bool:
        if not self.enabled:
            current_app.logger.debug("Realtime publishing disabled; skipped %s:%s", channel, event)
            return False

        key_name, _, key_secret = self.api_key.partition(":")
        message = {
            "name": event,
            "data": json.dumps({"timestamp": int(time.time() * 1000), **(data or {})}, default=str),
            "encoding": "json",
        }
        url = f"{self.base_url}/channels/{quote(channel, safe='')}/messages"
        try:
            response = self._session.post(
                url,
                json=message,
                auth=(key_name, key_secret),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            current_app.logger.warning("Failed to publish %s:%s: %s", channel, event, exc)
            return False
        return True


def get_notifier() -> RealtimeNotifier:
    app = current_app
    notifier = app.extensions.get("realtime_notifier")
    if notifier is None:
        notifier = RealtimeNotifier(
            app.config.get("ABLY_API_KEY"),
            base_url=app.config.get("ABLY_REST_URL", "https://rest.ably.io"),
            timeout=float(app.config.get("REALTIME_TIMEOUT", 5)),
        )
        app.extensions["realtime_notifier"] = notifier
    return notifier


def notify(channel: str, event: str, data: Optional[Dict[str, Any]] = None) -> bool:
    return get_notifier().publish(channel, event, data)
