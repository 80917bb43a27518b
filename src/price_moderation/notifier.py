"""
Best-effort outbound notifications.

Moderation decisions never wait on, or fail because of, a notification.
The webhook notifier hands each delivery to a small thread pool and logs
failures instead of raising them.
"""

import hashlib
import hmac
import json
import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any

import httpx

from .config import NotifierConfig

logger = logging.getLogger(__name__)

_executor: ThreadPoolExecutor | None = None


def _get_executor() -> ThreadPoolExecutor:
    """Shared pool for webhook deliveries."""
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="price-notify")
    return _executor


class Notifier(ABC):
    """Fire-and-forget event sink."""

    @abstractmethod
    def notify(self, event: str, payload: dict[str, Any]) -> None:
        """Dispatch an event. Must return quickly and must not raise."""
        pass


class NullNotifier(Notifier):
    """Notifier used when no webhook is configured."""

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        logger.debug(f"Notification {event} (no webhook configured)")


class WebhookNotifier(Notifier):
    """
    POSTs events as JSON to a webhook URL.

    Payloads are signed with HMAC-SHA256 when a secret is configured:
    ``X-Price-Catalog-Signature: sha256=<hex digest of the body>``.
    """

    def __init__(
        self,
        url: str,
        secret: str | None = None,
        timeout_seconds: float = 5.0,
        executor: ThreadPoolExecutor | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url
        self.secret = secret
        self.timeout = timeout_seconds
        self._executor = executor
        self._transport = transport

    @staticmethod
    def compute_signature(body: bytes, secret: str) -> str:
        mac = hmac.new(secret.encode("utf-8"), body, hashlib.sha256)
        return f"sha256={mac.hexdigest()}"

    def build_request(self, event: str, payload: dict[str, Any]) -> tuple[bytes, dict[str, str]]:
        """Serialize the event and build the delivery headers."""
        body = json.dumps(
            {
                "event": event,
                "payload": payload,
                "sent_ts": datetime.now(UTC).isoformat(),
            },
            default=str,
        ).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "X-Price-Catalog-Event": event,
        }
        if self.secret:
            headers["X-Price-Catalog-Signature"] = self.compute_signature(body, self.secret)
        return body, headers

    def deliver(self, event: str, payload: dict[str, Any]) -> int:
        """Send one event synchronously. Returns the HTTP status code."""
        body, headers = self.build_request(event, payload)
        with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
            response = client.post(self.url, content=body, headers=headers)
            response.raise_for_status()
            return response.status_code

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        try:
            executor = self._executor or _get_executor()
            future = executor.submit(self.deliver, event, payload)
        except RuntimeError:
            # Pool already shut down (interpreter exit)
            logger.warning(f"Could not schedule notification {event}")
            return
        future.add_done_callback(lambda f: self._log_outcome(event, f))

    @staticmethod
    def _log_outcome(event: str, future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.warning(f"Notification {event} failed: {error}")
        else:
            logger.debug(f"Notification {event} delivered ({future.result()})")


def build_notifier(config: NotifierConfig) -> Notifier:
    """Pick the notifier for the configuration."""
    if config.webhook_url:
        return WebhookNotifier(
            config.webhook_url,
            secret=config.get_secret(),
            timeout_seconds=config.timeout_seconds,
        )
    return NullNotifier()
