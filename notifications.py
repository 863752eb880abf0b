from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Sequence
from urllib.error import URLError
from urllib.request import Request, urlopen

from config import Settings, get_settings
from database import SessionFactory, session_scope
from models import BudgetAlert


logger = logging.getLogger(__name__)


class NotificationDispatcher(ABC):
    """Best-effort delivery; returns per-channel success instead of raising."""

    @abstractmethod
    def send(
        self, user_id: int, channels: Sequence[str], payload: dict[str, object]
    ) -> dict[str, bool]: ...


class LoggingDispatcher(NotificationDispatcher):
    def send(
        self, user_id: int, channels: Sequence[str], payload: dict[str, object]
    ) -> dict[str, bool]:
        for channel in channels:
            logger.info(
                f"notification: user_id={user_id} channel={channel} "
                f"alert_id={payload.get('alert_id')} type={payload.get('alert_type')}"
            )
        return {channel: True for channel in channels}


class WebhookDispatcher(NotificationDispatcher):
    def __init__(self, url: str, timeout: float) -> None:
        self.url = url
        self.timeout = timeout

    def send(
        self, user_id: int, channels: Sequence[str], payload: dict[str, object]
    ) -> dict[str, bool]:
        outcome: dict[str, bool] = {}
        for channel in channels:
            body = json.dumps(
                {"user_id": user_id, "channel": channel, "payload": payload},
                default=str,
            ).encode("utf-8")
            req = Request(
                self.url,
                data=body,
                method="POST",
                headers={"Content-Type": "application/json"},
            )
            try:
                with urlopen(req, timeout=self.timeout) as resp:
                    outcome[channel] = 200 <= resp.status < 300
            except (URLError, TimeoutError, OSError) as exc:
                logger.warning(
                    f"notification_failed: user_id={user_id} channel={channel} error={exc}"
                )
                outcome[channel] = False
        return outcome


def build_dispatcher(settings: Optional[Settings] = None) -> NotificationDispatcher:
    settings = settings or get_settings()
    if settings.notify_webhook_url:
        return WebhookDispatcher(
            settings.notify_webhook_url, timeout=settings.notify_timeout_secs
        )
    return LoggingDispatcher()


class NotificationQueue:
    """Hands alert notifications to a worker pool and records the outcome.

    The alert row already exists when a job is submitted; the job only flips
    ``notification_sent`` and stores the attempted channels afterwards.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        session_factory: Optional[SessionFactory] = None,
        *,
        max_workers: int = 4,
        synchronous: bool = False,
    ) -> None:
        self.dispatcher = dispatcher
        self.session_factory = session_factory
        self.synchronous = synchronous
        self._executor: Optional[ThreadPoolExecutor] = None
        if not synchronous:
            self._executor = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="budget-notify"
            )

    def submit(
        self,
        alert_id: int,
        user_id: int,
        channels: Sequence[str],
        payload: dict[str, object],
    ) -> Optional[Future]:
        channels = list(channels)
        if self._executor is None:
            self._deliver(alert_id, user_id, channels, payload)
            return None
        return self._executor.submit(
            self._deliver, alert_id, user_id, channels, payload
        )

    def _deliver(
        self,
        alert_id: int,
        user_id: int,
        channels: list[str],
        payload: dict[str, object],
    ) -> dict[str, bool]:
        try:
            outcome = self.dispatcher.send(user_id, channels, payload)
        except Exception:
            logger.exception(f"notification_error: alert_id={alert_id}")
            outcome = {channel: False for channel in channels}

        try:
            with session_scope(self.session_factory) as session:
                alert = session.get(BudgetAlert, alert_id)
                if alert is None:
                    logger.warning(f"notification_orphan: alert_id={alert_id}")
                    return outcome
                alert.notification_sent = any(outcome.values())
                alert.notification_channels = channels
        except Exception:
            logger.exception(f"notification_record_failed: alert_id={alert_id}")
            return outcome

        sent = sum(1 for ok in outcome.values() if ok)
        logger.info(
            f"notification_done: alert_id={alert_id} sent={sent} "
            f"failed={len(outcome) - sent}"
        )
        return outcome

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
