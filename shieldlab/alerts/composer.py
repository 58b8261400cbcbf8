import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..config import Contacts, get_contacts
from ..models import Alert, utcnow
from .notifiers import Notifier, default_notifiers

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    channel: str
    ok: bool
    error: Optional[str] = None


def format_message(alert: Alert) -> str:
    local_time = alert.timestamp.astimezone().strftime("%A, %B %d, %Y %I:%M %p")
    return (
        "[ShieldLab Alert]\n"
        f"Type: {alert.type}\n"
        f"Phase: {alert.phase}\n"
        f"Host: {alert.hostname}\n"
        f"When: {local_time} (local time)\n"
        f"Details: {alert.message}"
    )


def channel_label(contacts: Contacts, notifiers: Sequence[Notifier]) -> str:
    return "+".join(n.channel for n in notifiers if n.is_configured(contacts)) or "None"


class AlertComposer:
    """
    Sole writer of Alert rows.

    The row is committed before any delivery is attempted, and no delivery
    outcome ever reaches the caller.
    """

    def __init__(
        self,
        db: Session,
        notifiers: Optional[Sequence[Notifier]] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.notifiers = list(notifiers) if notifiers is not None else default_notifiers()
        self.clock = clock

    def raise_alert(self, type: str, description: str, hostname: str, phase: str = "START") -> Alert:
        # contacts are re-read every time so edits apply immediately
        contacts = get_contacts(self.db)

        alert = Alert(
            timestamp=self.clock(),
            type=type,
            phase=phase,
            message=description,
            channel=channel_label(contacts, self.notifiers),
            hostname=hostname,
        )
        self.db.add(alert)
        self.db.commit()
        self.db.refresh(alert)

        self.dispatch(contacts, format_message(alert))
        return alert

    def dispatch(self, contacts: Contacts, text: str) -> List[DeliveryResult]:
        targets = [n for n in self.notifiers if n.is_configured(contacts)]

        if not targets:
            logger.warning("No alert channel configured; alert stored but not delivered.")
            return []

        with ThreadPoolExecutor(max_workers=len(targets)) as pool:
            futures = [(n.channel, pool.submit(n.deliver, contacts, text)) for n in targets]
            results = [self._collect(channel, future) for channel, future in futures]

        if not any(r.ok for r in results):
            logger.warning("All alert channels failed: %s", ", ".join(r.channel for r in results))
        else:
            logger.info("Alert delivered via %s", ", ".join(r.channel for r in results if r.ok))

        return results

    @staticmethod
    def _collect(channel: str, future) -> DeliveryResult:
        try:
            future.result()
        except Exception as e:
            logger.error("Failed to send %s notification for alert.", channel, exc_info=True)
            return DeliveryResult(channel=channel, ok=False, error=str(e))
        return DeliveryResult(channel=channel, ok=True)
