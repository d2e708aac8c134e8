"""Daily journaling reminder."""

import asyncio
import logging
from datetime import date, datetime
from typing import Callable

from journal_app._types import AppSettings
from journal_app.store import SettingsStore

logger = logging.getLogger(__name__)

REMINDER_TITLE = "Journal Éloquent"
REMINDER_MESSAGE = "C'est l'heure de votre session d'éloquence quotidienne !"


def is_reminder_due(now: datetime, settings: AppSettings, last_date: date | None) -> bool:
    """True when the reminder minute has come and it has not fired today."""
    if not settings.reminder_enabled:
        return False
    if now.strftime("%H:%M") != settings.reminder_time:
        return False
    return last_date != now.date()


class ReminderPoller:
    """Checks the reminder on a fixed interval and notifies once a day.

    Settings are re-read on every tick so changes apply without a restart.
    """

    def __init__(
        self,
        settings_store: SettingsStore,
        notify: Callable[[str, str], None],
        interval: float = 10.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.settings_store = settings_store
        self.notify = notify
        self.interval = interval
        self.clock = clock
        self._stop_event = asyncio.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def check(self) -> bool:
        """Run one check; returns True if a notification was sent."""
        now = self.clock()
        settings = self.settings_store.load()
        if not is_reminder_due(now, settings, self.settings_store.last_reminder_date()):
            return False

        logger.info("Reminder due at %s", settings.reminder_time)
        self.notify(REMINDER_TITLE, REMINDER_MESSAGE)
        self.settings_store.set_last_reminder_date(now.date())
        return True

    async def run(self) -> None:
        """Poll until ``stop`` is called."""
        logger.info("Reminder poller started (interval=%.1fs)", self.interval)
        while not self._stop_event.is_set():
            self.check()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Reminder poller stopped")
