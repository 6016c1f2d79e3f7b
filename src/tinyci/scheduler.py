# scheduler.py
from __future__ import annotations

import signal
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from .model import Definition, ScheduleEvent
from .runner import evaluate
from .ui.console import get_console


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Scheduler:
    """
    Turns wall-clock time into schedule events.

    Every minute is evaluated at most once; when a minute matches one of the
    definition's cron triggers, `on_event` is called with the tick.
    """

    def __init__(
        self,
        definition: Definition,
        on_event: Callable[[ScheduleEvent], None],
        *,
        repository: str = ".",
        ref: str = "HEAD",
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not definition.schedules:
            raise ValueError(f"Workflow {definition.name!r} has no schedule triggers")
        self.definition = definition
        self.on_event = on_event
        self.repository = repository
        self.ref = ref
        self.clock = clock
        self.sleep = sleep
        self.last_minute: Optional[datetime] = None
        self.running = True

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        get_console().print_info(f"\nReceived signal {signum}, shutting down gracefully...")
        self.running = False

    def tick(self, now: datetime) -> Optional[ScheduleEvent]:
        """
        Evaluate the minute containing `now`.
        Returns the event if it fired, None otherwise (or if already seen).
        """
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        minute = now.astimezone(timezone.utc).replace(second=0, microsecond=0)
        if self.last_minute is not None and minute <= self.last_minute:
            return None
        self.last_minute = minute

        event = ScheduleEvent(at=minute, repository=self.repository, ref=self.ref)
        if evaluate(self.definition, event) is None:
            return None

        get_console().print_info(f"Schedule fired at {minute.isoformat()}")
        self.on_event(event)
        return event

    def stop(self) -> None:
        self.running = False

    def run(self) -> None:
        """Run until stopped (SIGINT/SIGTERM or stop())."""
        console = get_console()
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        console.print_scheduler_started(
            workflow=self.definition.name,
            crons=[t.cron for t in self.definition.schedules],
        )

        while self.running:
            now = self.clock()
            try:
                self.tick(now)
            except Exception as e:
                console.print_exception(e)

            # Short sleeps keep shutdown responsive; tick() dedupes the minute.
            remaining = 60 - now.second - now.microsecond / 1_000_000
            self.sleep(max(0.05, min(1.0, remaining)))

        console.print_info("Scheduler stopped.")
