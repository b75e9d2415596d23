"""Runs bot commands when events in configured iCalendar files start.

Each poll re-reads the ``.ics`` files and looks for events whose start time
lies in ``(last poll, now]``. Every calendar-event rule whose pattern is
found in the event summary posts each of its commands to the rule's
channel and dispatches the posted message through the command registry, so
replies and reactions land on a real message.
"""

from __future__ import annotations

import logging
import re
import threading
from datetime import date, datetime, timezone

from icalendar import Calendar as ICalendar

from pr_reaction_bot.commands import CommandRegistry
from pr_reaction_bot.models import Calendar, CalendarEvent, SlackMessage
from pr_reaction_bot.slack_client import SlackClient

logger = logging.getLogger(__name__)


def _to_utc(value) -> datetime:
    """Normalize an iCalendar DTSTART to an aware UTC datetime.

    All-day events start at local midnight; naive times are local.
    """
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    return value.astimezone(timezone.utc)


def read_events(path: str) -> list[tuple[str, datetime]]:
    """Return ``(summary, start)`` for every VEVENT in the file at ``path``."""
    with open(path, "rb") as f:
        cal = ICalendar.from_ical(f.read())

    events = []
    for component in cal.walk("VEVENT"):
        if "DTSTART" not in component:
            continue
        start = component.decoded("DTSTART")
        if not isinstance(start, (datetime, date)):
            continue
        events.append((str(component.get("SUMMARY", "")), _to_utc(start)))
    return events


class CalendarWatcher:
    def __init__(
        self,
        calendars: list[Calendar],
        registry: CommandRegistry,
        slack_client: SlackClient,
        interval: float = 60,
        now: datetime | None = None,
    ) -> None:
        self._calendars = calendars
        self._registry = registry
        self._slack = slack_client
        self._interval = interval
        self._last_poll = now or datetime.now(timezone.utc)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def check(self, now: datetime | None = None) -> list[SlackMessage]:
        """Dispatch commands for events started since the last check.

        Returns the posted messages that were dispatched. A command that
        fails is logged and does not stop the remaining ones.
        """
        now = now or datetime.now(timezone.utc)
        since, self._last_poll = self._last_poll, now

        dispatched = []
        for calendar in self._calendars:
            try:
                events = read_events(calendar.path)
            except (OSError, ValueError) as exc:
                logger.warning("Failed to read calendar %s: %s", calendar.name, exc)
                continue

            for summary, start in events:
                if not since < start <= now:
                    continue
                for rule in calendar.events:
                    if not re.search(rule.pattern, summary):
                        continue
                    logger.info(
                        "Calendar %s: '%s' started, running rule %s",
                        calendar.name,
                        summary,
                        rule.name,
                    )
                    for command in rule.commands:
                        msg = self._dispatch(calendar, rule, command)
                        if msg is not None:
                            dispatched.append(msg)
        return dispatched

    def _dispatch(
        self, calendar: Calendar, rule: CalendarEvent, command: str
    ) -> SlackMessage | None:
        try:
            ts = self._slack.post_message(rule.channel, command)
            msg = SlackMessage(channel_id=rule.channel, ts=ts, text=command)
            if not self._registry.run(msg):
                logger.warning(
                    "No command handles '%s' from calendar %s",
                    command,
                    calendar.name,
                )
        except Exception:
            logger.exception(
                "Running '%s' from calendar %s failed", command, calendar.name
            )
            return None
        return msg

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Poll in a daemon thread until :meth:`stop` is called."""
        if not self._calendars:
            return
        logger.info(
            "Watching %d calendar(s) every %ss", len(self._calendars), self._interval
        )
        self._thread = threading.Thread(
            target=self._run, name="calendar-watcher", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.check()
            except Exception:
                logger.exception("Calendar check failed")
