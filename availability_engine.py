#!/usr/bin/env python3
"""
Availability Engine

Turns the user's busy events into bounded free slots during business hours
and checks proposed meeting times against the calendar.
"""

import logging
from datetime import datetime, time, timedelta
from typing import Iterable, List, Optional

import pytz

from agent_config import (
    BUSINESS_CLOSE_HOUR,
    BUSINESS_OPEN_HOUR,
    DEFAULT_TIMEZONE,
    MAX_SLOT_DISPLAY_MINUTES,
    SAME_DAY_CUTOFF_HOUR,
    SEARCH_HORIZON_DAYS,
)
from thread_models import (
    BusyEvent,
    ConflictState,
    FreeSlot,
    ProposedTime,
    ProposedTimeCheck,
    parse_iso_timestamp,
)

logger = logging.getLogger(__name__)


def format_time_range(start: datetime, end: datetime) -> str:
    """Human readable slot text, e.g. 'Mon, Oct 19, 10:00 AM - 01:00 PM EDT'"""
    return f"{start.strftime('%a, %b %d, %I:%M %p')} - {end.strftime('%I:%M %p %Z')}"


class AvailabilityEngine:
    """Computes free slots and conflict states from a calendar collaborator"""

    def __init__(self, calendar, timezone: str = DEFAULT_TIMEZONE,
                 horizon_days: int = SEARCH_HORIZON_DAYS,
                 open_hour: int = BUSINESS_OPEN_HOUR,
                 close_hour: int = BUSINESS_CLOSE_HOUR,
                 same_day_cutoff_hour: int = SAME_DAY_CUTOFF_HOUR,
                 max_slot_minutes: int = MAX_SLOT_DISPLAY_MINUTES):
        self.calendar = calendar
        self.timezone = pytz.timezone(timezone)
        self.horizon_days = horizon_days
        self.open_hour = open_hour
        self.close_hour = close_hour
        self.same_day_cutoff_hour = same_day_cutoff_hour
        self.max_slot = timedelta(minutes=max_slot_minutes)

    def find_free_slots(self, duration_minutes: int, target_count: int,
                        now: Optional[datetime] = None,
                        timezone: Optional[str] = None) -> List[FreeSlot]:
        """
        Find up to target_count free slots, in day and time order.

        Weekends are skipped, as is today once the local time reaches the
        same-day cutoff. Business hours are localized per date so the UTC
        offset is right on both sides of a DST change. An empty list is a
        normal result.

        Args:
            duration_minutes: Requested meeting length
            target_count: Number of slots wanted
            now: Current time (defaults to the wall clock)
            timezone: Timezone name overriding the engine default
        """
        tz = pytz.timezone(timezone) if timezone else self.timezone
        if now is None:
            now = datetime.now(tz)
        elif now.tzinfo is None:
            now = tz.localize(now)
        else:
            now = now.astimezone(tz)

        slots: List[FreeSlot] = []
        if duration_minutes <= 0 or target_count <= 0:
            return slots
        duration = timedelta(minutes=duration_minutes)

        for day_offset in range(self.horizon_days):
            day = now.date() + timedelta(days=day_offset)
            if day.weekday() >= 5:
                continue
            if day_offset == 0 and now.hour >= self.same_day_cutoff_hour:
                logger.debug(f"Past {self.same_day_cutoff_hour}:00, skipping today")
                continue

            business_open = tz.localize(datetime.combine(day, time(self.open_hour, 0)))
            business_close = tz.localize(datetime.combine(day, time(self.close_hour, 0)))
            search_start = max(business_open, now)
            if search_start >= business_close:
                continue

            events = self.calendar.list_busy_events(search_start, business_close)
            blocking = sorted((event for event in events if event.blocks_time), key=lambda e: e.start)

            for slot in self._day_slots(search_start, business_close, blocking, duration, tz):
                slots.append(slot)
                if len(slots) >= target_count:
                    return slots

        logger.info(f"Found {len(slots)} of {target_count} requested slots within {self.horizon_days} days")
        return slots

    def _day_slots(self, search_start: datetime, business_close: datetime,
                   events: Iterable[BusyEvent], duration: timedelta, tz) -> List[FreeSlot]:
        slots = []
        cursor = search_start
        for event in events:
            if cursor >= business_close:
                break
            gap_end = min(event.start, business_close)
            slot = self._slot_for_gap(cursor, gap_end, duration, tz)
            if slot:
                slots.append(slot)
            cursor = max(cursor, event.end)

        if cursor < business_close:
            slot = self._slot_for_gap(cursor, business_close, duration, tz)
            if slot:
                slots.append(slot)
        return slots

    def _slot_for_gap(self, gap_start: datetime, gap_end: datetime,
                      duration: timedelta, tz) -> Optional[FreeSlot]:
        gap = gap_end - gap_start
        if gap < duration:
            return None
        # One slot per gap, never shorter than the meeting itself
        length = min(gap, max(self.max_slot, duration))
        start = gap_start.astimezone(tz)
        end = (gap_start + length).astimezone(tz)
        return FreeSlot(start=start, end=end, display_text=format_time_range(start, end))

    def check_proposed_times(self, candidates: Iterable[ProposedTime],
                             duration_minutes: int) -> List[ProposedTimeCheck]:
        """
        Label each proposed time free, busy or unknown.

        Times without a parseable ISO start are unknown and never queried.
        All-day events and events the user declined do not count as conflicts.
        """
        duration = timedelta(minutes=duration_minutes)
        checks = []
        for candidate in candidates:
            start = parse_iso_timestamp(candidate.start_iso, self.timezone)
            if start is None:
                checks.append(ProposedTimeCheck(
                    proposed_time=candidate,
                    conflict_state=ConflictState.UNKNOWN,
                    label="Time unclear"
                ))
                continue

            end = start + duration
            conflicts = [
                event for event in self.calendar.list_busy_events(start, end)
                if event.blocks_time and event.start < end and event.end > start
            ]
            if conflicts:
                label = f"Conflicts with {conflicts[0].summary}" if conflicts[0].summary else "Busy"
                state = ConflictState.BUSY
            else:
                label = "Free"
                state = ConflictState.FREE
            checks.append(ProposedTimeCheck(
                proposed_time=candidate,
                conflict_state=state,
                label=label,
                start=start
            ))
        return checks
