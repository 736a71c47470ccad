#!/usr/bin/env python3
"""
Duplicate Invite Detector

Layered heuristic deciding whether a meeting is already on the calendar.
False negatives are acceptable; a failed calendar lookup never blocks the
caller and simply reports not_found.
"""

import logging
import re
from datetime import timedelta
from typing import List

import pytz

from agent_config import DEFAULT_TIMEZONE, INVITE_SEARCH_WINDOW_MINUTES
from scheduling_errors import TransientExternalError
from thread_models import InviteCheckMethod, InviteCheckResult, ThreadAnalysis

logger = logging.getLogger(__name__)

NOT_FOUND = InviteCheckResult(already_scheduled=False, method=InviteCheckMethod.NOT_FOUND)


def title_tokens(title: str) -> List[str]:
    """Lowercased words longer than 3 characters"""
    return [word for word in re.findall(r"\w+", (title or "").lower()) if len(word) > 3]


class DuplicateInviteDetector:
    """Checks explicit signal, then participant overlap, then title similarity"""

    def __init__(self, calendar, timezone: str = DEFAULT_TIMEZONE,
                 window_minutes: int = INVITE_SEARCH_WINDOW_MINUTES):
        self.calendar = calendar
        self.timezone = pytz.timezone(timezone)
        self.window = timedelta(minutes=window_minutes)

    def check_existing_invite(self, analysis: ThreadAnalysis) -> InviteCheckResult:
        # Cheapest layer first: no calendar query
        if analysis.calendar_invite_sent:
            return InviteCheckResult(already_scheduled=True, method=InviteCheckMethod.EXPLICIT_SIGNAL)

        if analysis.agreed_time is None:
            return NOT_FOUND
        bounds = analysis.agreed_time.parse_bounds(self.timezone)
        if bounds is None:
            logger.debug("Agreed time has no usable bounds, skipping calendar layers")
            return NOT_FOUND
        start, _ = bounds

        try:
            events = self.calendar.list_busy_events(start - self.window, start + self.window)
        except TransientExternalError as e:
            logger.warning(f"Invite check calendar lookup failed, assuming not scheduled: {e}")
            return NOT_FOUND

        participants = {email.lower() for email in analysis.participant_emails}
        for event in events:
            if participants & event.guest_emails:
                logger.info(f"Existing event '{event.summary}' shares participants with the thread")
                return InviteCheckResult(already_scheduled=True, event_ref=event.event_id,
                                         method=InviteCheckMethod.PARTICIPANT_MATCH)

        tokens = title_tokens(analysis.meeting_title)
        if tokens:
            for event in events:
                event_title = (event.summary or "").lower()
                matched = sum(1 for token in tokens if token in event_title)
                if matched * 2 >= len(tokens):
                    logger.info(f"Existing event '{event.summary}' matches title '{analysis.meeting_title}'")
                    return InviteCheckResult(already_scheduled=True, event_ref=event.event_id,
                                             method=InviteCheckMethod.TITLE_MATCH)

        return NOT_FOUND
