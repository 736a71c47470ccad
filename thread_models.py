#!/usr/bin/env python3
"""
Scheduling Data Model

Records shared by the availability engine, invite detector, response
interpreter and the autonomous processor. Every record is immutable once
constructed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional, Tuple

import pytz
from dateutil import parser as date_parser


class ThreadStatus(Enum):
    """Scheduling phase of an email thread as judged by the classifier"""
    NOT_SCHEDULING = "not_scheduling"
    INBOUND_REQUEST = "inbound_request"
    NO_AGREEMENT = "no_agreement"
    USER_PROMISED_TIMES = "user_promised_times"
    AWAITING_RESPONSE = "awaiting_response"
    AGREEMENT_REACHED = "agreement_reached"
    ALREADY_SCHEDULED = "already_scheduled"


class ConflictState(Enum):
    FREE = "free"
    BUSY = "busy"
    UNKNOWN = "unknown"


class InviteCheckMethod(Enum):
    """Which detection layer produced an invite check result"""
    EXPLICIT_SIGNAL = "explicit_signal"
    PARTICIPANT_MATCH = "participant_match"
    TITLE_MATCH = "title_match"
    NOT_FOUND = "not_found"


class ThreadLabel(Enum):
    """Coarse thread phase markers persisted outside the core"""
    AWAITING = "Awaiting"
    NEEDS_FOLLOW_UP = "NeedsFollowUp"
    SCHEDULED = "Scheduled"


def parse_iso_timestamp(value: Optional[str], default_tz) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into a timezone-aware datetime.

    Naive timestamps are localized into default_tz. Returns None when the
    value is missing or unparseable.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = date_parser.isoparse(value.strip())
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = default_tz.localize(parsed)
    return parsed


@dataclass(frozen=True)
class ProposedTime:
    """A meeting time mentioned somewhere in the thread"""
    proposed_by: str
    display_text: str
    start_iso: Optional[str] = None


@dataclass(frozen=True)
class AgreedTime:
    """The time both sides agreed on"""
    start_iso: str
    end_iso: str
    timezone: str = ""
    display_text: str = ""

    def parse_bounds(self, default_tz=None) -> Optional[Tuple[datetime, datetime]]:
        """Return (start, end) as aware datetimes, or None if either bound is unusable."""
        if default_tz is None:
            try:
                default_tz = pytz.timezone(self.timezone) if self.timezone else pytz.UTC
            except pytz.exceptions.UnknownTimeZoneError:
                default_tz = pytz.UTC
        start = parse_iso_timestamp(self.start_iso, default_tz)
        end = parse_iso_timestamp(self.end_iso, default_tz)
        if start is None or end is None or end <= start:
            return None
        return start, end


@dataclass(frozen=True)
class ThreadAnalysis:
    """Classifier output for one thread"""
    status: ThreadStatus
    proposed_times: Tuple[ProposedTime, ...] = ()
    agreed_time: Optional[AgreedTime] = None
    participant_emails: FrozenSet[str] = frozenset()
    calendar_invite_sent: bool = False
    meeting_title: str = ""
    duration_minutes: int = 30

    def __post_init__(self):
        if self.status is ThreadStatus.AGREEMENT_REACHED:
            if self.agreed_time is None or not self.agreed_time.start_iso or not self.agreed_time.end_iso:
                raise ValueError("agreement_reached requires an agreed time with both bounds")


@dataclass(frozen=True)
class BusyEvent:
    """An event on the user's calendar inside a queried window"""
    start: datetime
    end: datetime
    is_all_day: bool = False
    user_response_status: str = "accepted"
    event_id: str = ""
    summary: str = ""
    guest_emails: FrozenSet[str] = frozenset()

    @property
    def is_declined(self) -> bool:
        return self.user_response_status == "declined"

    @property
    def blocks_time(self) -> bool:
        """All-day and declined events do not occupy the user's time"""
        return not self.is_all_day and not self.is_declined


@dataclass(frozen=True)
class FreeSlot:
    start: datetime
    end: datetime
    display_text: str


@dataclass(frozen=True)
class ProposedTimeCheck:
    """A proposed time annotated with its calendar conflict state"""
    proposed_time: ProposedTime
    conflict_state: ConflictState
    label: str
    start: Optional[datetime] = None

    @property
    def is_free(self) -> bool:
        return self.conflict_state is ConflictState.FREE


@dataclass(frozen=True)
class InviteCheckResult:
    already_scheduled: bool
    method: InviteCheckMethod
    event_ref: Optional[str] = None


@dataclass(frozen=True)
class MailMessage:
    """One message of a Gmail thread, reduced to what the core reads"""
    message_id: str
    sender: str
    date: str = ""
    body: str = ""
    has_calendar_attachment: bool = False


@dataclass(frozen=True)
class MailThread:
    thread_id: str
    subject: str
    messages: Tuple[MailMessage, ...] = field(default_factory=tuple)

    @property
    def latest_message(self) -> Optional[MailMessage]:
        return self.messages[-1] if self.messages else None

    @property
    def has_calendar_attachment(self) -> bool:
        return any(message.has_calendar_attachment for message in self.messages)
