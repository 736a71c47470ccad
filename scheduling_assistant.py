"""
Interactive Scheduling Assistant

Human-in-the-loop flows over the same availability engine, invite detector
and response interpreter the autonomous processor uses. No run lock or
ledger is involved; errors are surfaced to the caller.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import pytz

from agent_config import DEFAULT_SLOT_COUNT, SettingsSnapshot, load_settings
from availability_engine import AvailabilityEngine
from invite_detector import DuplicateInviteDetector
from reply_templates import availability_reply, thread_transcript
from response_interpreter import ResponseInterpreter
from scheduling_errors import ValidationError
from thread_models import (
    AgreedTime,
    FreeSlot,
    InviteCheckResult,
    ProposedTimeCheck,
    ThreadAnalysis,
    ThreadStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingOutcome:
    """Result of confirming one candidate time"""
    chosen_index: int
    chosen: ProposedTimeCheck
    invite_check: InviteCheckResult
    event_id: Optional[str] = None

    @property
    def created(self) -> bool:
        return self.event_id is not None


class SchedulingAssistant:
    """Interactive interface for analysing threads, offering times and booking."""

    def __init__(self, mail, calendar, classifier, settings: SettingsSnapshot = None):
        """
        Initialize the SchedulingAssistant.

        Args:
            mail: Gmail collaborator
            calendar: Calendar collaborator
            classifier: Thread classifier
            settings: Settings snapshot (loaded from the environment if omitted)
        """
        self.mail = mail
        self.calendar = calendar
        self.classifier = classifier
        self.settings = settings or load_settings()
        self.timezone = pytz.timezone(self.settings.timezone)
        self.engine = AvailabilityEngine(calendar, self.settings.timezone)
        self.detector = DuplicateInviteDetector(calendar, self.settings.timezone)
        self.interpreter = ResponseInterpreter(classifier)

    def analyze_thread(self, thread_id: str) -> ThreadAnalysis:
        """Fetch a thread and classify it."""
        thread = self.mail.get_thread(thread_id)
        return self.classifier.classify(
            thread_transcript(thread),
            thread.subject,
            thread.has_calendar_attachment,
            datetime.now(self.timezone).date().isoformat()
        )

    def suggest_times(self, analysis: ThreadAnalysis, count: int = DEFAULT_SLOT_COUNT,
                      now: Optional[datetime] = None) -> List[FreeSlot]:
        """
        Free slots for the meeting the thread asks about.

        Raises:
            ValidationError: If no free slot exists within the search horizon
        """
        slots = self.engine.find_free_slots(analysis.duration_minutes, count, now=now)
        if not slots:
            raise ValidationError("No free time found in the next few weeks")
        return slots

    def review_proposed_times(self, analysis: ThreadAnalysis) -> List[ProposedTimeCheck]:
        """Conflict state of every time proposed in the thread."""
        return self.engine.check_proposed_times(analysis.proposed_times, analysis.duration_minutes)

    def draft_reply(self, slots: Sequence[FreeSlot], analysis: ThreadAnalysis = None) -> str:
        title = analysis.meeting_title if analysis else ""
        return availability_reply(slots, self.settings.sign_off_name, title)

    def send_reply(self, message_id: str, body: str):
        """
        Send a (possibly user-edited) reply.

        Raises:
            ValidationError: If the body is blank
        """
        if not body or not body.strip():
            raise ValidationError("Reply body is empty")
        return self.mail.send_reply(message_id, body)

    def confirm_choice(self, analysis: ThreadAnalysis, checks: Sequence[ProposedTimeCheck],
                       user_text: str) -> BookingOutcome:
        """
        Book the candidate the user picked unless it is already on the calendar.

        Raises:
            ValidationError: If there are no candidates or the chosen one has no time
        """
        index = self.interpreter.interpret(user_text, checks)
        chosen = checks[index]
        if chosen.start is None:
            raise ValidationError(f"'{chosen.proposed_time.display_text}' has no concrete time to book")

        end = chosen.start + timedelta(minutes=analysis.duration_minutes)
        agreed = ThreadAnalysis(
            status=ThreadStatus.AGREEMENT_REACHED,
            proposed_times=analysis.proposed_times,
            agreed_time=AgreedTime(
                start_iso=chosen.start.isoformat(),
                end_iso=end.isoformat(),
                timezone=self.settings.timezone,
                display_text=chosen.proposed_time.display_text
            ),
            participant_emails=analysis.participant_emails,
            calendar_invite_sent=analysis.calendar_invite_sent,
            meeting_title=analysis.meeting_title,
            duration_minutes=analysis.duration_minutes
        )

        invite_check = self.detector.check_existing_invite(agreed)
        if invite_check.already_scheduled:
            logger.info(f"Meeting already on calendar ({invite_check.method.value}), not creating")
            return BookingOutcome(chosen_index=index, chosen=chosen, invite_check=invite_check)

        user_email = self.mail.get_user_email()
        guests = {email for email in analysis.participant_emails if email != user_email}
        event_id = self.calendar.create_event(analysis.meeting_title or "Meeting", chosen.start, end, guests)
        return BookingOutcome(chosen_index=index, chosen=chosen, invite_check=invite_check, event_id=event_id)
