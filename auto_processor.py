#!/usr/bin/env python3
"""
Autonomous Scheduling Processor

One invocation runs two passes under a single run lock:

- capture: reply to new inbound meeting requests with free slots and mark
  the thread Awaiting
- resolution: for Awaiting threads the counterpart has answered, re-classify
  and book the agreed time

Every thread is handled on its own; a failure is logged and the pass moves
on. Nothing is retried within a run, the next scheduled poll picks it up.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, assert_never

import pytz

from agent_config import (
    DEFAULT_SLOT_COUNT,
    LABEL_SCAN_PAGE_SIZE,
    UNREAD_PAGE_SIZE,
    UNREAD_RECENCY_DAYS,
    SettingsSnapshot,
)
from availability_engine import AvailabilityEngine
from invite_detector import DuplicateInviteDetector
from reply_templates import availability_reply, thread_transcript
from scheduling_errors import TransientExternalError
from thread_models import MailThread, ThreadAnalysis, ThreadLabel, ThreadStatus

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """Counters for one processor invocation"""
    lock_acquired: bool = False
    captured: int = 0
    replies_sent: int = 0
    resolved: int = 0
    scheduled: int = 0
    failures: int = 0


def counterpart_replied(thread: MailThread, user_email: str) -> bool:
    """True if someone other than the user wrote after the user's last message"""
    user_email = user_email.lower()
    last_own_index = -1
    for index, message in enumerate(thread.messages):
        if message.sender.lower() == user_email:
            last_own_index = index
    return any(message.sender.lower() != user_email
               for message in thread.messages[last_own_index + 1:])


def meeting_title_for(analysis: ThreadAnalysis, thread: MailThread) -> str:
    if analysis.meeting_title:
        return analysis.meeting_title
    subject = thread.subject or "Meeting"
    while subject.lower().startswith(("re:", "fwd:", "fw:")):
        subject = subject.split(":", 1)[1].strip()
    return subject or "Meeting"


class AutoProcessor:
    """Lock-guarded autonomous reply and booking loop"""

    def __init__(self, mail, calendar, labels, classifier, ledger, lock,
                 unread_page_size: int = UNREAD_PAGE_SIZE,
                 unread_recency_days: int = UNREAD_RECENCY_DAYS,
                 label_scan_page_size: int = LABEL_SCAN_PAGE_SIZE,
                 slot_count: int = DEFAULT_SLOT_COUNT):
        self.mail = mail
        self.calendar = calendar
        self.labels = labels
        self.classifier = classifier
        self.ledger = ledger
        self.lock = lock
        self.unread_page_size = unread_page_size
        self.unread_recency_days = unread_recency_days
        self.label_scan_page_size = label_scan_page_size
        self.slot_count = slot_count

    def run(self, settings: SettingsSnapshot, now: Optional[datetime] = None) -> RunSummary:
        """
        Run the capture and resolution passes once.

        Returns immediately, without touching any collaborator, when auto mode
        is off or another invocation holds the run lock.
        """
        if not settings.auto_mode_enabled:
            logger.info("Auto mode disabled, skipping run")
            return RunSummary()

        if not self.lock.acquire():
            logger.info("Another run is in progress, skipping this trigger")
            return RunSummary(lock_acquired=False)

        summary = RunSummary(lock_acquired=True)
        try:
            tz = pytz.timezone(settings.timezone)
            now = now.astimezone(tz) if now else datetime.now(tz)
            engine = AvailabilityEngine(self.calendar, settings.timezone)
            detector = DuplicateInviteDetector(self.calendar, settings.timezone)

            self.ledger.load()
            self._capture_pass(settings, engine, now, summary)
            self._resolution_pass(settings, detector, now, summary)
        finally:
            self.lock.release()

        logger.info(
            f"Run complete: {summary.captured} captured, {summary.replies_sent} replies, "
            f"{summary.resolved} resolved, {summary.scheduled} scheduled, {summary.failures} failures"
        )
        return summary

    # ==================== CAPTURE PASS ====================

    def _capture_pass(self, settings, engine, now, summary):
        try:
            user_email = self.mail.get_user_email()
            threads = self.mail.search_unread(self.unread_page_size, self.unread_recency_days)
        except TransientExternalError as e:
            logger.error(f"Capture pass aborted, unread search failed: {e}")
            summary.failures += 1
            return

        for thread in threads:
            if self.ledger.contains(thread.thread_id):
                continue
            try:
                self._capture_thread(thread, user_email, settings, engine, now, summary)
            except Exception as e:
                logger.error(f"Capture failed for thread {thread.thread_id}: {e}")
                summary.failures += 1

    def _capture_thread(self, thread, user_email, settings, engine, now, summary):
        analysis = self._classify(thread, now)
        # Marked whatever the outcome, so a thread gets at most one autonomous reply
        self.ledger.mark_processed(thread.thread_id)
        self.ledger.save()
        summary.captured += 1

        latest = thread.latest_message
        status = analysis.status
        if status is ThreadStatus.INBOUND_REQUEST:
            if latest is None or latest.sender.lower() == user_email.lower():
                logger.info(f"Thread {thread.thread_id} was last answered by the user, not replying")
                return
            self._reply_with_availability(thread, latest, analysis, settings, engine, now, summary)
        elif status in (ThreadStatus.NOT_SCHEDULING, ThreadStatus.NO_AGREEMENT,
                        ThreadStatus.USER_PROMISED_TIMES, ThreadStatus.AWAITING_RESPONSE,
                        ThreadStatus.AGREEMENT_REACHED, ThreadStatus.ALREADY_SCHEDULED):
            logger.debug(f"Thread {thread.thread_id} is {status.value}, no autonomous reply")
        else:
            assert_never(status)

    def _reply_with_availability(self, thread, latest, analysis, settings, engine, now, summary):
        slots = engine.find_free_slots(analysis.duration_minutes, self.slot_count, now=now)
        if not slots:
            logger.info(f"No free slots for thread {thread.thread_id}, leaving it for manual handling")
            return

        body = availability_reply(slots, settings.sign_off_name, analysis.meeting_title)
        self.mail.send_reply(latest.message_id, body)
        self.labels.add(thread.thread_id, ThreadLabel.AWAITING)
        summary.replies_sent += 1
        logger.info(f"Offered {len(slots)} slots on thread {thread.thread_id}")

    # ==================== RESOLUTION PASS ====================

    def _resolution_pass(self, settings, detector, now, summary):
        try:
            user_email = self.mail.get_user_email()
            thread_ids = self.labels.threads_with(ThreadLabel.AWAITING, self.label_scan_page_size)
        except TransientExternalError as e:
            logger.error(f"Resolution pass aborted, label scan failed: {e}")
            summary.failures += 1
            return

        for thread_id in thread_ids:
            try:
                self._resolve_thread(thread_id, user_email, settings, detector, now, summary)
            except Exception as e:
                logger.error(f"Resolution failed for thread {thread_id}: {e}")
                summary.failures += 1

    def _resolve_thread(self, thread_id, user_email, settings, detector, now, summary):
        thread = self.mail.get_thread(thread_id)
        if not counterpart_replied(thread, user_email):
            logger.debug(f"No reply yet on thread {thread_id}")
            return

        # Hand the thread back for manual review even if nothing below succeeds
        self.labels.remove(thread_id, ThreadLabel.AWAITING)
        summary.resolved += 1

        analysis = self._classify(thread, now)
        status = analysis.status
        if status is ThreadStatus.AGREEMENT_REACHED:
            self._book_agreed_time(thread, analysis, user_email, settings, detector, summary)
        elif status is ThreadStatus.ALREADY_SCHEDULED:
            self._mark_scheduled(thread_id, summary)
        elif status in (ThreadStatus.NO_AGREEMENT, ThreadStatus.USER_PROMISED_TIMES,
                        ThreadStatus.AWAITING_RESPONSE, ThreadStatus.INBOUND_REQUEST):
            self.labels.add(thread_id, ThreadLabel.NEEDS_FOLLOW_UP)
        elif status is ThreadStatus.NOT_SCHEDULING:
            logger.info(f"Thread {thread_id} is no longer about scheduling")
        else:
            assert_never(status)

    def _book_agreed_time(self, thread, analysis, user_email, settings, detector, summary):
        bounds = analysis.agreed_time.parse_bounds(pytz.timezone(settings.timezone))
        if bounds is None:
            logger.warning(f"Agreed time on thread {thread.thread_id} is not concrete")
            self.labels.add(thread.thread_id, ThreadLabel.NEEDS_FOLLOW_UP)
            return
        start, end = bounds

        existing = detector.check_existing_invite(analysis)
        if existing.already_scheduled:
            logger.info(f"Thread {thread.thread_id} already booked ({existing.method.value})")
        else:
            guests = {email for email in analysis.participant_emails if email != user_email.lower()}
            try:
                event_id = self.calendar.create_event(meeting_title_for(analysis, thread), start, end, guests)
            except TransientExternalError as e:
                logger.error(f"Invite creation failed for thread {thread.thread_id}: {e}")
                summary.failures += 1
                return
            logger.info(f"Booked event {event_id} for thread {thread.thread_id}")

        self._mark_scheduled(thread.thread_id, summary)

    def _mark_scheduled(self, thread_id, summary):
        self.labels.clear(thread_id)
        self.labels.add(thread_id, ThreadLabel.SCHEDULED)
        summary.scheduled += 1

    def _classify(self, thread: MailThread, now: datetime) -> ThreadAnalysis:
        return self.classifier.classify(
            thread_transcript(thread),
            thread.subject,
            thread.has_calendar_attachment,
            now.date().isoformat()
        )
