#!/usr/bin/env python3
"""
Test the autonomous capture and resolution passes
"""

from datetime import datetime, timedelta
from unittest.mock import Mock

import pytz

from agent_config import SettingsSnapshot
from auto_processor import AutoProcessor, counterpart_replied, meeting_title_for
from label_store import InMemoryLabelStore
from run_lock import RunLock
from scheduling_errors import TransientExternalError
from thread_ledger import ThreadLedger
from thread_models import (
    AgreedTime,
    BusyEvent,
    MailMessage,
    MailThread,
    ThreadAnalysis,
    ThreadLabel,
    ThreadStatus,
)

TZ = pytz.timezone('America/New_York')
NOW = TZ.localize(datetime(2026, 10, 19, 10, 0))
ME = "me@example.com"
SETTINGS = SettingsSnapshot(auto_mode_enabled=True, sign_off_name="Alex", timezone="America/New_York")


class FakeMail:
    def __init__(self, unread=(), threads=None):
        self.unread = list(unread)
        self.threads = threads or {thread.thread_id: thread for thread in unread}
        self.sent = []

    def get_user_email(self):
        return ME

    def search_unread(self, max_count, recency_days):
        return self.unread[:max_count]

    def get_thread(self, thread_id):
        return self.threads[thread_id]

    def send_reply(self, message_id, body):
        self.sent.append((message_id, body))
        # The user's reply becomes the latest message of its thread
        for thread_id, existing in self.threads.items():
            if any(message.message_id == message_id for message in existing.messages):
                reply = MailMessage(message_id=f"{thread_id}-sent{len(self.sent)}", sender=ME, body=body)
                self.threads[thread_id] = MailThread(thread_id, existing.subject, existing.messages + (reply,))
                break


class FakeCalendar:
    def __init__(self, events=(), fail_create=False):
        self.events = list(events)
        self.created = []
        self.fail_create = fail_create

    def list_busy_events(self, window_start, window_end):
        return [e for e in self.events if e.start < window_end and e.end > window_start]

    def create_event(self, title, start, end, guest_emails):
        if self.fail_create:
            raise TransientExternalError("insert failed")
        self.created.append((title, start, end, set(guest_emails)))
        return f"evt{len(self.created)}"


def thread(thread_id, *senders, subject="Coffee next week?"):
    messages = tuple(
        MailMessage(message_id=f"{thread_id}-m{i}", sender=sender, body=f"message {i}")
        for i, sender in enumerate(senders)
    )
    return MailThread(thread_id=thread_id, subject=subject, messages=messages)


def analysis(status, **kwargs):
    return ThreadAnalysis(status=status, meeting_title=kwargs.pop("meeting_title", "Coffee chat"), **kwargs)


def agreement(**kwargs):
    start = TZ.localize(datetime(2026, 10, 21, 14, 0))
    return analysis(
        ThreadStatus.AGREEMENT_REACHED,
        agreed_time=AgreedTime(start.isoformat(), (start + timedelta(minutes=30)).isoformat(),
                               "America/New_York", "Wed 2pm"),
        participant_emails=frozenset({"bob@example.com", ME}),
        **kwargs
    )


def make_processor(tmp_path, mail, calendar=None, classifier=None, labels=None):
    classifier = classifier or Mock()
    return AutoProcessor(
        mail=mail,
        calendar=calendar or FakeCalendar(),
        labels=labels if labels is not None else InMemoryLabelStore(),
        classifier=classifier,
        ledger=ThreadLedger(str(tmp_path / "ledger.json")),
        lock=RunLock(str(tmp_path / "run.lock"), wait_seconds=0)
    )


def test_capture_replies_once_across_runs(tmp_path):
    mail = FakeMail([thread("t1", "bob@example.com")])
    classifier = Mock()
    classifier.classify.return_value = analysis(ThreadStatus.INBOUND_REQUEST)
    processor = make_processor(tmp_path, mail, classifier=classifier)

    first = processor.run(SETTINGS, now=NOW)
    second = processor.run(SETTINGS, now=NOW)

    assert first.replies_sent == 1
    assert second.replies_sent == 0
    assert len(mail.sent) == 1
    message_id, body = mail.sent[0]
    assert message_id == "t1-m0"
    assert "Alex" in body
    assert processor.labels.labels_for("t1") == {ThreadLabel.AWAITING}
    assert processor.ledger.contains("t1")
    assert classifier.classify.call_count == 1


def test_lock_held_means_no_collaborator_calls(tmp_path):
    mail, calendar, classifier, labels = Mock(), Mock(), Mock(), Mock()
    processor = make_processor(tmp_path, mail, calendar=calendar, classifier=classifier, labels=labels)
    other = RunLock(str(tmp_path / "run.lock"), wait_seconds=0)
    assert other.acquire()

    summary = processor.run(SETTINGS, now=NOW)

    assert not summary.lock_acquired
    assert summary.captured == 0 and summary.resolved == 0
    for collaborator in (mail, calendar, classifier, labels):
        assert collaborator.method_calls == []
    other.release()


def test_auto_mode_off_does_nothing(tmp_path):
    mail = Mock()
    processor = make_processor(tmp_path, mail)

    summary = processor.run(SettingsSnapshot(auto_mode_enabled=False), now=NOW)

    assert not summary.lock_acquired
    assert mail.method_calls == []


def test_non_scheduling_thread_is_still_marked_processed(tmp_path):
    mail = FakeMail([thread("t1", "news@example.com")])
    classifier = Mock()
    classifier.classify.return_value = analysis(ThreadStatus.NOT_SCHEDULING)
    processor = make_processor(tmp_path, mail, classifier=classifier)

    summary = processor.run(SETTINGS, now=NOW)

    assert summary.captured == 1
    assert mail.sent == []
    assert processor.ledger.contains("t1")


def test_thread_failure_does_not_abort_pass(tmp_path):
    mail = FakeMail([thread("bad", "x@example.com"), thread("good", "bob@example.com")])
    classifier = Mock()

    def classify(transcript, subject, has_attachment, today):
        if "x@example.com" in transcript:
            raise TransientExternalError("classifier timeout")
        return analysis(ThreadStatus.INBOUND_REQUEST)

    classifier.classify.side_effect = classify
    processor = make_processor(tmp_path, mail, classifier=classifier)

    summary = processor.run(SETTINGS, now=NOW)

    assert summary.failures == 1
    assert summary.replies_sent == 1
    assert not processor.ledger.contains("bad")
    assert processor.ledger.contains("good")


def test_no_free_slots_sends_nothing(tmp_path):
    whole_horizon = BusyEvent(start=NOW - timedelta(days=1), end=NOW + timedelta(days=30))
    mail = FakeMail([thread("t1", "bob@example.com")])
    classifier = Mock()
    classifier.classify.return_value = analysis(ThreadStatus.INBOUND_REQUEST)
    processor = make_processor(tmp_path, mail, calendar=FakeCalendar([whole_horizon]), classifier=classifier)

    summary = processor.run(SETTINGS, now=NOW)

    assert mail.sent == []
    assert processor.labels.labels_for("t1") == set()
    assert processor.ledger.contains("t1")
    assert summary.replies_sent == 0


def test_thread_last_answered_by_user_is_marked_without_reply(tmp_path):
    mail = FakeMail([thread("t1", "bob@example.com", ME)])
    classifier = Mock()
    classifier.classify.return_value = analysis(ThreadStatus.INBOUND_REQUEST)
    processor = make_processor(tmp_path, mail, classifier=classifier)

    summary = processor.run(SETTINGS, now=NOW)

    assert summary.captured == 1
    assert mail.sent == []
    assert processor.ledger.contains("t1")
    assert processor.labels.labels_for("t1") == set()


def test_unexpected_error_does_not_abort_either_pass(tmp_path):
    labels = InMemoryLabelStore()
    labels.add("t3", ThreadLabel.AWAITING)
    waiting = thread("t3", "carol@example.com", ME, "carol@example.com")
    mail = FakeMail([thread("bad", "x@example.com"), thread("good", "bob@example.com")])
    mail.threads["t3"] = waiting
    classifier = Mock()

    def classify(transcript, subject, has_attachment, today):
        if "x@example.com" in transcript:
            raise TypeError("'int' object is not iterable")
        if "carol@example.com" in transcript:
            return analysis(ThreadStatus.NO_AGREEMENT)
        return analysis(ThreadStatus.INBOUND_REQUEST)

    classifier.classify.side_effect = classify
    processor = make_processor(tmp_path, mail, classifier=classifier, labels=labels)

    summary = processor.run(SETTINGS, now=NOW)

    assert summary.failures == 1
    assert summary.replies_sent == 1
    assert labels.labels_for("t3") == {ThreadLabel.NEEDS_FOLLOW_UP}


def awaiting_setup(tmp_path, mail_thread, classifier_result, calendar=None):
    labels = InMemoryLabelStore()
    labels.add(mail_thread.thread_id, ThreadLabel.AWAITING)
    mail = FakeMail(threads={mail_thread.thread_id: mail_thread})
    classifier = Mock()
    classifier.classify.return_value = classifier_result
    calendar = calendar or FakeCalendar()
    processor = make_processor(tmp_path, mail, calendar=calendar, classifier=classifier, labels=labels)
    return processor, calendar, labels, classifier


def test_agreement_books_event_and_marks_scheduled(tmp_path):
    processor, calendar, labels, _ = awaiting_setup(
        tmp_path, thread("t1", "bob@example.com", ME, "bob@example.com"), agreement()
    )

    summary = processor.run(SETTINGS, now=NOW)

    assert summary.scheduled == 1
    title, start, end, guests = calendar.created[0]
    assert title == "Coffee chat"
    assert start == TZ.localize(datetime(2026, 10, 21, 14, 0))
    assert end - start == timedelta(minutes=30)
    assert guests == {"bob@example.com"}
    assert labels.labels_for("t1") == {ThreadLabel.SCHEDULED}


def test_no_reply_yet_keeps_awaiting(tmp_path):
    processor, calendar, labels, classifier = awaiting_setup(
        tmp_path, thread("t1", "bob@example.com", ME), agreement()
    )

    processor.run(SETTINGS, now=NOW)

    classifier.classify.assert_not_called()
    assert labels.labels_for("t1") == {ThreadLabel.AWAITING}
    assert calendar.created == []


def test_existing_invite_is_not_duplicated(tmp_path):
    processor, calendar, labels, _ = awaiting_setup(
        tmp_path, thread("t1", "bob@example.com", ME, "bob@example.com"),
        agreement(calendar_invite_sent=True)
    )

    summary = processor.run(SETTINGS, now=NOW)

    assert calendar.created == []
    assert summary.scheduled == 1
    assert labels.labels_for("t1") == {ThreadLabel.SCHEDULED}


def test_invite_failure_leaves_thread_unlabeled(tmp_path):
    processor, calendar, labels, _ = awaiting_setup(
        tmp_path, thread("t1", "bob@example.com", ME, "bob@example.com"), agreement(),
        calendar=FakeCalendar(fail_create=True)
    )

    summary = processor.run(SETTINGS, now=NOW)

    assert summary.failures == 1
    assert summary.scheduled == 0
    assert labels.labels_for("t1") == set()


def test_reply_without_agreement_needs_follow_up(tmp_path):
    processor, calendar, labels, _ = awaiting_setup(
        tmp_path, thread("t1", "bob@example.com", ME, "bob@example.com"),
        analysis(ThreadStatus.NO_AGREEMENT)
    )

    processor.run(SETTINGS, now=NOW)

    assert labels.labels_for("t1") == {ThreadLabel.NEEDS_FOLLOW_UP}
    assert calendar.created == []


def test_counterpart_replied():
    assert counterpart_replied(thread("t", "bob@example.com", ME, "bob@example.com"), ME)
    assert not counterpart_replied(thread("t", "bob@example.com", ME), ME)
    assert not counterpart_replied(thread("t", ME, "Me@Example.com"), ME)
    assert counterpart_replied(thread("t", "bob@example.com"), ME)


def test_meeting_title_falls_back_to_subject():
    mail_thread = thread("t", "bob@example.com", subject="Re: RE: Roadmap sync")

    assert meeting_title_for(analysis(ThreadStatus.AGREEMENT_REACHED,
                                      agreed_time=AgreedTime("2026-10-21T14:00:00", "2026-10-21T14:30:00"),
                                      meeting_title=""), mail_thread) == "Roadmap sync"
