#!/usr/bin/env python3
"""
Test Gmail thread parsing, threaded replies and label management
"""

import base64
import email
from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError
from httplib2 import Response

from gmail_functions import GmailManager
from label_store import GmailLabelStore
from scheduling_errors import TransientExternalError
from thread_models import ThreadLabel


def encode(text):
    return base64.urlsafe_b64encode(text.encode()).decode()


def gmail_message(message_id, sender, body, subject="Coffee?", extra_parts=()):
    return {
        'id': message_id,
        'threadId': 'thread-1',
        'payload': {
            'mimeType': 'multipart/mixed',
            'headers': [
                {'name': 'From', 'value': sender},
                {'name': 'Subject', 'value': subject},
                {'name': 'Date', 'value': 'Mon, 19 Oct 2026 10:00:00 -0400'},
            ],
            'parts': [
                {'mimeType': 'text/html', 'body': {'data': encode('<p>html</p>')}},
                {'mimeType': 'text/plain', 'body': {'data': encode(body)}},
                *extra_parts,
            ],
        },
    }


def manager():
    service = MagicMock()
    return GmailManager(service=service), service.users.return_value


def test_get_thread_parses_messages():
    gmail, users = manager()
    invite_part = {'mimeType': 'application/ics', 'filename': 'invite.ics', 'body': {}}
    users.threads.return_value.get.return_value.execute.return_value = {
        'messages': [
            gmail_message('m1', 'Bob Smith <Bob@Example.com>', 'Can we meet Tuesday?'),
            gmail_message('m2', 'me@example.com', 'Sure', extra_parts=[invite_part]),
        ]
    }

    thread = gmail.get_thread('thread-1')

    assert thread.subject == 'Coffee?'
    assert [m.sender for m in thread.messages] == ['bob@example.com', 'me@example.com']
    assert thread.messages[0].body == 'Can we meet Tuesday?'
    assert not thread.messages[0].has_calendar_attachment
    assert thread.has_calendar_attachment
    assert thread.latest_message.message_id == 'm2'


def test_send_reply_keeps_threading_headers():
    gmail, users = manager()
    users.messages.return_value.get.return_value.execute.return_value = {
        'threadId': 'thread-1',
        'payload': {'headers': [
            {'name': 'From', 'value': 'bob@example.com'},
            {'name': 'Subject', 'value': 'Coffee?'},
            {'name': 'Message-ID', 'value': '<abc@mail>'},
        ]},
    }

    gmail.send_reply('m1', 'Here are some times')

    body = users.messages.return_value.send.call_args.kwargs['body']
    assert body['threadId'] == 'thread-1'
    sent = email.message_from_bytes(base64.urlsafe_b64decode(body['raw']))
    assert sent['To'] == 'bob@example.com'
    assert sent['Subject'] == 'Re: Coffee?'
    assert sent['In-Reply-To'] == '<abc@mail>'
    assert sent['References'] == '<abc@mail>'


def test_add_label_creates_missing_label():
    gmail, users = manager()
    users.labels.return_value.list.return_value.execute.return_value = {'labels': []}
    users.labels.return_value.create.return_value.execute.return_value = {'id': 'Label_9'}

    gmail.add_label('thread-1', 'Scheduler/Awaiting')

    users.threads.return_value.modify.assert_called_with(
        userId='me', id='thread-1', body={'addLabelIds': ['Label_9']}
    )


def test_remove_unknown_label_is_noop():
    gmail, users = manager()
    users.labels.return_value.list.return_value.execute.return_value = {'labels': []}

    gmail.remove_label('thread-1', 'Scheduler/Awaiting')

    users.threads.return_value.modify.assert_not_called()


def test_list_threads_by_label():
    gmail, users = manager()
    users.labels.return_value.list.return_value.execute.return_value = {
        'labels': [{'name': 'Scheduler/Awaiting', 'id': 'Label_1'}]
    }
    users.threads.return_value.list.return_value.execute.return_value = {
        'threads': [{'id': 't1'}, {'id': 't2'}]
    }

    assert gmail.list_threads_by_label('Scheduler/Awaiting', 30) == ['t1', 't2']
    users.threads.return_value.list.assert_called_with(userId='me', labelIds=['Label_1'], maxResults=30)


def test_http_error_becomes_transient():
    gmail, users = manager()
    users.threads.return_value.get.return_value.execute.side_effect = HttpError(Response({'status': 500}), b'boom')

    with pytest.raises(TransientExternalError):
        gmail.get_thread('thread-1')


def test_gmail_label_store_maps_markers():
    gmail = MagicMock()
    gmail.get_thread_labels.return_value = {'Scheduler/Awaiting', 'INBOX'}
    store = GmailLabelStore(gmail)

    assert store.labels_for('t1') == {ThreadLabel.AWAITING}

    store.clear('t1')
    gmail.remove_label.assert_called_once_with('t1', 'Scheduler/Awaiting')
