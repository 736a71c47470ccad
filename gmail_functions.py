"""
Gmail Operations Module

This module reads scheduling threads, sends threaded replies and manages the
labels that mark each thread's scheduling phase.
"""

import base64
import logging
from email.mime.text import MIMEText
from email.utils import parseaddr
from googleapiclient.errors import HttpError

from auth import get_authenticated_service
from scheduling_errors import TransientExternalError
from thread_models import MailMessage, MailThread

logger = logging.getLogger(__name__)


def _header(headers, name, default=''):
    return next((h['value'] for h in headers if h['name'].lower() == name), default)


class GmailManager:
    """Manages Gmail operations."""

    def __init__(self, credentials_file='credentials.json', service=None):
        """
        Initialize the GmailManager.

        Args:
            credentials_file (str): Path to OAuth credentials file
            service: Prebuilt Gmail API resource (skips OAuth when given)
        """
        self.service = service or get_authenticated_service('gmail', 'v1', credentials_file)
        self._label_ids = None
        self._user_email = None
        logger.debug("Gmail service initialized")

    def get_user_email(self):
        """Return the authenticated mailbox address, lowercased."""
        if self._user_email is None:
            try:
                profile = self.service.users().getProfile(userId='me').execute()
            except HttpError as e:
                raise TransientExternalError(f"Gmail profile lookup failed: {e}") from e
            self._user_email = profile['emailAddress'].lower()
        return self._user_email

    def search_unread(self, max_count=20, recency_days=3):
        """
        Get recent unread inbox threads.

        Args:
            max_count (int): Maximum number of threads to return
            recency_days (int): Only threads with activity in this many days

        Returns:
            list[MailThread]: Threads, newest first
        """
        query = f'is:unread in:inbox newer_than:{recency_days}d'
        try:
            results = self.service.users().threads().list(
                userId='me',
                q=query,
                maxResults=max_count
            ).execute()
        except HttpError as e:
            raise TransientExternalError(f"Gmail search failed: {e}") from e

        return [self.get_thread(thread['id']) for thread in results.get('threads', [])]

    def list_threads_by_label(self, label_name, max_count=30):
        """
        List thread ids carrying a label.

        Args:
            label_name (str): Gmail label display name
            max_count (int): Maximum number of threads to return

        Returns:
            list[str]: Thread ids; empty if the label does not exist yet
        """
        label_id = self._label_id(label_name, create=False)
        if label_id is None:
            return []
        try:
            results = self.service.users().threads().list(
                userId='me',
                labelIds=[label_id],
                maxResults=max_count
            ).execute()
        except HttpError as e:
            raise TransientExternalError(f"Gmail label scan failed: {e}") from e
        return [thread['id'] for thread in results.get('threads', [])]

    def get_thread(self, thread_id):
        """
        Fetch a full thread.

        Args:
            thread_id (str): Gmail thread ID

        Returns:
            MailThread: Thread with messages in chronological order
        """
        try:
            thread = self.service.users().threads().get(
                userId='me',
                id=thread_id,
                format='full'
            ).execute()
        except HttpError as e:
            raise TransientExternalError(f"Gmail thread fetch failed for {thread_id}: {e}") from e

        messages = thread.get('messages', [])
        subject = ''
        if messages:
            subject = _header(messages[0]['payload'].get('headers', []), 'subject', 'No Subject')
        return MailThread(
            thread_id=thread_id,
            subject=subject,
            messages=tuple(self.format_message(message) for message in messages)
        )

    def get_thread_labels(self, thread_id):
        """Return the label display names present on any message of a thread."""
        try:
            thread = self.service.users().threads().get(
                userId='me',
                id=thread_id,
                format='minimal'
            ).execute()
        except HttpError as e:
            raise TransientExternalError(f"Gmail thread fetch failed for {thread_id}: {e}") from e

        names_by_id = {label_id: name for name, label_id in self._labels().items()}
        label_ids = set()
        for message in thread.get('messages', []):
            label_ids.update(message.get('labelIds', []))
        return {names_by_id[label_id] for label_id in label_ids if label_id in names_by_id}

    def send_reply(self, message_id, body):
        """
        Reply to a specific message with proper Gmail threading.

        Args:
            message_id (str): ID of message to reply to
            body (str): Reply content

        Returns:
            dict: Sent message information
        """
        try:
            original_msg = self.service.users().messages().get(
                userId='me',
                id=message_id,
                format='metadata'
            ).execute()
        except HttpError as e:
            raise TransientExternalError(f"Gmail message fetch failed for {message_id}: {e}") from e

        headers = original_msg['payload'].get('headers', [])
        subject = _header(headers, 'subject', 'No Subject')
        reply_to = _header(headers, 'reply-to') or _header(headers, 'from')
        original_message_id = _header(headers, 'message-id')
        references = _header(headers, 'references')

        message = MIMEText(body)
        message['to'] = reply_to
        message['subject'] = subject if subject.lower().startswith('re:') else f"Re: {subject}"

        # Threading headers keep the reply in the counterpart's conversation
        if original_message_id:
            message['In-Reply-To'] = original_message_id
            message['References'] = f"{references} {original_message_id}".strip()

        raw_message = base64.urlsafe_b64encode(message.as_bytes()).decode()
        message_body = {'raw': raw_message, 'threadId': original_msg.get('threadId')}

        try:
            sent_message = self.service.users().messages().send(
                userId='me',
                body=message_body
            ).execute()
        except HttpError as e:
            raise TransientExternalError(f"Gmail send failed for {message_id}: {e}") from e

        logger.info(f"Reply sent to {reply_to} in thread {original_msg.get('threadId')}")
        return sent_message

    def add_label(self, thread_id, label_name):
        """Apply a label to every message of a thread, creating the label if needed."""
        label_id = self._label_id(label_name, create=True)
        self._modify_thread(thread_id, {'addLabelIds': [label_id]})

    def remove_label(self, thread_id, label_name):
        """Remove a label from a thread. A label that was never created is a no-op."""
        label_id = self._label_id(label_name, create=False)
        if label_id is None:
            return
        self._modify_thread(thread_id, {'removeLabelIds': [label_id]})

    def _modify_thread(self, thread_id, body):
        try:
            self.service.users().threads().modify(
                userId='me',
                id=thread_id,
                body=body
            ).execute()
        except HttpError as e:
            raise TransientExternalError(f"Gmail label update failed for {thread_id}: {e}") from e

    def _labels(self):
        if self._label_ids is None:
            try:
                results = self.service.users().labels().list(userId='me').execute()
            except HttpError as e:
                raise TransientExternalError(f"Gmail label list failed: {e}") from e
            self._label_ids = {label['name']: label['id'] for label in results.get('labels', [])}
        return self._label_ids

    def _label_id(self, label_name, create=False):
        labels = self._labels()
        if label_name in labels or not create:
            return labels.get(label_name)

        try:
            created = self.service.users().labels().create(
                userId='me',
                body={
                    'name': label_name,
                    'labelListVisibility': 'labelShow',
                    'messageListVisibility': 'show'
                }
            ).execute()
        except HttpError as e:
            raise TransientExternalError(f"Gmail label create failed for {label_name}: {e}") from e

        logger.info(f"Created Gmail label '{label_name}'")
        labels[label_name] = created['id']
        return created['id']

    def format_message(self, message):
        """
        Reduce a Gmail message to a MailMessage.

        Args:
            message (dict): Gmail message object

        Returns:
            MailMessage: Sender, date, body text and calendar attachment flag
        """
        payload = message.get('payload', {})
        headers = payload.get('headers', [])
        _, sender = parseaddr(_header(headers, 'from'))

        return MailMessage(
            message_id=message['id'],
            sender=sender.lower(),
            date=_header(headers, 'date'),
            body=self.extract_message_body(payload),
            has_calendar_attachment=self._has_calendar_part(payload)
        )

    def extract_message_body(self, payload):
        """
        Extract body text from message payload.

        Args:
            payload (dict): Message payload

        Returns:
            str: Extracted body text, plain text preferred over HTML
        """
        mime_type = payload.get('mimeType', '')
        data = payload.get('body', {}).get('data')

        if mime_type in ('text/plain', 'text/html') and data:
            return base64.urlsafe_b64decode(data).decode('utf-8', errors='replace')

        body = ''
        for part in payload.get('parts', []):
            if part.get('mimeType') == 'text/plain':
                text = self.extract_message_body(part)
                if text:
                    return text
            elif not body:
                body = self.extract_message_body(part)
        return body

    def _has_calendar_part(self, payload):
        if payload.get('mimeType') == 'text/calendar':
            return True
        if payload.get('filename', '').lower().endswith('.ics'):
            return True
        return any(self._has_calendar_part(part) for part in payload.get('parts', []))
