"""
Google Calendar Operations Module

This module reads busy events for availability checks and creates meeting
invites on the user's primary calendar.
"""

import datetime
import logging
import pytz
from dateutil import parser
from googleapiclient.errors import HttpError

from agent_config import DEFAULT_TIMEZONE
from auth import get_authenticated_service
from scheduling_errors import TransientExternalError
from thread_models import BusyEvent

logger = logging.getLogger(__name__)


class CalendarManager:
    """Manages Google Calendar operations."""

    def __init__(self, credentials_file='credentials.json', timezone=DEFAULT_TIMEZONE,
                 service=None, calendar_id='primary'):
        """
        Initialize the CalendarManager.

        Args:
            credentials_file (str): Path to OAuth credentials file
            timezone (str): Timezone used for all-day events and new invites
            service: Prebuilt Calendar API resource (skips OAuth when given)
            calendar_id (str): Calendar to read and write
        """
        self.service = service or get_authenticated_service('calendar', 'v3', credentials_file)
        self.timezone = pytz.timezone(timezone)
        self.calendar_id = calendar_id

    def list_busy_events(self, window_start, window_end):
        """
        Retrieve events overlapping a time window.

        Args:
            window_start (datetime): Timezone-aware window start
            window_end (datetime): Timezone-aware window end

        Returns:
            list[BusyEvent]: Events in start order

        Raises:
            TransientExternalError: If the Calendar API call fails
        """
        events = []
        page_token = None
        try:
            while True:
                events_result = self.service.events().list(
                    calendarId=self.calendar_id,
                    timeMin=window_start.isoformat(),
                    timeMax=window_end.isoformat(),
                    singleEvents=True,
                    orderBy='startTime',
                    maxResults=250,
                    pageToken=page_token
                ).execute()

                events.extend(events_result.get('items', []))
                page_token = events_result.get('nextPageToken')
                if not page_token:
                    break
        except HttpError as e:
            logger.warning(f"HTTP Error retrieving events: {e}")
            raise TransientExternalError(f"Calendar list failed: {e}") from e

        busy_events = []
        for event in events:
            if event.get('status') == 'cancelled':
                continue
            busy_event = self._to_busy_event(event)
            if busy_event is not None:
                busy_events.append(busy_event)
        return busy_events

    def create_event(self, title, start_time, end_time, guest_emails=None, description=None):
        """
        Create a meeting invite and notify guests.

        Args:
            title (str): Event title
            start_time (datetime): Start time
            end_time (datetime): End time
            guest_emails (iterable): Attendee email addresses
            description (str): Event description

        Returns:
            str: The created event's id

        Raises:
            TransientExternalError: If the Calendar API call fails
        """
        event = {
            'summary': title,
            'start': {
                'dateTime': start_time.isoformat(),
                'timeZone': str(self.timezone),
            },
            'end': {
                'dateTime': end_time.isoformat(),
                'timeZone': str(self.timezone),
            },
        }

        if description:
            event['description'] = description
        if guest_emails:
            event['attendees'] = [{'email': email} for email in sorted(guest_emails)]

        try:
            created_event = self.service.events().insert(
                calendarId=self.calendar_id,
                body=event,
                sendUpdates='all'
            ).execute()
        except HttpError as e:
            logger.warning(f"HTTP Error creating event: {e}")
            raise TransientExternalError(f"Calendar insert failed: {e}") from e

        logger.info(f"Event created: {created_event.get('htmlLink')}")
        return created_event.get('id')

    def _parse_event_time(self, time_info):
        """Return (datetime, is_all_day) for an event start/end block."""
        if 'dateTime' in time_info:
            parsed = parser.isoparse(time_info['dateTime'])
            if parsed.tzinfo is None:
                parsed = self.timezone.localize(parsed)
            return parsed, False
        day = datetime.date.fromisoformat(time_info['date'])
        return self.timezone.localize(datetime.datetime.combine(day, datetime.time(0, 0))), True

    def _to_busy_event(self, event):
        try:
            start, is_all_day = self._parse_event_time(event['start'])
            end, _ = self._parse_event_time(event['end'])
        except (KeyError, ValueError) as e:
            logger.debug(f"Skipping event {event.get('id')} with unusable times: {e}")
            return None

        response_status = 'accepted'
        guest_emails = set()
        for attendee in event.get('attendees', []):
            if attendee.get('self'):
                response_status = attendee.get('responseStatus', response_status)
            elif attendee.get('email'):
                guest_emails.add(attendee['email'].lower())

        return BusyEvent(
            start=start,
            end=end,
            is_all_day=is_all_day,
            user_response_status=response_status,
            event_id=event.get('id', ''),
            summary=event.get('summary', ''),
            guest_emails=frozenset(guest_emails)
        )

    def format_event_summary(self, event):
        """
        Format a busy event for display.

        Args:
            event (BusyEvent): Event to format

        Returns:
            str: Formatted event summary
        """
        title = event.summary or 'No Title'
        start_time = event.start.astimezone(self.timezone)
        end_time = event.end.astimezone(self.timezone)

        if event.is_all_day:
            return f"{title}\n  {start_time.strftime('%Y-%m-%d')} (all day)"
        return (f"{title}\n  {start_time.strftime('%Y-%m-%d')} "
                f"{start_time.strftime('%I:%M %p')} - {end_time.strftime('%I:%M %p')}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    calendar = CalendarManager()
    now = datetime.datetime.now(calendar.timezone)

    print("Upcoming events:")
    for busy in calendar.list_busy_events(now, now + datetime.timedelta(days=1)):
        print(f"  {calendar.format_event_summary(busy)}")
