#!/usr/bin/env python3
"""
Thread Classifier Client

Sends a thread transcript to an OpenAI-compatible chat completions endpoint
and parses the JSON reply into a ThreadAnalysis.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

import requests

from scheduling_errors import ConfigurationError, MalformedResponseError, TransientExternalError
from thread_models import AgreedTime, ProposedTime, ThreadAnalysis, ThreadStatus

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4o-mini"
REQUEST_TIMEOUT_SECONDS = 30

CLASSIFY_INSTRUCTIONS = (
    "You read email threads about meeting scheduling. Return one JSON object with keys: "
    "status (one of: " + ", ".join(status.value for status in ThreadStatus) + "), "
    "proposed_times (list of {proposed_by, display_text, start_iso or null}), "
    "agreed_time ({start_iso, end_iso, timezone, display_text} or null), "
    "participant_emails (list), calendar_invite_sent (bool), meeting_title, duration_minutes."
)

CHOOSE_INSTRUCTIONS = (
    "The user replied to a list of numbered candidate meeting times. "
    "Return JSON {\"index\": n} with the zero-based index of the time they chose."
)


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object from model output.

    Tries the whole text first, then the first balanced {...} block found in
    the surrounding text (code fences, commentary).

    Raises:
        MalformedResponseError: If neither attempt yields a JSON object
    """
    text = (text or '').strip()
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    start = text.find('{')
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for position in range(start, len(text)):
            char = text[position]
            if in_string:
                if escaped:
                    escaped = False
                elif char == '\\':
                    escaped = True
                elif char == '"':
                    in_string = False
            elif char == '"':
                in_string = True
            elif char == '{':
                depth += 1
            elif char == '}':
                depth -= 1
                if depth == 0:
                    try:
                        data = json.loads(text[start:position + 1])
                    except json.JSONDecodeError:
                        break
                    if isinstance(data, dict):
                        return data
                    break
        start = text.find('{', start + 1)

    raise MalformedResponseError(f"No JSON object in classifier output: {text[:100]!r}")


def parse_thread_analysis(data: Dict[str, Any]) -> ThreadAnalysis:
    """
    Build a ThreadAnalysis from the classifier's JSON payload.

    Raises:
        MalformedResponseError: If required fields are missing or inconsistent
    """
    try:
        status = ThreadStatus(data['status'])
    except (KeyError, ValueError, TypeError) as e:
        raise MalformedResponseError(f"Invalid status in classifier output: {data.get('status')!r}") from e

    proposed_times = []
    for item in data.get('proposed_times') or []:
        if not isinstance(item, dict):
            continue
        proposed_times.append(ProposedTime(
            proposed_by=str(item.get('proposed_by') or ''),
            display_text=str(item.get('display_text') or ''),
            start_iso=item.get('start_iso') or None
        ))

    agreed_time = None
    agreed = data.get('agreed_time')
    if isinstance(agreed, dict) and agreed.get('start_iso') and agreed.get('end_iso'):
        agreed_time = AgreedTime(
            start_iso=str(agreed['start_iso']),
            end_iso=str(agreed['end_iso']),
            timezone=str(agreed.get('timezone') or ''),
            display_text=str(agreed.get('display_text') or '')
        )

    try:
        duration_minutes = int(data.get('duration_minutes') or 30)
    except (TypeError, ValueError):
        duration_minutes = 30

    participants = data.get('participant_emails') or []
    if isinstance(participants, str):
        participants = [participants]
    if not isinstance(participants, list):
        raise MalformedResponseError(f"participant_emails must be a list, got {participants!r}")

    try:
        return ThreadAnalysis(
            status=status,
            proposed_times=tuple(proposed_times),
            agreed_time=agreed_time,
            participant_emails=frozenset(
                str(email).strip().lower() for email in participants
                if isinstance(email, str) and email.strip()
            ),
            calendar_invite_sent=bool(data.get('calendar_invite_sent', False)),
            meeting_title=str(data.get('meeting_title') or ''),
            duration_minutes=max(duration_minutes, 1)
        )
    except ValueError as e:
        raise MalformedResponseError(str(e)) from e


class ThreadClassifier:
    """Client for the external text-understanding service."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 api_url: Optional[str] = None, session=None):
        self.api_key = api_key or os.getenv("CLASSIFIER_API_KEY")
        if not self.api_key:
            raise ConfigurationError("CLASSIFIER_API_KEY is not set")
        self.model = model or os.getenv("CLASSIFIER_MODEL", DEFAULT_MODEL)
        self.api_url = api_url or os.getenv("CLASSIFIER_API_URL", DEFAULT_API_URL)
        self.session = session or requests.Session()

    def classify(self, thread_transcript: str, subject: str, has_attachment_signal: bool,
                 today: str) -> ThreadAnalysis:
        """
        Classify a thread transcript.

        Args:
            thread_transcript: Messages of the thread, oldest first
            subject: Thread subject line
            has_attachment_signal: True if any message carries a calendar attachment
            today: Current date in the user's timezone (YYYY-MM-DD)

        Raises:
            TransientExternalError: Transport failure
            MalformedResponseError: Output not parseable as a ThreadAnalysis
        """
        prompt = (
            f"Today: {today}\n"
            f"Subject: {subject}\n"
            f"Calendar attachment present: {'yes' if has_attachment_signal else 'no'}\n\n"
            f"{thread_transcript}"
        )
        content = self._complete(CLASSIFY_INSTRUCTIONS, prompt)
        analysis = parse_thread_analysis(extract_json_object(content))
        logger.debug(f"Classified '{subject}' as {analysis.status.value}")
        return analysis

    def choose_candidate(self, user_text: str, candidates: List[str]) -> Any:
        """Ask which numbered candidate the user's text refers to. Returns the raw index value."""
        numbered = "\n".join(f"{i}. {text}" for i, text in enumerate(candidates))
        content = self._complete(CHOOSE_INSTRUCTIONS, f"Candidates:\n{numbered}\n\nUser reply: {user_text}")
        return extract_json_object(content).get('index')

    def _complete(self, instructions: str, prompt: str) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": instructions},
                {"role": "user", "content": prompt}
            ],
            "temperature": 0,
            "response_format": {"type": "json_object"}
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        try:
            response = self.session.post(self.api_url, headers=headers, json=payload,
                                         timeout=REQUEST_TIMEOUT_SECONDS)
            response.raise_for_status()
            result = response.json()
        except requests.RequestException as e:
            raise TransientExternalError(f"Classifier request failed: {e}") from e
        except ValueError as e:
            raise MalformedResponseError(f"Classifier returned non-JSON envelope: {e}") from e

        try:
            content = result['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError("Classifier response has no message content") from e
        if not content:
            raise MalformedResponseError("Empty response from classifier")
        return content
