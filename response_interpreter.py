"""
Response Interpreter

Maps a user's free-text answer to one of several candidate times.
"""

import logging
from typing import Sequence

from scheduling_errors import SchedulingError, ValidationError
from thread_models import ProposedTimeCheck

logger = logging.getLogger(__name__)

GENERIC_AFFIRMATIVES = frozenset({
    "ok", "okay", "k", "yes", "yep", "yeah", "sure", "fine", "great", "perfect",
    "sounds good", "sounds great", "sounds perfect", "that works", "that works for me",
    "works for me", "works", "either works", "any works", "go ahead", "book it",
    "do it", "lgtm", "looks good", "first one", "the first one",
})


def is_generic_affirmative(user_text: str) -> bool:
    normalized = (user_text or "").strip().lower().rstrip(".!")
    return not normalized or normalized in GENERIC_AFFIRMATIVES


def default_choice(candidates: Sequence[ProposedTimeCheck]) -> int:
    """First free candidate, else the first candidate"""
    for index, candidate in enumerate(candidates):
        if candidate.is_free:
            return index
    return 0


class ResponseInterpreter:

    def __init__(self, classifier):
        self.classifier = classifier

    def interpret(self, user_text: str, candidates: Sequence[ProposedTimeCheck]) -> int:
        """
        Return the zero-based index of the candidate the user picked.

        Empty text and generic affirmatives never reach the classifier. Any
        classifier failure or out-of-range answer falls back to default_choice.
        """
        if not candidates:
            raise ValidationError("No candidate times to choose from")

        if is_generic_affirmative(user_text):
            return default_choice(candidates)

        try:
            raw_index = self.classifier.choose_candidate(
                user_text, [candidate.proposed_time.display_text for candidate in candidates]
            )
        except SchedulingError as e:
            logger.warning(f"Candidate selection failed, using default choice: {e}")
            return default_choice(candidates)

        if isinstance(raw_index, bool):
            raw_index = None
        try:
            index = int(raw_index)
        except (TypeError, ValueError):
            logger.warning(f"Unparseable candidate index {raw_index!r}, using default choice")
            return default_choice(candidates)

        if 0 <= index < len(candidates):
            return index
        logger.warning(f"Candidate index {index} out of range, using default choice")
        return default_choice(candidates)
