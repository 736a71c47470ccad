"""
Reply Templates

Plain-text bodies for the replies the scheduler sends.
"""

from typing import Sequence

from scheduling_errors import ValidationError
from thread_models import FreeSlot


def availability_reply(slots: Sequence[FreeSlot], sign_off_name: str = "",
                       meeting_title: str = "") -> str:
    """
    Offer free slots to the counterpart.

    Raises:
        ValidationError: If there are no slots to offer
    """
    if not slots:
        raise ValidationError("No free slots to offer")

    topic = f" for {meeting_title}" if meeting_title else ""
    lines = [
        "Hi,",
        "",
        f"Thanks for reaching out. Here are a few times that work{topic}:",
        "",
    ]
    lines.extend(f"  • {slot.display_text}" for slot in slots)
    lines.extend([
        "",
        "Let me know which one suits you and I'll send an invite.",
    ])
    if sign_off_name:
        lines.extend(["", "Best,", sign_off_name])
    return "\n".join(lines)


def thread_transcript(thread) -> str:
    """Render a MailThread oldest-first for the classifier"""
    parts = []
    for message in thread.messages:
        parts.append(f"From: {message.sender}\nDate: {message.date}\n\n{message.body.strip()}")
    return "\n\n---\n\n".join(parts)
