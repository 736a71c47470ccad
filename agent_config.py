#!/usr/bin/env python3
"""
Scheduler Agent Configuration
Resource caps, business hours and the per-run settings snapshot
"""

from dataclasses import dataclass
from typing import Dict
import os

from thread_models import ThreadLabel

# Availability search
SEARCH_HORIZON_DAYS = 21
BUSINESS_OPEN_HOUR = 9
BUSINESS_CLOSE_HOUR = 17
SAME_DAY_CUTOFF_HOUR = 15
MAX_SLOT_DISPLAY_MINUTES = 180
DEFAULT_SLOT_COUNT = 3
DEFAULT_MEETING_MINUTES = 30
DEFAULT_TIMEZONE = "America/New_York"

# Duplicate invite detection window (either side of the agreed start)
INVITE_SEARCH_WINDOW_MINUTES = 60

# Autonomous processing caps
LEDGER_CAPACITY = 150
LABEL_SCAN_PAGE_SIZE = 30
UNREAD_PAGE_SIZE = 20
UNREAD_RECENCY_DAYS = 3
LOCK_WAIT_SECONDS = 3.0
LOCK_POLL_SECONDS = 0.25

# Local state files
LEDGER_FILE = os.getenv("SCHEDULER_LEDGER_FILE", "processed_threads.json")
LOCK_FILE = os.getenv("SCHEDULER_LOCK_FILE", "auto_processor.lock")

# Gmail label names backing each thread marker
LABEL_NAMES: Dict[ThreadLabel, str] = {
    ThreadLabel.AWAITING: os.getenv("LABEL_AWAITING", "Scheduler/Awaiting"),
    ThreadLabel.NEEDS_FOLLOW_UP: os.getenv("LABEL_NEEDS_FOLLOW_UP", "Scheduler/NeedsFollowUp"),
    ThreadLabel.SCHEDULED: os.getenv("LABEL_SCHEDULED", "Scheduler/Scheduled"),
}


@dataclass(frozen=True)
class SettingsSnapshot:
    """Read-only user settings, loaded once per invocation"""
    auto_mode_enabled: bool = False
    sign_off_name: str = ""
    timezone: str = DEFAULT_TIMEZONE


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> SettingsSnapshot:
    """Get the settings snapshot from environment variables"""
    return SettingsSnapshot(
        auto_mode_enabled=_env_flag("AUTO_MODE_ENABLED"),
        sign_off_name=os.getenv("SIGN_OFF_NAME", "").strip(),
        timezone=os.getenv("USER_TIMEZONE", DEFAULT_TIMEZONE),
    )


if __name__ == "__main__":
    settings = load_settings()
    print("🔧 Scheduler Agent Configuration")
    print("=" * 40)
    print(f"Auto mode: {'on' if settings.auto_mode_enabled else 'off'}")
    print(f"Sign-off: {settings.sign_off_name or '(none)'}")
    print(f"Timezone: {settings.timezone}")
    print(f"Search horizon: {SEARCH_HORIZON_DAYS} days, ledger capacity: {LEDGER_CAPACITY}")
