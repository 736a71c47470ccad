"""
Processed Thread Ledger

Bounded record of threads the autonomous processor has already acted on.
Newest entries come first; once capacity is exceeded the oldest are dropped.
"""

import json
import logging
import os
from datetime import datetime
from typing import List

from agent_config import LEDGER_CAPACITY, LEDGER_FILE

logger = logging.getLogger(__name__)


class ThreadLedger:

    def __init__(self, ledger_file: str = LEDGER_FILE, capacity: int = LEDGER_CAPACITY):
        self.ledger_file = ledger_file
        self.capacity = capacity
        self._entries: List[str] = []

    def __len__(self):
        return len(self._entries)

    @property
    def entries(self) -> List[str]:
        return list(self._entries)

    def contains(self, thread_id: str) -> bool:
        return thread_id in self._entries

    def mark_processed(self, thread_id: str) -> None:
        if thread_id in self._entries:
            return
        self._entries.insert(0, thread_id)
        if len(self._entries) > self.capacity:
            evicted = len(self._entries) - self.capacity
            del self._entries[self.capacity:]
            logger.debug(f"Evicted {evicted} oldest ledger entries")

    def load(self) -> None:
        """Load processed thread IDs from persistent JSON storage"""
        self._entries = []
        if not os.path.exists(self.ledger_file):
            logger.info("No ledger file found - starting with empty ledger")
            return

        try:
            with open(self.ledger_file, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading thread ledger, starting empty: {e}")
            return

        entries = data.get('processed_threads', []) if isinstance(data, dict) else []
        for thread_id in entries:
            if isinstance(thread_id, str) and thread_id not in self._entries:
                self._entries.append(thread_id)
        del self._entries[self.capacity:]
        logger.info(f"Loaded {len(self._entries)} processed thread IDs from storage")

    def save(self) -> None:
        """Save processed thread IDs to persistent JSON storage"""
        data = {
            'processed_threads': self._entries,
            'last_updated': datetime.now().astimezone().isoformat()
        }
        with open(self.ledger_file, 'w') as f:
            json.dump(data, f, indent=2)
        logger.debug(f"Saved {len(self._entries)} processed thread IDs to storage")
