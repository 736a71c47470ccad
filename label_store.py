"""
Thread label store

Thread phase markers live outside the core. The processor sees them as a
plain mapping of thread id to a set of ThreadLabel values.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Set

from agent_config import LABEL_NAMES
from thread_models import ThreadLabel

logger = logging.getLogger(__name__)


class ThreadLabelStore(ABC):
    """Key-value interface: thread id -> set of markers."""

    @abstractmethod
    def labels_for(self, thread_id: str) -> Set[ThreadLabel]:
        pass

    @abstractmethod
    def add(self, thread_id: str, label: ThreadLabel) -> None:
        pass

    @abstractmethod
    def remove(self, thread_id: str, label: ThreadLabel) -> None:
        pass

    @abstractmethod
    def threads_with(self, label: ThreadLabel, max_count: int) -> List[str]:
        pass

    def clear(self, thread_id: str) -> None:
        """Remove every scheduler marker from a thread."""
        for label in self.labels_for(thread_id):
            self.remove(thread_id, label)


class GmailLabelStore(ThreadLabelStore):
    """Markers stored as Gmail labels."""

    def __init__(self, gmail, label_names: Dict[ThreadLabel, str] = None):
        self.gmail = gmail
        self.label_names = label_names or LABEL_NAMES

    def labels_for(self, thread_id):
        present = self.gmail.get_thread_labels(thread_id)
        return {label for label, name in self.label_names.items() if name in present}

    def add(self, thread_id, label):
        self.gmail.add_label(thread_id, self.label_names[label])
        logger.debug(f"Labelled thread {thread_id} as {label.value}")

    def remove(self, thread_id, label):
        self.gmail.remove_label(thread_id, self.label_names[label])
        logger.debug(f"Removed {label.value} from thread {thread_id}")

    def threads_with(self, label, max_count):
        return self.gmail.list_threads_by_label(self.label_names[label], max_count)


class InMemoryLabelStore(ThreadLabelStore):
    """Markers held in process memory, for dry runs and tests."""

    def __init__(self):
        self._labels: Dict[str, Set[ThreadLabel]] = {}

    def labels_for(self, thread_id):
        return set(self._labels.get(thread_id, set()))

    def add(self, thread_id, label):
        self._labels.setdefault(thread_id, set()).add(label)

    def remove(self, thread_id, label):
        self._labels.get(thread_id, set()).discard(label)

    def threads_with(self, label, max_count):
        return [thread_id for thread_id, labels in self._labels.items() if label in labels][:max_count]
