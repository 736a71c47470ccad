#!/usr/bin/env python3
"""
Scheduler Email Monitor

Polls the mailbox on a fixed interval and runs the autonomous scheduling
processor once per trigger. A missed or failed run is not retried; the next
trigger tries again.
"""

import logging
import sys
import time
from datetime import datetime, timedelta

import schedule

from agent_config import load_settings
from auto_processor import AutoProcessor
from calendar_functions import CalendarManager
from gmail_functions import GmailManager
from label_store import GmailLabelStore
from run_lock import RunLock
from scheduling_errors import ConfigurationError
from thread_classifier import ThreadClassifier
from thread_ledger import ThreadLedger

logger = logging.getLogger(__name__)


def build_processor(credentials_file='credentials.json'):
    """Wire the Gmail, Calendar and classifier collaborators into an AutoProcessor."""
    settings = load_settings()
    gmail = GmailManager(credentials_file=credentials_file)
    calendar = CalendarManager(credentials_file=credentials_file, timezone=settings.timezone)
    return AutoProcessor(
        mail=gmail,
        calendar=calendar,
        labels=GmailLabelStore(gmail),
        classifier=ThreadClassifier(),
        ledger=ThreadLedger(),
        lock=RunLock()
    )


class AgentEmailMonitor:
    """Interval monitor driving the autonomous scheduling processor"""

    def __init__(self, processor, check_interval_minutes=2):
        """
        Initialize the email monitor.

        Args:
            processor: AutoProcessor to invoke on every trigger
            check_interval_minutes: How often to check for new emails
        """
        self.processor = processor
        self.check_interval = check_interval_minutes
        self.is_running = False
        self.run_count = 0

        logger.info(f"🔄 Scheduler Email Monitor initialized")
        logger.info(f"⏱️  Check interval: every {check_interval_minutes} minutes")

    def start_monitoring(self, duration_minutes=60):
        """
        Start monitoring.

        Args:
            duration_minutes: How long to monitor (0 = indefinite)
        """
        logger.info(f"🚀 Starting email monitoring...")
        logger.info(f"Duration: {duration_minutes} minutes" if duration_minutes > 0 else "Duration: indefinite")

        self.is_running = True
        start_time = datetime.now()

        schedule.every(self.check_interval).minutes.do(self.run_single_check)

        next_run_time = start_time.replace(second=0, microsecond=0) + timedelta(minutes=self.check_interval)
        logger.info(f"📅 Next scheduled check: {next_run_time.strftime('%H:%M:%S')}")

        self.run_single_check()

        try:
            while self.is_running:
                schedule.run_pending()
                time.sleep(10)

                if duration_minutes > 0:
                    elapsed = (datetime.now() - start_time).total_seconds() / 60
                    if elapsed >= duration_minutes:
                        self.stop_monitoring()
        except KeyboardInterrupt:
            logger.info("⏹️  Monitoring stopped by user")
            self.stop_monitoring()

    def stop_monitoring(self):
        """Stop the email monitoring"""
        self.is_running = False
        schedule.clear()
        logger.info(f"✅ Monitoring stopped after {self.run_count} runs")

    def run_single_check(self):
        """Run the processor once with a fresh settings snapshot"""
        self.run_count += 1
        logger.info(f"🔍 [{datetime.now().strftime('%H:%M:%S')}] Checking scheduling threads...")
        try:
            summary = self.processor.run(load_settings())
        except ConfigurationError as e:
            logger.error(f"❌ Run aborted, configuration problem: {e}")
            return None
        except Exception:
            # Keep the monitor alive; the next trigger runs again
            logger.exception("❌ Unhandled error during run")
            return None

        if summary.lock_acquired and (summary.replies_sent or summary.scheduled):
            logger.info(f"📬 Sent {summary.replies_sent} replies, scheduled {summary.scheduled} meetings")
        return summary


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )
    logging.getLogger('googleapiclient.discovery_cache').setLevel(logging.WARNING)

    try:
        processor = build_processor()
    except ConfigurationError as e:
        logger.error(f"❌ Cannot start: {e}")
        return 1

    if argv and argv[0] == "quick":
        AgentEmailMonitor(processor).run_single_check()
        return 0

    duration = int(argv[1]) if len(argv) > 1 else 30
    interval = int(argv[2]) if len(argv) > 2 else 2
    AgentEmailMonitor(processor, check_interval_minutes=interval).start_monitoring(duration_minutes=duration)
    return 0


if __name__ == "__main__":
    sys.exit(main())
