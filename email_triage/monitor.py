from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import MonitoringConfig
from .mail_client import EmailMessage, MailClient
from .triage import categorize_and_label
from .utils import parse_date, utc_now

logger = logging.getLogger("email_triage.monitor")

DEFAULT_LOOKBACK = timedelta(hours=1)


class EmailMonitor:
    """Poll the mailbox every `poll_interval` minutes and label new mail.

    "New" means dated strictly after the timestamp stored in the last-check
    file. `start()` blocks until `stop()` is called from another thread or a
    signal handler.
    """

    def __init__(
        self,
        client: MailClient,
        categorizer: Any,
        config: MonitoringConfig,
        last_check_path: Optional[Path] = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.client = client
        self.categorizer = categorizer
        self.config = config
        self.last_check_path = Path(last_check_path or config.last_check_path)
        self._now = now
        self._stop = threading.Event()
        self.is_running = False
        self.next_check: Optional[datetime] = None

    @property
    def interval_seconds(self) -> float:
        return float(self.config.poll_interval) * 60

    def start(self) -> None:
        if self.is_running:
            logger.info("Email monitor is already running")
            return

        self.is_running = True
        self._stop.clear()
        logger.info("Starting email monitor (checking every %s minutes)", self.config.poll_interval)
        try:
            self._safe_check()
            while not self._stop.is_set():
                self.next_check = self._now() + timedelta(seconds=self.interval_seconds)
                if self._stop.wait(self.interval_seconds):
                    break
                self._safe_check()
        finally:
            self.is_running = False
            self.next_check = None
            logger.info("Email monitor stopped")

    def stop(self) -> None:
        self._stop.set()

    def _safe_check(self) -> None:
        try:
            self.check_for_new_emails()
        except Exception as exc:
            logger.error("Error during email check: %s", exc)

    def check_for_new_emails(self) -> Dict[str, Any]:
        if self.config.log_activity:
            logger.info("Checking for new emails...")

        since = self.get_last_check_time()
        new_emails = self.get_emails_since(since)
        if not new_emails:
            if self.config.log_activity:
                logger.info("No new emails found")
            self.update_last_check_time()
            return {"fetched": 0, "stats": {}, "applied": {}, "failed": {}}

        logger.info("Found %d new email(s) - categorizing...", len(new_emails))
        result = categorize_and_label(self.client, self.categorizer, new_emails)
        self.update_last_check_time()
        logger.info(
            "Next check at %s",
            (self._now() + timedelta(seconds=self.interval_seconds)).strftime("%H:%M:%S"),
        )
        return result

    def get_emails_since(self, since: datetime) -> List[EmailMessage]:
        # Over-fetch so a busy inbox does not hide mail received since the last check.
        recent = self.client.get_messages(self.config.max_emails_per_check * 2)
        newer = []
        for email in recent:
            received = parse_date(email.date)
            if received is not None and received > since:
                newer.append(email)
        return newer[: self.config.max_emails_per_check]

    def get_last_check_time(self) -> datetime:
        try:
            raw = self.last_check_path.read_text(encoding="utf-8").strip()
        except OSError:
            raw = ""
        parsed = parse_date(raw)
        if parsed is None:
            return self._now() - DEFAULT_LOOKBACK
        return parsed

    def update_last_check_time(self) -> None:
        self.last_check_path.parent.mkdir(parents=True, exist_ok=True)
        self.last_check_path.write_text(self._now().isoformat(), encoding="utf-8")

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "next_check": self.next_check.isoformat() if self.next_check else None,
            "config": {
                "poll_interval": self.config.poll_interval,
                "max_emails_per_check": self.config.max_emails_per_check,
                "log_activity": self.config.log_activity,
            },
        }
