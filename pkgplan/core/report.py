"""
Reporting sinks

The executor tells a sink what it is doing and never reads anything back.
LoggingReportSink is the default; the CLI and tests use their own.
"""

import logging
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


class ReportSink:
    """Write-only receiver of plan summaries, warnings and progress.

    Every method is a no-op here, subclasses override what they need.
    """

    def plan_summary(self, plan, steps=None):
        """A plan is about to be executed (or simulated) in `steps` order."""

    def fetch_item(self, item):
        """An artifact will be fetched (print-URIs mode reports all of them)."""

    def progress(self, name: str, done: int, total: int):
        """Per-item progress, done/total in items or bytes."""

    def warning(self, message: str):
        pass

    def error(self, message: str):
        pass

    def message(self, message: str):
        pass


class LoggingReportSink(ReportSink):
    """Forward everything to the logging module."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def plan_summary(self, plan, steps=None):
        self.log.info(f"{len(plan.install)} to install/upgrade, {len(plan.delete)} to remove")
        for step in steps or []:
            self.log.info(f"  {step}")

    def fetch_item(self, item):
        self.log.info(f"'{item.uri}' {item.destination.name} {item.size} {item.checksum}")

    def progress(self, name: str, done: int, total: int):
        self.log.debug(f"{name}: {done}/{total}")

    def warning(self, message: str):
        self.log.warning(message)

    def error(self, message: str):
        self.log.error(message)

    def message(self, message: str):
        self.log.info(message)


class RecordingReportSink(ReportSink):
    """Keep every event in memory, in order."""

    def __init__(self):
        self.events: List[Tuple[str, object]] = []

    def plan_summary(self, plan, steps=None):
        self.events.append(('plan', list(steps or [])))

    def fetch_item(self, item):
        self.events.append(('fetch', item))

    def progress(self, name: str, done: int, total: int):
        self.events.append(('progress', (name, done, total)))

    def warning(self, message: str):
        self.events.append(('warning', message))

    def error(self, message: str):
        self.events.append(('error', message))

    def message(self, message: str):
        self.events.append(('message', message))

    def of_kind(self, kind: str) -> list:
        return [payload for k, payload in self.events if k == kind]
