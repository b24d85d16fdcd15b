"""
Scheduled incident detection.

One run walks every project, runs all detectors and opens at most one
incident per (project, trigger type) that is not already open. Projects are
processed sequentially and in isolation: a failure in one is logged and
counted, never propagated.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ai_incident_guard.config.loader import AppConfig
from .detectors import DETECTORS
from .incidents import draft_from_detection

logger = logging.getLogger(__name__)


@dataclass
class DetectionRunSummary:
    """Counters for one detection run."""
    projects_processed: int = 0
    projects_with_anomalies: int = 0
    incidents_created: int = 0
    incidents_skipped: int = 0
    failed_projects: List[str] = field(default_factory=list)
    duration_ms: float = 0.0


def _process_project(project_id: str, request_log, incidents, config: AppConfig, summary: DetectionRunSummary) -> None:
    results = [detector(project_id, request_log, config.detection) for detector in DETECTORS]
    triggered = [r for r in results if r is not None and r.triggered]
    if not triggered:
        return

    summary.projects_with_anomalies += 1
    for result in triggered:
        draft = draft_from_detection(project_id, result, config.detection)
        incident, created = incidents.create_if_no_open(draft)
        if created:
            summary.incidents_created += 1
            logger.info(
                "Incident %s opened for project %s (%s, %s)",
                incident.id, project_id, draft.trigger_type.value, draft.severity.value,
            )
        else:
            summary.incidents_skipped += 1
            logger.debug(
                "Open %s incident %s already exists for project %s",
                draft.trigger_type.value, incident.id, project_id,
            )


def run_scheduled_incident_detection(
    projects,
    request_log,
    incidents,
    config: AppConfig = AppConfig.default(),
) -> DetectionRunSummary:
    """Run every detector over every project and open new incidents.

    Never raises. If the project list itself cannot be read, the run ends
    with an empty summary.
    """
    started = time.perf_counter()
    summary = DetectionRunSummary()
    logger.info("Starting scheduled incident detection")

    try:
        project_ids = projects.list_all_project_ids()
    except Exception:
        logger.exception("Could not list projects for incident detection")
        project_ids = []

    for project_id in project_ids:
        try:
            _process_project(project_id, request_log, incidents, config, summary)
        except Exception:
            logger.exception("Incident detection failed for project %s", project_id)
            summary.failed_projects.append(project_id)
        finally:
            summary.projects_processed += 1

    summary.duration_ms = round((time.perf_counter() - started) * 1000, 2)
    logger.info(
        "Incident detection finished: %d projects, %d created, %d skipped, %d failed in %.0fms",
        summary.projects_processed, summary.incidents_created, summary.incidents_skipped,
        len(summary.failed_projects), summary.duration_ms,
    )
    return summary


class DetectionScheduler:
    """Run a detection job on a fixed interval in a background thread.

    The first run happens immediately on ``start()``. ``stop()`` wakes the
    thread and waits for the current run to finish.
    """

    def __init__(self, job: Callable[[], DetectionRunSummary], interval_seconds: float = 3600.0):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.job = job
        self.interval_seconds = interval_seconds
        self.last_summary: Optional[DetectionRunSummary] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Optional[DetectionRunSummary]:
        """Run the job now, in the calling thread."""
        with self._lock:
            try:
                self.last_summary = self.job()
            except Exception:
                logger.exception("Scheduled detection job failed")
                return None
            return self.last_summary

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="incident-detection", daemon=True)
        self._thread.start()
        logger.info("Detection scheduler started (every %ss)", self.interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Detection scheduler stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until ``stop()`` is called. Returns True once stopped."""
        return self._stop_event.wait(timeout)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval_seconds)
