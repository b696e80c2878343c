"""Auto-submit scheduling.

Armed deadlines sit in a min-heap served by one worker thread, which also
runs a periodic sweep over the persisted deadlines. The heap only lives as
long as the process; the sweep covers anything it missed. Completion is
idempotent, so the worker and a sweep (or several server instances)
finishing the same exam is safe.
"""

import heapq
import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from exam_portal.errors import ExamError
from exam_portal.models import utcnow
from exam_portal.services import exam_service

logger = logging.getLogger(__name__)


class AutoSubmitScheduler:
    def __init__(self, session_factory: Callable[[], Session], sweep_interval: float = 30.0):
        self._session_factory = session_factory
        self.sweep_interval = sweep_interval
        # Heap entries whose deadline no longer matches _deadlines are stale
        self._heap: List[Tuple[datetime, int]] = []
        self._deadlines: Dict[int, datetime] = {}
        self._cond = threading.Condition()
        self._stopping = False
        self._worker: Optional[threading.Thread] = None

    # --- armed deadlines ---

    def arm(self, exam_id: int, deadline: datetime) -> None:
        """Complete ``exam_id`` at ``deadline`` (replaces any earlier deadline)."""
        with self._cond:
            self._deadlines[exam_id] = deadline
            heapq.heappush(self._heap, (deadline, exam_id))
            self._cond.notify()
        logger.debug("Armed auto-submit for exam %s at %s", exam_id, deadline)

    def cancel(self, exam_id: int) -> bool:
        """Best-effort cancel; returns False if nothing was armed."""
        with self._cond:
            return self._deadlines.pop(exam_id, None) is not None

    def pending(self) -> List[int]:
        with self._cond:
            return sorted(self._deadlines)

    def _pop_due(self, now: datetime) -> List[int]:
        due = []
        while self._heap and self._heap[0][0] <= now:
            deadline, exam_id = heapq.heappop(self._heap)
            if self._deadlines.get(exam_id) == deadline:
                del self._deadlines[exam_id]
                due.append(exam_id)
        return due

    def _fire(self, exam_id: int) -> None:
        try:
            with self._session_factory() as session:
                exam_service.auto_complete(session, exam_id, scheduler=self)
        except (ExamError, SQLAlchemyError):
            logger.exception("Auto-submit failed for exam %s", exam_id)

    # --- reconciliation ---

    def sweep(self, now: Optional[datetime] = None) -> List[int]:
        """Complete every overdue in-progress exam."""
        with self._session_factory() as session:
            return exam_service.complete_expired_exams(session, now=now, scheduler=self)

    def rearm_in_progress(self) -> int:
        """Arm deadlines for exams persisted as in-progress (after a restart)."""
        with self._session_factory() as session:
            exams = exam_service.list_in_progress_exams(session)
            for exam in exams:
                self.arm(exam.id, exam.deadline)
        return len(exams)

    # --- worker ---

    def _run(self) -> None:
        next_sweep = time.monotonic() + self.sweep_interval
        while True:
            with self._cond:
                while True:
                    if self._stopping:
                        return
                    due = self._pop_due(utcnow())
                    sweep_wait = next_sweep - time.monotonic()
                    if due or sweep_wait <= 0:
                        break
                    timeout = sweep_wait
                    if self._heap:
                        until_deadline = (self._heap[0][0] - utcnow()).total_seconds()
                        timeout = min(timeout, max(until_deadline, 0.0))
                    self._cond.wait(timeout)

            for exam_id in due:
                self._fire(exam_id)
            if time.monotonic() >= next_sweep:
                try:
                    self.sweep()
                except (ExamError, SQLAlchemyError):
                    logger.exception("Auto-submit sweep failed")
                next_sweep = time.monotonic() + self.sweep_interval

    def start(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        with self._cond:
            self._stopping = False
        self._worker = threading.Thread(
            target=self._run, name="auto-submit", daemon=True
        )
        self._worker.start()
        logger.info("Auto-submit worker running (sweep every %ss)", self.sweep_interval)

    def shutdown(self) -> None:
        with self._cond:
            self._stopping = True
            self._heap.clear()
            self._deadlines.clear()
            self._cond.notify_all()
        if self._worker is not None:
            self._worker.join(timeout=5)
            self._worker = None
