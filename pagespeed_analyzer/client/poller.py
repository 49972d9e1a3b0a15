# pagespeed_analyzer/client/poller.py
"""
Client-side submit-then-poll loop.

    idle -> submitting -> polling -> succeeded | failed | timed_out | cancelled
    submitting -> failed  (submit rejected or transport error)

A ``pending`` read is always retried. The loop stops on the first terminal
observation and never reads again afterwards. Waiting between polls is an
``Event.wait`` so ``cancel()`` wakes it immediately; cancelling only stops
this client, the server keeps running the job.
"""
import logging
import threading
from typing import Any, Callable, Dict, Optional

from pagespeed_analyzer.errors import (
    AnalysisFailedError,
    AnalysisTimeoutError,
    AnalyzerError,
)

logger = logging.getLogger(__name__)


class PollState:
    IDLE = "idle"
    SUBMITTING = "submitting"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    TERMINAL = frozenset({SUCCEEDED, FAILED, TIMED_OUT, CANCELLED})


class PollCancelled(AnalyzerError):
    def __init__(self, job_id):
        super().__init__(f"Polling of analysis {job_id} was cancelled")
        self.job_id = job_id


class AnalysisPoller:
    """
    One poller drives one job. ``client`` needs ``submit(url, device)`` and
    ``get_job(job_id)``; see ``AnalysisClient``.
    """

    def __init__(
        self,
        client,
        interval: float = 5.0,
        max_attempts: int = 60,
        cancel_event: Optional[threading.Event] = None,
        on_state_change: Optional[Callable[[str, str], None]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.client = client
        self.interval = interval
        self.max_attempts = max_attempts
        self._cancel = cancel_event or threading.Event()
        self._on_state_change = on_state_change
        self.state = PollState.IDLE
        self.attempts = 0
        self.job_id = None
        self.job: Optional[Dict[str, Any]] = None
        self.error: Optional[Exception] = None

    # --- state ---

    def _set_state(self, new_state: str) -> None:
        old, self.state = self.state, new_state
        logger.debug("poller %s -> %s (job %s)", old, new_state, self.job_id)
        if self._on_state_change:
            self._on_state_change(old, new_state)

    def _fail(self, state: str, exc: Exception):
        self.error = exc
        self._set_state(state)
        raise exc

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # --- protocol ---

    def run(self, url: str, device: str = "desktop") -> Dict[str, Any]:
        """Submit and wait for the terminal job. Returns the completed job."""
        if self.state != PollState.IDLE:
            raise RuntimeError(f"poller already used (state={self.state})")

        self._set_state(PollState.SUBMITTING)
        try:
            job_id = self.client.submit(url, device)
        except Exception as e:
            self._fail(PollState.FAILED, e)
        return self._poll_loop(job_id)

    def poll(self, job_id) -> Dict[str, Any]:
        """Wait for an already-submitted job."""
        if self.state != PollState.IDLE:
            raise RuntimeError(f"poller already used (state={self.state})")
        return self._poll_loop(job_id)

    def _poll_loop(self, job_id) -> Dict[str, Any]:
        self.job_id = job_id
        self._set_state(PollState.POLLING)

        while True:
            if self._cancel.is_set():
                self._fail(PollState.CANCELLED, PollCancelled(job_id))

            self.attempts += 1
            try:
                job = self.client.get_job(job_id)
            except Exception as e:
                # NotFoundError and transport errors end the loop
                self._fail(PollState.FAILED, e)

            self.job = job
            status = job.get("status")
            if status == "completed":
                self._set_state(PollState.SUCCEEDED)
                return job
            if status == "failed":
                self._fail(
                    PollState.FAILED,
                    AnalysisFailedError(job_id, job.get("errorMessage") or "Analysis failed"),
                )

            # pending (or anything non-terminal): wait and retry
            if self.attempts >= self.max_attempts:
                self._fail(PollState.TIMED_OUT, AnalysisTimeoutError(job_id, self.attempts))
            if self._cancel.wait(self.interval):
                self._fail(PollState.CANCELLED, PollCancelled(job_id))
