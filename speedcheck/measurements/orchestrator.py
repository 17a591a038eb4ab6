"""Sequences the ping, download and upload phases of one test run."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from ..config import LatencyConfig, ThroughputConfig
from ..errors import ConnectFailure, SpeedcheckError
from .latency import LatencyProber
from .models import (
    KIND_DOWNLOAD,
    KIND_PING,
    KIND_UPLOAD,
    PHASE_CANCELLED,
    PHASE_COMPLETE,
    PHASE_DOWNLOAD,
    PHASE_FAILED,
    PHASE_PING,
    PHASE_UPLOAD,
    REPORT_CANCELLED,
    REPORT_COMPLETE,
    REPORT_FAILED,
    REPORT_PARTIAL_FAILURE,
    STATUS_CANCELLED,
    STATUS_COMPLETE,
    STATUS_FAILED,
    PhaseEvent,
    ProbeResult,
    SpeedTestReport,
    TestRunState,
)
from .payload import PayloadPool
from .throughput import ThroughputMeter

LOGGER = logging.getLogger(__name__)

PHASE_PROGRESS = {
    PHASE_PING: 20,
    PHASE_DOWNLOAD: 50,
    PHASE_UPLOAD: 80,
    PHASE_COMPLETE: 100,
    PHASE_FAILED: 100,
    PHASE_CANCELLED: 100,
}

EventListener = Callable[[PhaseEvent], None]


class TestOrchestrator:
    """
    Drives ``Idle -> Ping -> Download -> Upload -> Complete``.

    A failed phase is recorded and the run moves on. A hard transport fault
    (nothing could connect) ends the run as ``Failed``. Cancellation is
    honored at phase boundaries and, inside throughput phases, at chunk
    boundaries. Phases that never ran are reported as ``Skipped``. Failed
    phases are never retried here.
    """

    __test__ = False

    def __init__(
        self,
        transport,
        payload: PayloadPool,
        latency: LatencyConfig,
        throughput: ThroughputConfig,
        on_event: Optional[EventListener] = None,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.transport = transport
        self.payload = payload
        self.latency = latency
        self.throughput = throughput
        self.on_event = on_event
        self.clock = clock
        self.sleep = sleep
        self._lock = threading.Lock()
        self._state: Optional[TestRunState] = None

    @property
    def state(self) -> Optional[TestRunState]:
        return self._state

    def cancel(self) -> None:
        state = self._state
        if state is not None and not state.finished:
            LOGGER.info("Cancellation requested during %s phase", state.phase)
            state.request_cancel()

    def _transition(self, state: TestRunState, phase: str, result: Optional[ProbeResult] = None) -> None:
        state.phase = phase
        state.progress_percent = PHASE_PROGRESS[phase]
        LOGGER.debug("Phase -> %s (%d%%)", phase, state.progress_percent)
        if self.on_event is None:
            return
        try:
            self.on_event(PhaseEvent(phase=phase, progress_percent=state.progress_percent, result=result))
        except Exception:
            LOGGER.exception("Progress listener raised during %s transition", phase)

    def _run_ping(self, state: TestRunState) -> ProbeResult:
        prober = LatencyProber(
            self.transport,
            sample_timeout_ms=self.latency.sample_timeout_ms,
            clock=self.clock,
            sleep=self.sleep,
        )
        return prober.measure_latency(self.latency.sample_count, self.latency.inter_sample_delay_ms)

    def _meter(self, state: TestRunState) -> ThroughputMeter:
        return ThroughputMeter(
            self.transport,
            payload=self.payload,
            phase_timeout=self.throughput.phase_timeout_seconds,
            should_cancel=lambda: state.cancel_requested,
            clock=self.clock,
        )

    def _run_download(self, state: TestRunState) -> ProbeResult:
        return self._meter(state).measure_download(self.throughput.download_bytes, self.throughput.chunk_bytes)

    def _run_upload(self, state: TestRunState) -> ProbeResult:
        return self._meter(state).measure_upload(self.throughput.upload_bytes, self.throughput.chunk_bytes)

    def run(self) -> SpeedTestReport:
        with self._lock:
            if self._state is not None and not self._state.finished:
                raise RuntimeError("Test already in progress")
            state = TestRunState()
            self._state = state

        plan = [
            (PHASE_PING, KIND_PING, self._run_ping),
            (PHASE_DOWNLOAD, KIND_DOWNLOAD, self._run_download),
            (PHASE_UPLOAD, KIND_UPLOAD, self._run_upload),
        ]
        results: Dict[str, ProbeResult] = {}
        previous: Optional[ProbeResult] = None
        hard_fault = False
        cancelled = False

        try:
            for phase, kind, runner in plan:
                if state.cancel_requested:
                    cancelled = True
                    break
                self._transition(state, phase, previous)
                try:
                    previous = runner(state)
                except ConnectFailure as exc:
                    LOGGER.error("%s phase aborted, server unreachable: %s", phase, exc)
                    previous = ProbeResult(kind=kind, status=STATUS_FAILED, error=str(exc))
                    results[kind] = previous
                    hard_fault = True
                    break
                except SpeedcheckError as exc:
                    LOGGER.warning("%s phase failed: %s", phase, exc)
                    previous = ProbeResult(kind=kind, status=STATUS_FAILED, failed_count=1, error=str(exc))
                results[kind] = previous
                if previous.status == STATUS_CANCELLED:
                    cancelled = True
                    break
        except Exception:
            self._transition(state, PHASE_FAILED, previous)
            raise

        reason = "Run cancelled" if cancelled else "Run aborted"
        for _, kind, _ in plan:
            if kind not in results:
                results[kind] = ProbeResult.skipped(kind, reason)

        status = _report_status(results, hard_fault, cancelled)
        report = SpeedTestReport(
            ping=results[KIND_PING],
            download=results[KIND_DOWNLOAD],
            upload=results[KIND_UPLOAD],
            generated_at=datetime.now(timezone.utc),
            status=status,
        )
        final_phase = {
            REPORT_CANCELLED: PHASE_CANCELLED,
            REPORT_FAILED: PHASE_FAILED,
        }.get(status, PHASE_COMPLETE)
        self._transition(state, final_phase, previous)
        LOGGER.info("Speed test finished with status %s", status)
        return report


def _report_status(results: Dict[str, ProbeResult], hard_fault: bool, cancelled: bool) -> str:
    if cancelled:
        return REPORT_CANCELLED
    if hard_fault:
        return REPORT_FAILED
    completed = [result for result in results.values() if result.status == STATUS_COMPLETE]
    if len(completed) == len(results):
        return REPORT_COMPLETE
    if not completed:
        return REPORT_FAILED
    return REPORT_PARTIAL_FAILURE
