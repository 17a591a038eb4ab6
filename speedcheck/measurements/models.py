"""Shared dataclasses for measurements."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

KIND_PING = "Ping"
KIND_DOWNLOAD = "Download"
KIND_UPLOAD = "Upload"

STATUS_COMPLETE = "Complete"
STATUS_FAILED = "Failed"
STATUS_CANCELLED = "Cancelled"
STATUS_SKIPPED = "Skipped"

REPORT_COMPLETE = "Complete"
REPORT_PARTIAL_FAILURE = "PartialFailure"
REPORT_FAILED = "Failed"
REPORT_CANCELLED = "Cancelled"

PHASE_IDLE = "Idle"
PHASE_PING = "Ping"
PHASE_DOWNLOAD = "Download"
PHASE_UPLOAD = "Upload"
PHASE_COMPLETE = "Complete"
PHASE_FAILED = "Failed"
PHASE_CANCELLED = "Cancelled"

TERMINAL_PHASES = (PHASE_COMPLETE, PHASE_FAILED, PHASE_CANCELLED)


@dataclass(frozen=True)
class Sample:
    sequence: int
    value: float
    timestamp_monotonic: float


@dataclass(frozen=True)
class ProbeResult:
    """Aggregate over the samples of one test phase.

    Statistics are ``None`` whenever no sample succeeded. Sample values and
    the ``mean/min/max/stddev`` over them are milliseconds for ping probes and
    per-chunk rates in bits per second for download/upload probes, matching
    ``bits_per_second``. Throughput fields are only populated for
    download/upload probes, ``packet_loss`` only for ping probes.
    """

    kind: str
    status: str
    mean: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    stddev: Optional[float] = None
    sample_count: int = 0
    failed_count: int = 0
    samples: Tuple[Sample, ...] = ()
    bytes_transferred: int = 0
    warmup_bytes: int = 0
    measured_bytes: int = 0
    elapsed_seconds: Optional[float] = None
    bits_per_second: Optional[float] = None
    packet_loss: Optional[float] = None
    error: Optional[str] = None

    @property
    def attempted_count(self) -> int:
        return self.sample_count + self.failed_count

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_COMPLETE

    @property
    def jitter(self) -> Optional[float]:
        return self.stddev

    @classmethod
    def skipped(cls, kind: str, reason: str) -> "ProbeResult":
        return cls(kind=kind, status=STATUS_SKIPPED, error=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "status": self.status,
            "mean": self.mean,
            "min": self.min,
            "max": self.max,
            "stddev": self.stddev,
            "sampleCount": self.sample_count,
            "failedCount": self.failed_count,
            "samples": [sample.value for sample in self.samples],
            "bytesTransferred": self.bytes_transferred,
            "warmupBytes": self.warmup_bytes,
            "measuredBytes": self.measured_bytes,
            "elapsedSeconds": self.elapsed_seconds,
            "bitsPerSecond": self.bits_per_second,
            "packetLoss": self.packet_loss,
            "error": self.error,
        }


@dataclass(frozen=True)
class SpeedTestReport:
    ping: ProbeResult
    download: ProbeResult
    upload: ProbeResult
    generated_at: datetime
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "generatedAt": self.generated_at.isoformat(),
            "ping": self.ping.to_dict(),
            "download": self.download.to_dict(),
            "upload": self.upload.to_dict(),
        }


@dataclass(frozen=True)
class PhaseEvent:
    """One phase transition, pushed from the orchestrator to its listener."""

    phase: str
    progress_percent: int
    result: Optional[ProbeResult] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"phase": self.phase, "percent": self.progress_percent}
        if self.result is not None:
            data["result"] = self.result.to_dict()
        return data


@dataclass
class TestRunState:
    __test__ = False

    phase: str = PHASE_IDLE
    progress_percent: int = 0
    _cancel: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def request_cancel(self) -> None:
        self._cancel.set()

    @property
    def finished(self) -> bool:
        return self.phase in TERMINAL_PHASES
