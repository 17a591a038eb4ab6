"""
Download and upload throughput measurement.

Warm-up policy, identical for both directions and for the server-side
footers: the first ``chunk_bytes`` of a transfer are not timed. The
measurement window opens the moment the cumulative byte count first reaches
``chunk_bytes`` and closes when the last byte is known to have arrived at
the receiver::

    throughput = (bytes_transferred - warmup_bytes) * 8 / window_seconds

For downloads that is the arrival of the last payload chunk. For uploads the
sender only knows a chunk has left its socket buffer, so the client window
closes when the server's acknowledgement comes back. The server-side
footers close their window at the last byte read or written.

Per-chunk samples are rates in bits per second, the same unit as the
headline figure. Nothing is clamped. A transfer that moves no bytes, or
none past the warm-up window, is a failure rather than a small positive
number.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Iterator, List, Optional

from ..errors import ConnectFailure, PhaseTimeoutError, ProtocolError, TransportError
from .models import (
    KIND_DOWNLOAD,
    KIND_UPLOAD,
    STATUS_CANCELLED,
    STATUS_COMPLETE,
    STATUS_FAILED,
    ProbeResult,
    Sample,
)
from .payload import PayloadPool
from .stats import summarize, throughput_bps

LOGGER = logging.getLogger(__name__)

DEFAULT_PHASE_TIMEOUT = 30.0


class TransferWindow:
    """Accumulates chunk arrivals for one transfer and applies the warm-up policy."""

    def __init__(self, chunk_bytes: int):
        self.warmup_target = chunk_bytes
        self.transferred = 0
        self.warmup_bytes = 0
        self.first_byte_at: Optional[float] = None
        self.window_start: Optional[float] = None
        self.last_at: Optional[float] = None
        self.samples: List[Sample] = []

    def record(self, size: int, now: float) -> None:
        """Register ``size`` bytes whose transfer completed at ``now``."""
        if size <= 0:
            return
        if self.first_byte_at is None:
            self.first_byte_at = now
        previous = self.last_at
        self.transferred += size
        if self.window_start is None:
            if self.transferred >= self.warmup_target:
                self.window_start = now
                self.warmup_bytes = self.transferred
        elif previous is not None and now > previous:
            self.samples.append(
                Sample(sequence=len(self.samples), value=size * 8 / (now - previous), timestamp_monotonic=now)
            )
        self.last_at = now

    def finish(self, now: float) -> None:
        """Close the window at ``now`` without adding bytes."""
        if self.last_at is not None and now > self.last_at:
            self.last_at = now

    @property
    def measured_bytes(self) -> int:
        return self.transferred - self.warmup_bytes if self.window_start is not None else 0

    @property
    def elapsed(self) -> Optional[float]:
        if self.last_at is None:
            return None
        if self.window_start is not None:
            return self.last_at - self.window_start
        return self.last_at - self.first_byte_at

    def result(self, kind: str, error: Optional[str] = None, cancelled: bool = False) -> ProbeResult:
        measured = self.measured_bytes
        elapsed = self.elapsed
        window_open = self.window_start is not None

        if error is None and not cancelled:
            if self.transferred == 0:
                error = "No bytes transferred"
            elif measured == 0:
                error = "Transfer ended inside the warm-up window"
            elif not elapsed or elapsed <= 0:
                error = "Elapsed time below clock resolution"

        if error is not None:
            status = STATUS_FAILED
        elif cancelled:
            status = STATUS_CANCELLED
        else:
            status = STATUS_COMPLETE

        bits_per_second = None
        if status != STATUS_FAILED and window_open and measured > 0 and elapsed and elapsed > 0:
            bits_per_second = throughput_bps(measured, elapsed)

        mean, low, high, stddev = summarize([sample.value for sample in self.samples])
        return ProbeResult(
            kind=kind,
            status=status,
            mean=mean,
            min=low,
            max=high,
            stddev=stddev,
            sample_count=len(self.samples),
            failed_count=1 if status == STATUS_FAILED else 0,
            samples=tuple(self.samples),
            bytes_transferred=self.transferred,
            warmup_bytes=self.warmup_bytes,
            measured_bytes=measured,
            elapsed_seconds=elapsed,
            bits_per_second=bits_per_second,
            error=error,
        )


def _validate(total_bytes: int, chunk_bytes: int) -> None:
    if total_bytes < 0:
        raise ProtocolError("total_bytes must not be negative")
    if chunk_bytes < 1:
        raise ProtocolError("chunk_bytes must be a positive integer")


class ThroughputMeter:
    """Run one download or upload transfer over ``transport`` and time it."""

    def __init__(
        self,
        transport,
        payload: Optional[PayloadPool] = None,
        phase_timeout: float = DEFAULT_PHASE_TIMEOUT,
        should_cancel: Optional[Callable[[], bool]] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.transport = transport
        self.payload = payload
        self.phase_timeout = phase_timeout
        self.should_cancel = should_cancel or (lambda: False)
        self.clock = clock

    def measure_download(self, total_bytes: int, chunk_bytes: int) -> ProbeResult:
        _validate(total_bytes, chunk_bytes)
        window = TransferWindow(chunk_bytes)
        started = self.clock()
        error = None
        cancelled = False

        stream = self.transport.download(total_bytes, chunk_bytes, self.phase_timeout)
        try:
            for chunk in stream:
                now = self.clock()
                window.record(len(chunk), now)
                if self.should_cancel():
                    cancelled = True
                    break
                if now - started > self.phase_timeout:
                    error = f"Download exceeded {self.phase_timeout:g}s ceiling"
                    break
        except ConnectFailure:
            if window.transferred == 0:
                raise
            error = "Connection lost"
        except (TransportError, PhaseTimeoutError, ProtocolError) as exc:
            error = str(exc)
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

        result = window.result(KIND_DOWNLOAD, error=error, cancelled=cancelled)
        _log_result(result)
        return result

    def measure_upload(self, total_bytes: int, chunk_bytes: int) -> ProbeResult:
        _validate(total_bytes, chunk_bytes)
        if self.payload is None:
            raise RuntimeError("Upload measurement needs a payload pool")
        window = TransferWindow(chunk_bytes)
        started = self.clock()
        aborted: List[str] = []
        cancelled = False

        def body() -> Iterator[bytes]:
            nonlocal cancelled
            for piece in self.payload.iter_chunks(total_bytes, chunk_bytes):
                yield bytes(piece)
                # Resumed only once the previous chunk has been handed to the socket
                now = self.clock()
                window.record(len(piece), now)
                if self.should_cancel():
                    cancelled = True
                    return
                if now - started > self.phase_timeout:
                    aborted.append(f"Upload exceeded {self.phase_timeout:g}s ceiling")
                    return

        error = None
        try:
            acknowledgement = self.transport.upload(body(), self.phase_timeout)
        except ConnectFailure:
            if window.transferred == 0:
                raise
            error = "Connection lost"
        except (TransportError, PhaseTimeoutError, ProtocolError) as exc:
            error = str(exc)
        else:
            window.finish(self.clock())
            received = acknowledgement.get("bytesTransferred")
            if received is not None and received != window.transferred:
                LOGGER.warning("Server acknowledged %s bytes, client sent %d", received, window.transferred)
            LOGGER.debug("Server-side upload measurement: %s", acknowledgement)
        if error is None and aborted:
            error = aborted[0]

        result = window.result(KIND_UPLOAD, error=error, cancelled=cancelled)
        _log_result(result)
        return result


def _log_result(result: ProbeResult) -> None:
    if result.status == STATUS_FAILED:
        LOGGER.warning(
            "%s failed after %d bytes: %s", result.kind, result.bytes_transferred, result.error
        )
        return
    LOGGER.info(
        "%s %s: %d bytes (%d timed) in %.3fs -> %.2f Mbps",
        result.kind,
        result.status.lower(),
        result.bytes_transferred,
        result.measured_bytes,
        result.elapsed_seconds or 0.0,
        (result.bits_per_second or 0.0) / 1_000_000,
    )
