"""
Round-trip latency measurement.

Every sample is the wall-clock time from dispatching a minimal request until
its response has been fully read. Round trips that time out or finish after
the per-sample timeout count as failures and never enter the statistics.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, List

from ..errors import ConnectFailure, PhaseTimeoutError, ProtocolError, TransportError
from .models import KIND_PING, STATUS_COMPLETE, STATUS_FAILED, ProbeResult, Sample
from .stats import packet_loss, summarize

LOGGER = logging.getLogger(__name__)

DEFAULT_SAMPLE_TIMEOUT_MS = 2000


class LatencyProber:
    """Measure latency and jitter against a transport's round-trip target."""

    def __init__(
        self,
        transport,
        sample_timeout_ms: int = DEFAULT_SAMPLE_TIMEOUT_MS,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.transport = transport
        self.sample_timeout_ms = sample_timeout_ms
        self.clock = clock
        self.sleep = sleep

    def measure_latency(self, sample_count: int, inter_sample_delay_ms: int = 0) -> ProbeResult:
        if sample_count < 1:
            raise ProtocolError("sample_count must be a positive integer")
        if inter_sample_delay_ms < 0:
            raise ProtocolError("inter_sample_delay_ms must not be negative")

        timeout_s = self.sample_timeout_ms / 1000
        samples: List[Sample] = []
        failed = 0
        connect_failures = 0
        last_error = None

        for sequence in range(sample_count):
            if sequence and inter_sample_delay_ms:
                self.sleep(inter_sample_delay_ms / 1000)

            started = self.clock()
            try:
                self.transport.round_trip(timeout_s)
            except ConnectFailure as exc:
                failed += 1
                connect_failures += 1
                last_error = str(exc)
                continue
            except (PhaseTimeoutError, TransportError, ProtocolError) as exc:
                failed += 1
                last_error = str(exc)
                LOGGER.debug("Ping #%d failed: %s", sequence, exc)
                continue
            finished = self.clock()

            latency_ms = (finished - started) * 1000
            if latency_ms > self.sample_timeout_ms:
                failed += 1
                last_error = f"Round trip exceeded {self.sample_timeout_ms} ms"
                LOGGER.debug("Ping #%d took %.1f ms, counted as lost", sequence, latency_ms)
                continue
            samples.append(Sample(sequence=sequence, value=latency_ms, timestamp_monotonic=finished))

        if connect_failures == sample_count:
            raise ConnectFailure(last_error or "Round-trip target unreachable")

        mean, low, high, jitter = summarize([sample.value for sample in samples])
        result = ProbeResult(
            kind=KIND_PING,
            status=STATUS_COMPLETE if samples else STATUS_FAILED,
            mean=mean,
            min=low,
            max=high,
            stddev=jitter,
            sample_count=len(samples),
            failed_count=failed,
            samples=tuple(samples),
            packet_loss=packet_loss(failed, sample_count),
            error=None if samples else (last_error or "No round trip succeeded"),
        )
        if samples:
            LOGGER.info(
                "Latency: mean %.2f ms, jitter %.2f ms, loss %d/%d",
                mean, jitter, failed, sample_count,
            )
        else:
            LOGGER.warning("Latency probe failed: %d of %d round trips lost", failed, sample_count)
        return result
