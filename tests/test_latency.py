"""Tests for the latency prober against scripted transports."""

import random
import unittest

from speedcheck.errors import ConnectFailure, PhaseTimeoutError, ProtocolError, TransportError
from speedcheck.measurements.latency import LatencyProber
from speedcheck.measurements.models import KIND_PING, STATUS_COMPLETE, STATUS_FAILED

from fakes import FakeClock, ScriptedTransport


def _prober(latencies, timeout_ms=2000):
    clock = FakeClock()
    transport = ScriptedTransport(clock, latencies=latencies)
    return LatencyProber(transport, sample_timeout_ms=timeout_ms, clock=clock, sleep=clock.sleep), clock


class TestMeasureLatency(unittest.TestCase):
    def test_hand_computed_statistics(self):
        prober, _ = _prober([10.0, 20.0, 30.0])
        result = prober.measure_latency(3, 0)
        self.assertEqual(result.kind, KIND_PING)
        self.assertEqual(result.status, STATUS_COMPLETE)
        self.assertAlmostEqual(result.mean, 20.0, places=6)
        self.assertAlmostEqual(result.stddev, 8.1649658, places=4)
        self.assertAlmostEqual(result.min, 10.0, places=6)
        self.assertAlmostEqual(result.max, 30.0, places=6)
        self.assertEqual(result.sample_count, 3)
        self.assertEqual(result.failed_count, 0)
        self.assertEqual(result.packet_loss, 0.0)

    def test_timeouts_do_not_enter_statistics(self):
        prober, _ = _prober([10.0, PhaseTimeoutError("timed out"), 30.0, TransportError("reset")])
        result = prober.measure_latency(4, 0)
        self.assertEqual(result.sample_count, 2)
        self.assertEqual(result.failed_count, 2)
        self.assertEqual(result.attempted_count, 4)
        self.assertAlmostEqual(result.mean, 20.0, places=6)
        self.assertAlmostEqual(result.packet_loss, 0.5)

    def test_round_trip_slower_than_timeout_is_a_failure(self):
        prober, _ = _prober([10.0, 2500.0, 12.0], timeout_ms=2000)
        result = prober.measure_latency(3, 0)
        self.assertEqual(result.sample_count, 2)
        self.assertEqual(result.failed_count, 1)
        self.assertLess(result.max, 2000.0)

    def test_all_lost_is_failed_without_substitute_values(self):
        prober, _ = _prober([PhaseTimeoutError("timed out")])
        result = prober.measure_latency(5, 0)
        self.assertEqual(result.status, STATUS_FAILED)
        self.assertIsNone(result.mean)
        self.assertIsNone(result.stddev)
        self.assertIsNone(result.min)
        self.assertEqual(result.failed_count, 5)
        self.assertEqual(result.packet_loss, 1.0)
        self.assertTrue(result.error)

    def test_rejected_round_trips_are_lost_samples(self):
        prober, _ = _prober([ProtocolError("Server rejected request: Not Found")])
        result = prober.measure_latency(3, 0)
        self.assertEqual(result.status, STATUS_FAILED)
        self.assertEqual(result.failed_count, 3)
        self.assertEqual(result.packet_loss, 1.0)
        self.assertIn("Not Found", result.error)

    def test_unreachable_target_raises_connect_failure(self):
        prober, _ = _prober([ConnectFailure("refused")])
        with self.assertRaises(ConnectFailure):
            prober.measure_latency(3, 0)

    def test_some_connect_failures_are_just_lost_samples(self):
        prober, _ = _prober([ConnectFailure("refused"), 15.0, 15.0])
        result = prober.measure_latency(3, 0)
        self.assertEqual(result.status, STATUS_COMPLETE)
        self.assertEqual(result.failed_count, 1)

    def test_loopback_latency_not_floored(self):
        prober, _ = _prober([0.05, 0.07])
        result = prober.measure_latency(2, 0)
        self.assertLess(result.mean, 1.0)
        self.assertLess(result.stddev, 1.0)

    def test_inter_sample_delay(self):
        prober, clock = _prober([5.0])
        prober.measure_latency(4, 50)
        self.assertEqual(clock.sleeps, [0.05, 0.05, 0.05])

    def test_delay_not_counted_in_samples(self):
        prober, _ = _prober([5.0])
        result = prober.measure_latency(3, 500)
        self.assertAlmostEqual(result.max, 5.0, places=6)

    def test_jitter_varies_between_independent_runs(self):
        jitters = []
        for seed in (1, 2):
            rng = random.Random(seed)
            prober, _ = _prober([20.0 + rng.uniform(0.0, 30.0) for _ in range(10)])
            jitters.append(prober.measure_latency(10, 0).stddev)
        self.assertNotAlmostEqual(jitters[0], jitters[1], places=6)

    def test_invalid_arguments(self):
        prober, _ = _prober([5.0])
        with self.assertRaises(ProtocolError):
            prober.measure_latency(0, 0)
        with self.assertRaises(ProtocolError):
            prober.measure_latency(3, -1)


if __name__ == "__main__":
    unittest.main()
