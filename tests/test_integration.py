"""End-to-end run against a real server bound to the loopback interface."""

import tempfile
import threading
import unittest
from pathlib import Path

from werkzeug.serving import make_server

from speedcheck.config import load_config
from speedcheck.measurements.models import REPORT_COMPLETE, STATUS_COMPLETE
from speedcheck.measurements.orchestrator import TestOrchestrator
from speedcheck.measurements.payload import PayloadPool
from speedcheck.measurements.transport import HttpTransport
from speedcheck.web.app import create_web_app

CHUNK = 16 * 1024


class TestLoopbackRun(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmp = tempfile.TemporaryDirectory()
        path = Path(cls._tmp.name) / "config.yaml"
        path.write_text(
            "latency:\n  sample_count: 4\n  inter_sample_delay_ms: 5\n"
            f"throughput:\n  chunk_bytes: {CHUNK}\n  pool_bytes: {8 * CHUNK}\n"
            f"  download_bytes: {32 * CHUNK}\n  upload_bytes: {16 * CHUNK}\n"
            "  phase_timeout_seconds: 10\n",
            encoding="utf-8",
        )
        cls.config = load_config(str(path))
        cls.pool = PayloadPool(cls.config.throughput.pool_bytes)
        cls.pool.open()
        app = create_web_app(cls.config, cls.pool)
        cls.server = make_server("127.0.0.1", 0, app, threaded=True)
        cls.base_url = f"http://127.0.0.1:{cls.server.server_port}"
        cls.config.latency.target_url = cls.base_url
        cls.thread = threading.Thread(target=cls.server.serve_forever, daemon=True)
        cls.thread.start()

    @classmethod
    def tearDownClass(cls):
        cls.server.shutdown()
        cls.thread.join(timeout=5)
        cls.pool.close()
        cls._tmp.cleanup()

    def test_full_run_completes(self):
        transport = HttpTransport(self.base_url)
        events = []
        try:
            orchestrator = TestOrchestrator(
                transport,
                self.pool,
                self.config.latency,
                self.config.throughput,
                on_event=events.append,
            )
            report = orchestrator.run()
        finally:
            transport.close()

        self.assertEqual(report.status, REPORT_COMPLETE, report.to_dict())
        self.assertEqual(report.ping.sample_count, 4)
        self.assertEqual(report.download.bytes_transferred, 32 * CHUNK)
        self.assertEqual(report.download.warmup_bytes, CHUNK)
        self.assertGreater(report.download.bits_per_second, 0)
        self.assertEqual(report.upload.bytes_transferred, 16 * CHUNK)
        self.assertEqual(report.upload.status, STATUS_COMPLETE)
        self.assertEqual([event.progress_percent for event in events], [20, 50, 80, 100])

        footer = transport.last_server_report
        self.assertIsNotNone(footer)
        self.assertEqual(footer["bytesTransferred"], 32 * CHUNK)

    def test_server_side_ping(self):
        transport = HttpTransport(self.base_url)
        try:
            response = transport.session.get(f"{self.base_url}/ping", timeout=10)
        finally:
            transport.close()
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "Complete")
        self.assertEqual(body["sampleCount"], 4)
        self.assertEqual(body["packetLoss"], 0.0)


if __name__ == "__main__":
    unittest.main()
