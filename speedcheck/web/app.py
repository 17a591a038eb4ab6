"""Flask application factory and HTTP routes."""

from __future__ import annotations

import json
import logging
import queue
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from ..config import AppConfig
from ..errors import ConnectFailure, ProtocolError
from ..measurements.formatter import summarize
from ..measurements.latency import LatencyProber
from ..measurements.models import KIND_DOWNLOAD, KIND_UPLOAD, PhaseEvent, ProbeResult, SpeedTestReport
from ..measurements.orchestrator import TestOrchestrator
from ..measurements.payload import PayloadPool
from ..measurements.throughput import TransferWindow
from ..measurements.transport import PAYLOAD_LENGTH_HEADER, HttpTransport

LOGGER = logging.getLogger(__name__)

NO_STORE = {"Cache-Control": "no-store, no-cache, must-revalidate", "Pragma": "no-cache"}


def create_web_app(
    config: AppConfig,
    payload_pool: PayloadPool,
    transport_factory: Callable[[str], Any] = HttpTransport,
) -> Flask:
    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.web.secret_key

    if config.web.reverse_proxy_headers:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)  # type: ignore

    executor = ThreadPoolExecutor(max_workers=4)
    limits = config.throughput

    @app.errorhandler(ProtocolError)
    def handle_protocol_error(exc: ProtocolError):
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return jsonify({"error": exc.description}), exc.code
        LOGGER.exception("Unhandled error serving %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error"}), 500

    @app.get("/ping/echo")
    def ping_echo():
        """Minimal round-trip target."""
        return Response(status=204, headers=NO_STORE)

    @app.get("/ping")
    def ping():
        """Measure latency from this server to the configured echo target."""
        target = config.ping_target_url
        transport = transport_factory(target)
        try:
            prober = LatencyProber(transport, sample_timeout_ms=config.latency.sample_timeout_ms)
            result = prober.measure_latency(config.latency.sample_count, config.latency.inter_sample_delay_ms)
        except ConnectFailure as exc:
            LOGGER.error("Ping target %s unreachable: %s", target, exc)
            return jsonify({"error": "Ping target unreachable"}), 500
        finally:
            transport.close()
        return jsonify(_ping_body(result)), 200, NO_STORE

    @app.get("/download")
    def download():
        """Stream ``bytes`` of payload followed by a JSON footer with the send-side measurement."""
        total_bytes = _int_arg("bytes", limits.download_bytes, 0, limits.max_bytes)
        chunk_bytes = _int_arg("chunk", limits.chunk_bytes, 1, payload_pool.pool_bytes)
        if not payload_pool.is_open:
            raise RuntimeError("Payload pool is not open")
        chunks = payload_pool.iter_chunks(total_bytes, chunk_bytes)
        payload_pool.record_transfer("download")

        def generate():
            window = TransferWindow(chunk_bytes)
            try:
                for piece in chunks:
                    yield bytes(piece)
                    window.record(len(piece), time.perf_counter())
            finally:
                payload_pool.record_served(window.transferred)
            result = window.result(KIND_DOWNLOAD)
            yield json.dumps(_transfer_body("downloadSpeedBitsPerSec", result)).encode("utf-8")

        headers = dict(NO_STORE)
        headers[PAYLOAD_LENGTH_HEADER] = str(total_bytes)
        headers["X-Accel-Buffering"] = "no"
        return Response(generate(), mimetype="application/octet-stream", headers=headers)

    @app.post("/upload")
    def upload():
        """Consume a raw upload body chunk by chunk and report the receive-side measurement."""
        window = TransferWindow(limits.chunk_bytes)

        if request.is_json:
            directive = request.get_json(silent=True)
            if not isinstance(directive, dict):
                raise ProtocolError("Upload directive must be a JSON object")
            declared = directive.get("payloadSizeBytes")
            if not isinstance(declared, int) or isinstance(declared, bool):
                raise ProtocolError("payloadSizeBytes must be an integer")
            if declared < 0 or declared > limits.max_bytes:
                raise ProtocolError(f"payloadSizeBytes must be between 0 and {limits.max_bytes}")
            result = window.result(
                KIND_UPLOAD, error=f"Directive declared {declared} bytes but carried no payload"
            )
            return jsonify(_transfer_body("uploadSpeedBitsPerSec", result)), 200, NO_STORE

        stream = request.stream
        while True:
            chunk = stream.read(limits.chunk_bytes)
            if not chunk:
                break
            window.record(payload_pool.consume(chunk), time.perf_counter())
            if window.transferred > limits.max_bytes:
                raise ProtocolError(f"Upload exceeds the {limits.max_bytes} byte limit")

        payload_pool.record_transfer("upload")
        result = window.result(KIND_UPLOAD)
        LOGGER.debug("Upload received %d bytes (%s)", result.bytes_transferred, result.status)
        return jsonify(_transfer_body("uploadSpeedBitsPerSec", result)), 200, NO_STORE

    @app.get("/api/status")
    def api_status():
        return jsonify(
            {
                "payload_pool": payload_pool.get_status(),
                "ping_target": config.ping_target_url,
                "limits": {
                    "chunk_bytes": limits.chunk_bytes,
                    "max_bytes": limits.max_bytes,
                    "phase_timeout_seconds": limits.phase_timeout_seconds,
                },
            }
        )

    @app.get("/api/speedtest/stream")
    def api_speedtest_stream():
        """Run a full test against the configured server with SSE progress."""
        channel: "queue.Queue[Any]" = queue.Queue()
        transport = transport_factory(config.client.base_url)
        orchestrator = TestOrchestrator(
            transport,
            payload_pool,
            config.latency,
            config.throughput,
            on_event=channel.put,
        )

        def work() -> None:
            try:
                outcome: Any = orchestrator.run()
            except Exception as exc:
                LOGGER.exception("Streaming speed test failed")
                outcome = exc
            finally:
                transport.close()
            channel.put(outcome)

        def generate():
            future = executor.submit(work)
            try:
                while True:
                    item = channel.get()
                    if isinstance(item, PhaseEvent):
                        yield _sse("phase", item.to_dict())
                    elif isinstance(item, SpeedTestReport):
                        yield _sse("complete", summarize(item))
                        return
                    else:
                        yield _sse("error", {"message": "Speed test failed"})
                        return
            finally:
                if not future.done():
                    orchestrator.cancel()

        headers = {
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # For nginx
        }
        return Response(generate(), mimetype="text/event-stream", headers=headers)

    return app


def _int_arg(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ProtocolError(f"{name} must be an integer") from None
    if value < minimum or value > maximum:
        raise ProtocolError(f"{name} must be between {minimum} and {maximum}")
    return value


def _sse(event: str, data: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ping_body(result: ProbeResult) -> Dict[str, Any]:
    body = {
        "samples": [sample.value for sample in result.samples],
        "mean": result.mean,
        "jitter": result.stddev,
        "packetLoss": result.packet_loss,
        "minPing": result.min,
        "maxPing": result.max,
        "sampleCount": result.sample_count,
        "failedCount": result.failed_count,
        "status": result.status,
        "timestamp": _timestamp(),
    }
    if result.error:
        body["error"] = result.error
    return body


def _transfer_body(speed_key: str, result: ProbeResult) -> Dict[str, Any]:
    body = {
        speed_key: result.bits_per_second,
        "bytesTransferred": result.bytes_transferred,
        "measuredBytes": result.measured_bytes,
        "elapsedSeconds": result.elapsed_seconds,
        "status": result.status,
        "timestamp": _timestamp(),
    }
    if result.error:
        body["error"] = result.error
    return body
