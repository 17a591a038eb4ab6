"""Human-readable rendering and connection-quality classification."""

from __future__ import annotations

from typing import Any, Dict, Optional

from .models import STATUS_COMPLETE, ProbeResult, SpeedTestReport

UNAVAILABLE = "Unavailable"
PLACEHOLDER = "--"


def format_speed(bits_per_second: Optional[float]) -> str:
    """Human-readable speed string."""
    if bits_per_second is None:
        return PLACEHOLDER
    mbps = bits_per_second / 1_000_000
    if mbps >= 1000:
        return f"{mbps / 1000:.2f} Gbps"
    if mbps >= 1:
        return f"{mbps:.2f} Mbps"
    return f"{bits_per_second / 1000:.0f} Kbps"


def format_latency(latency_ms: Optional[float]) -> str:
    """Human-readable latency string."""
    if latency_ms is None:
        return PLACEHOLDER
    if latency_ms >= 1000:
        return f"{latency_ms / 1000:.2f} s"
    return f"{latency_ms:.0f} ms"


def format_percent(fraction: Optional[float]) -> str:
    if fraction is None:
        return PLACEHOLDER
    return f"{fraction * 100:.1f}%"


def classify_ping(latency_ms: Optional[float]) -> str:
    if latency_ms is None:
        return UNAVAILABLE
    if latency_ms < 50:
        return "Excellent"
    if latency_ms < 100:
        return "Good"
    return "Poor"


def _classify_speed(bits_per_second: Optional[float], fast_mbps: float, average_mbps: float) -> str:
    if bits_per_second is None:
        return UNAVAILABLE
    mbps = bits_per_second / 1_000_000
    if mbps > fast_mbps:
        return "Fast"
    if mbps > average_mbps:
        return "Average"
    return "Slow"


def classify_download(bits_per_second: Optional[float]) -> str:
    return _classify_speed(bits_per_second, fast_mbps=50, average_mbps=10)


def classify_upload(bits_per_second: Optional[float]) -> str:
    return _classify_speed(bits_per_second, fast_mbps=20, average_mbps=5)


def _speed_of(result: ProbeResult) -> Optional[float]:
    return result.bits_per_second if result.status == STATUS_COMPLETE else None


def _latency_of(result: ProbeResult) -> Optional[float]:
    return result.mean if result.status == STATUS_COMPLETE else None


def summarize(report: SpeedTestReport) -> Dict[str, Any]:
    """JSON-ready view of a report for presentation layers."""
    ping = report.ping
    download_bps = _speed_of(report.download)
    upload_bps = _speed_of(report.upload)
    latency = _latency_of(ping)
    jitter = ping.stddev if ping.status == STATUS_COMPLETE else None
    return {
        "status": report.status,
        "generatedAt": report.generated_at.isoformat(),
        "ping": {
            "status": ping.status,
            "value": format_latency(latency),
            "jitter": format_latency(jitter),
            "packetLoss": format_percent(ping.packet_loss),
            "quality": classify_ping(latency),
            "error": ping.error,
        },
        "download": {
            "status": report.download.status,
            "value": format_speed(download_bps),
            "quality": classify_download(download_bps),
            "error": report.download.error,
        },
        "upload": {
            "status": report.upload.status,
            "value": format_speed(upload_bps),
            "quality": classify_upload(upload_bps),
            "error": report.upload.error,
        },
        "raw": report.to_dict(),
    }


def render_text(report: SpeedTestReport) -> str:
    """Plain-text report for terminals."""
    summary = summarize(report)
    ping = summary["ping"]
    lines = [
        f"Speed test {summary['status']} at {summary['generatedAt']}",
        f"  Ping:     {ping['value']:>12}  jitter {ping['jitter']}  loss {ping['packetLoss']}  [{ping['quality']}]",
    ]
    for key, label in (("download", "Download"), ("upload", "Upload")):
        entry = summary[key]
        lines.append(f"  {label + ':':<9} {entry['value']:>12}  [{entry['quality']}]")
    for key in ("ping", "download", "upload"):
        entry = summary[key]
        if entry["status"] != STATUS_COMPLETE and entry["error"]:
            lines.append(f"  {key} {entry['status'].lower()}: {entry['error']}")
    return "\n".join(lines)
