"""Configuration loading helpers for the speed-test service."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import yaml


@dataclass
class PathsConfig:
    logs_dir: Path


@dataclass
class WebConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    secret_key: str = "change-me"
    reverse_proxy_headers: bool = False


@dataclass
class LatencyConfig:
    sample_count: int = 10
    inter_sample_delay_ms: int = 50
    sample_timeout_ms: int = 2000
    target_url: Optional[str] = None


@dataclass
class ThroughputConfig:
    download_bytes: int = 5 * 1024 * 1024
    upload_bytes: int = 2 * 1024 * 1024
    chunk_bytes: int = 64 * 1024
    max_bytes: int = 100 * 1024 * 1024
    phase_timeout_seconds: float = 30.0
    pool_bytes: int = 1024 * 1024


@dataclass
class ClientConfig:
    base_url: str = "http://127.0.0.1:8000"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    library_level: str = "WARNING"


@dataclass
class AppConfig:
    root_dir: Path
    paths: PathsConfig
    web: WebConfig
    latency: LatencyConfig
    throughput: ThroughputConfig
    client: ClientConfig
    logging: LoggingConfig

    @property
    def ping_target_url(self) -> str:
        """Base URL whose ``/ping/echo`` the server-side ``/ping`` probe targets."""
        if self.latency.target_url:
            return self.latency.target_url
        host = self.web.host
        # A wildcard bind address is not connectable
        if host in ("0.0.0.0", "::", ""):
            host = "127.0.0.1"
        return f"http://{host}:{self.web.port}"


def _as_path(base: Path, maybe_path: Optional[str]) -> Path:
    if not maybe_path:
        raise ValueError("Path configuration entries cannot be empty")
    path = (base / maybe_path).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


def _validate(config: AppConfig) -> None:
    if config.latency.sample_count < 1:
        raise ValueError("latency.sample_count must be at least 1")
    if config.latency.sample_timeout_ms <= 0:
        raise ValueError("latency.sample_timeout_ms must be positive")
    throughput = config.throughput
    if throughput.chunk_bytes < 1:
        raise ValueError("throughput.chunk_bytes must be at least 1")
    if throughput.pool_bytes < throughput.chunk_bytes:
        raise ValueError("throughput.pool_bytes must hold at least one chunk")
    if throughput.phase_timeout_seconds <= 0:
        raise ValueError("throughput.phase_timeout_seconds must be positive")
    for name in ("download_bytes", "upload_bytes"):
        if getattr(throughput, name) > throughput.max_bytes:
            raise ValueError(f"throughput.{name} exceeds throughput.max_bytes")


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load application configuration from YAML file."""

    root_dir = Path(path).resolve().parent if path else Path.cwd()
    source_path = Path(path) if path else root_dir / "config.yaml"
    if not source_path.exists():
        raise FileNotFoundError(f"Missing configuration file at {source_path}")

    with source_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    paths_data = data.get("paths", {})
    paths = PathsConfig(
        logs_dir=_as_path(root_dir, paths_data.get("logs_dir", "logs")),
    )

    config = AppConfig(
        root_dir=root_dir,
        paths=paths,
        web=WebConfig(**data.get("web", {})),
        latency=LatencyConfig(**data.get("latency", {})),
        throughput=ThroughputConfig(**data.get("throughput", {})),
        client=ClientConfig(**data.get("client", {})),
        logging=LoggingConfig(**data.get("logging", {})),
    )
    _validate(config)

    return config
