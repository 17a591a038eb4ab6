"""
HTTP transport used by the client-side probes.

Wraps a ``requests.Session`` and translates its exceptions into the
measurement error taxonomy. The probes only ever see three operations::

    round_trip(timeout)                       -> None
    download(total_bytes, chunk_bytes, timeout) -> iterator of payload chunks
    upload(chunks, timeout)                   -> server acknowledgement dict
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Iterator, Optional

import requests

from ..errors import ConnectFailure, PhaseTimeoutError, ProtocolError, TransportError

LOGGER = logging.getLogger(__name__)

PAYLOAD_LENGTH_HEADER = "X-Payload-Bytes"


class HttpTransport:
    """Talks to a speedcheck server rooted at ``base_url``."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.last_server_report: Optional[Dict[str, Any]] = None

    def close(self) -> None:
        self.session.close()

    def _check_status(self, response: requests.Response) -> None:
        if response.status_code < 400:
            return
        message = _error_message(response)
        if response.status_code < 500:
            raise ProtocolError(f"Server rejected request: {message}")
        raise TransportError(f"Server error {response.status_code}: {message}")

    def round_trip(self, timeout: float) -> None:
        """One minimal request/response exchange, body fully read."""
        try:
            response = self.session.get(
                f"{self.base_url}/ping/echo",
                timeout=timeout,
                headers={"Cache-Control": "no-cache"},
            )
        except requests.exceptions.ConnectTimeout as exc:
            raise ConnectFailure(f"Connect timed out: {exc}") from exc
        except requests.exceptions.Timeout as exc:
            raise PhaseTimeoutError(f"Round trip timed out: {exc}") from exc
        except requests.exceptions.ConnectionError as exc:
            raise ConnectFailure(f"Cannot reach {self.base_url}: {exc}") from exc
        self._check_status(response)

    def download(self, total_bytes: int, chunk_bytes: int, timeout: float) -> Iterator[bytes]:
        """Yield exactly ``total_bytes`` of payload, then parse the server footer."""
        self.last_server_report = None
        try:
            response = self.session.get(
                f"{self.base_url}/download",
                params={"bytes": total_bytes, "chunk": chunk_bytes},
                stream=True,
                timeout=timeout,
            )
        except requests.exceptions.ConnectTimeout as exc:
            raise ConnectFailure(f"Connect timed out: {exc}") from exc
        except requests.exceptions.Timeout as exc:
            raise PhaseTimeoutError(f"No response within {timeout}s") from exc
        except requests.exceptions.ConnectionError as exc:
            raise ConnectFailure(f"Cannot reach {self.base_url}: {exc}") from exc

        with response:
            self._check_status(response)
            payload_bytes = int(response.headers.get(PAYLOAD_LENGTH_HEADER, total_bytes))
            received = 0
            footer = bytearray()
            try:
                for chunk in response.iter_content(chunk_size=chunk_bytes):
                    if received >= payload_bytes:
                        footer += chunk
                        continue
                    take = min(len(chunk), payload_bytes - received)
                    received += take
                    if take < len(chunk):
                        footer += chunk[take:]
                        chunk = chunk[:take]
                    yield chunk
            except requests.exceptions.Timeout as exc:
                raise PhaseTimeoutError(f"Download stalled: {exc}", bytes_transferred=received) from exc
            except (requests.exceptions.ChunkedEncodingError, requests.exceptions.ConnectionError) as exc:
                raise TransportError(f"Download interrupted: {exc}", bytes_transferred=received) from exc

            if received < payload_bytes:
                raise TransportError(
                    f"Connection closed after {received} of {payload_bytes} bytes",
                    bytes_transferred=received,
                )
            self.last_server_report = _parse_footer(bytes(footer))

    def upload(self, chunks: Iterable[bytes], timeout: float) -> Dict[str, Any]:
        """Stream ``chunks`` as a chunked request body and return the server's acknowledgement."""
        pulled = 0

        def body() -> Iterator[bytes]:
            nonlocal pulled
            for chunk in chunks:
                pulled += 1
                yield chunk

        try:
            response = self.session.post(
                f"{self.base_url}/upload",
                data=body(),
                headers={"Content-Type": "application/octet-stream"},
                timeout=timeout,
            )
        except requests.exceptions.ConnectTimeout as exc:
            raise ConnectFailure(f"Connect timed out: {exc}") from exc
        except requests.exceptions.Timeout as exc:
            raise PhaseTimeoutError(f"Upload stalled: {exc}") from exc
        except requests.exceptions.ConnectionError as exc:
            if pulled == 0:
                raise ConnectFailure(f"Cannot reach {self.base_url}: {exc}") from exc
            raise TransportError(f"Upload interrupted: {exc}") from exc

        self._check_status(response)
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError("Malformed upload acknowledgement") from exc


def _error_message(response: requests.Response) -> str:
    try:
        return str(response.json().get("error", response.reason))
    except ValueError:
        return response.reason or "unknown error"


def _parse_footer(raw: bytes) -> Optional[Dict[str, Any]]:
    if not raw.strip():
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        LOGGER.warning("Ignoring malformed download footer (%d bytes)", len(raw))
        return None
