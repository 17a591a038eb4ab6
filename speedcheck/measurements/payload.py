"""Payload generation and consumption for throughput probes."""

from __future__ import annotations

import logging
import os
import random
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from ..errors import ProtocolError

LOGGER = logging.getLogger(__name__)


class PayloadPool:
    """
    Process-wide source of pseudo-random payload bytes.

    A block of ``os.urandom`` output is allocated once by :meth:`open` and
    released by :meth:`close`. Payloads are served as slices of that block
    starting at a random offset, so producing a chunk costs no per-byte
    work and the content differs between calls while the length is exact.
    """

    def __init__(self, pool_bytes: int = 1024 * 1024):
        if pool_bytes < 1:
            raise ValueError("pool_bytes must be positive")
        self.pool_bytes = pool_bytes
        self._lock = threading.Lock()
        self._block: Optional[bytes] = None
        self._opened_at: Optional[datetime] = None
        self._bytes_served = 0
        self._bytes_received = 0
        self._downloads = 0
        self._uploads = 0

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._block is not None

    def open(self) -> None:
        with self._lock:
            if self._block is not None:
                LOGGER.warning("Payload pool already open")
                return
            data = os.urandom(self.pool_bytes)
            # Doubled so any window of up to pool_bytes is one contiguous slice
            self._block = data + data
            self._opened_at = datetime.now(timezone.utc)
        LOGGER.info("Payload pool allocated (%d bytes)", self.pool_bytes)

    def close(self) -> None:
        with self._lock:
            if self._block is None:
                return
            self._block = None
            self._opened_at = None
        LOGGER.info("Payload pool released")

    def _require_block(self) -> bytes:
        block = self._block
        if block is None:
            raise RuntimeError("Payload pool is not open")
        return block

    def iter_chunks(self, total_bytes: int, chunk_bytes: int) -> Iterator[memoryview]:
        """Yield ``total_bytes`` of payload in slices of at most ``chunk_bytes``."""
        if total_bytes < 0:
            raise ProtocolError("byte count must not be negative")
        if chunk_bytes < 1 or chunk_bytes > self.pool_bytes:
            raise ProtocolError(f"chunk size must be between 1 and {self.pool_bytes}")
        block = memoryview(self._require_block())
        offset = random.randrange(self.pool_bytes)
        remaining = total_bytes
        while remaining > 0:
            size = min(chunk_bytes, remaining)
            yield block[offset:offset + size]
            offset = (offset + size) % self.pool_bytes
            remaining -= size

    def generate(self, byte_count: int) -> bytes:
        """Return ``byte_count`` bytes of payload."""
        return b"".join(self.iter_chunks(byte_count, self.pool_bytes))

    def consume(self, chunk: bytes) -> int:
        """Acknowledge an uploaded chunk; cost depends on its length only."""
        size = len(chunk)
        with self._lock:
            self._bytes_received += size
        return size

    def record_served(self, byte_count: int) -> None:
        with self._lock:
            self._bytes_served += byte_count

    def record_transfer(self, direction: str) -> None:
        with self._lock:
            if direction == "download":
                self._downloads += 1
            else:
                self._uploads += 1

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "open": self._block is not None,
                "pool_bytes": self.pool_bytes,
                "opened_at": self._opened_at.isoformat() if self._opened_at else None,
                "bytes_served": self._bytes_served,
                "bytes_received": self._bytes_received,
                "downloads": self._downloads,
                "uploads": self._uploads,
            }
