"""Scripted clocks and transports for driving the probes without a network."""

from typing import Callable, Iterable, List, Optional, Sequence, Union

from speedcheck.errors import TransportError


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedTransport:
    """
    Transport whose timing is dictated by a script.

    ``latencies`` holds one entry per round trip: milliseconds to advance the
    clock by, or an exception instance to raise. Transfers advance the clock
    by ``chunk_delays[i]`` (or ``default_delay``) before chunk ``i`` lands.
    An upload's acknowledgement arrives ``ack_delay`` seconds after the last
    chunk has been handed over.
    """

    def __init__(
        self,
        clock: FakeClock,
        latencies: Sequence[Union[float, Exception]] = (),
        chunk_delays: Sequence[float] = (),
        default_delay: float = 0.01,
        fail_after: Optional[int] = None,
        on_chunk: Optional[Callable[[int], None]] = None,
        ack_delay: float = 0.0,
    ):
        self.clock = clock
        self.latencies = list(latencies)
        self.chunk_delays = list(chunk_delays)
        self.default_delay = default_delay
        self.fail_after = fail_after
        self.on_chunk = on_chunk
        self.ack_delay = ack_delay
        self.round_trips = 0
        self.downloaded = 0
        self.uploaded = 0
        self.closed = False

    def _delay(self, index: int) -> float:
        if index < len(self.chunk_delays):
            return self.chunk_delays[index]
        return self.default_delay

    def round_trip(self, timeout: float) -> None:
        entry = self.latencies[self.round_trips % len(self.latencies)]
        self.round_trips += 1
        if isinstance(entry, Exception):
            raise entry
        self.clock.advance(entry / 1000)

    def download(self, total_bytes: int, chunk_bytes: int, timeout: float):
        index = 0
        while self.downloaded < total_bytes:
            if self.fail_after is not None and index == self.fail_after:
                raise TransportError("Connection reset by peer", bytes_transferred=self.downloaded)
            size = min(chunk_bytes, total_bytes - self.downloaded)
            self.clock.advance(self._delay(index))
            self.downloaded += size
            if self.on_chunk is not None:
                self.on_chunk(index)
            yield b"\x00" * size
            index += 1

    def upload(self, chunks: Iterable[bytes], timeout: float) -> dict:
        for index, chunk in enumerate(chunks):
            if self.fail_after is not None and index == self.fail_after:
                raise TransportError("Connection reset by peer")
            self.clock.advance(self._delay(index))
            self.uploaded += len(chunk)
            if self.on_chunk is not None:
                self.on_chunk(index)
        self.clock.advance(self.ack_delay)
        return {"bytesTransferred": self.uploaded, "status": "Complete"}

    def close(self) -> None:
        self.closed = True
