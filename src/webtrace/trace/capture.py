from __future__ import annotations

from typing import Any, BinaryIO, Iterator, List, Optional

DEFAULT_MAX_PAYLOAD_LENGTH = 1024
TRUNCATION_MARKER = "...[truncated]"


class _CaptureBuffer:
    def __init__(self, limit: int) -> None:
        self._limit = max(0, int(limit))
        self._data = bytearray()
        self._truncated = False

    def feed(self, chunk: bytes) -> None:
        if not chunk:
            return
        room = self._limit - len(self._data)
        if room > 0:
            self._data.extend(chunk[:room])
        if len(chunk) > room:
            self._truncated = True

    @property
    def truncated(self) -> bool:
        return self._truncated

    def text(self, encoding: str = "utf-8") -> str:
        decoded = bytes(self._data).decode(encoding, errors="replace")
        if self._truncated:
            return decoded + TRUNCATION_MARKER
        return decoded


class CapturingReader:
    """Read-side tee: the consumer sees the wrapped stream unchanged while the
    first ``limit`` bytes it reads are kept for the trace."""

    def __init__(self, stream: BinaryIO, limit: int = DEFAULT_MAX_PAYLOAD_LENGTH) -> None:
        self._stream = stream
        self._capture = _CaptureBuffer(limit)

    def read(self, size: Optional[int] = -1) -> bytes:
        if size is None:
            size = -1
        chunk = self._stream.read(size)
        self._capture.feed(chunk)
        return chunk

    def read1(self, size: int = -1) -> bytes:
        return self.read(size)

    def readinto(self, buffer: Any) -> int:
        count = self._stream.readinto(buffer)
        if count:
            self._capture.feed(bytes(memoryview(buffer)[:count]))
        return count

    def readinto1(self, buffer: Any) -> int:
        return self.readinto(buffer)

    def peek(self, size: int = 0) -> bytes:
        # not consumed, so not captured
        return self._stream.peek(size)  # type: ignore[attr-defined]

    def readline(self, size: Optional[int] = -1) -> bytes:
        if size is None:
            size = -1
        line = self._stream.readline(size)
        self._capture.feed(line)
        return line

    def readlines(self, hint: int = -1) -> List[bytes]:
        lines = self._stream.readlines(hint)
        for line in lines:
            self._capture.feed(line)
        return lines

    def __iter__(self) -> Iterator[bytes]:
        while True:
            line = self.readline()
            if not line:
                return
            yield line

    def readable(self) -> bool:
        return True

    def close(self) -> None:
        self._stream.close()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._stream, name)

    @property
    def truncated(self) -> bool:
        return self._capture.truncated

    def captured_text(self, encoding: str = "utf-8") -> str:
        return self._capture.text(encoding)


class CapturingWriter:
    """Write-side tee for response bodies."""

    def __init__(self, stream: BinaryIO, limit: int = DEFAULT_MAX_PAYLOAD_LENGTH) -> None:
        self._stream = stream
        self._capture = _CaptureBuffer(limit)

    def write(self, data: bytes) -> int:
        written = self._stream.write(data)
        chunk = bytes(data)
        if isinstance(written, int):
            chunk = chunk[:written]
        self._capture.feed(chunk)
        return written

    def writelines(self, lines: List[bytes]) -> None:
        for line in lines:
            self.write(line)

    def writable(self) -> bool:
        return True

    def flush(self) -> None:
        self._stream.flush()

    def close(self) -> None:
        self._stream.close()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._stream, name)

    @property
    def truncated(self) -> bool:
        return self._capture.truncated

    def captured_text(self, encoding: str = "utf-8") -> str:
        return self._capture.text(encoding)
