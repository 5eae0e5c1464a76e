"""Output demultiplexer for attached container streams.

An attached, non-TTY container stream is a sequence of frames. Each frame
starts with an 8-byte header (stream type byte, three zero bytes, 4-byte
big-endian payload length) followed by the payload. The demultiplexer strips
the headers, decodes the payload, splits it into lines and logs every line
that has at least one word character, prefixed with the container's friendly
name. Blank or punctuation-only lines are dropped on purpose.

Chunks whose headers do not describe the data that follows fall back to a
fixed 8-byte strip per chunk.

Usage:
    demux = OutputDemultiplexer(identity)
    stream = await runtime.attach_output(handle)
    asyncio.create_task(demux.consume(stream))
"""

from __future__ import annotations

import re
import struct
from collections.abc import AsyncIterable, Callable

from devserver.core.logging import get_logger
from devserver.services.lifecycle import ContainerIdentity

logger = get_logger(__name__)
output_logger = get_logger("devserver.output")

FRAME_HEADER_SIZE = 8
# stdin, stdout, stderr
STREAM_TYPES = frozenset({0, 1, 2})
LABEL_WIDTH = 16

# ANSI colors
MAGENTA = "\033[35m"
CYAN = "\033[36m"
RESET = "\033[0m"

# Line endings are kept as their own tokens so "\r\n" never yields an empty segment
_LINE_SPLIT = re.compile(r"(\r\n|\r|\n)")
_WORD = re.compile(r"\w")


def format_label(
    friendly_name: str,
    is_router: bool = False,
    width: int = LABEL_WIDTH,
    color: bool = True,
) -> str:
    """Truncate and pad the friendly name to a fixed-width label."""
    label = f"{friendly_name[:width]:<{width}}"
    if not color:
        return label
    # Colour only the name so the padding stays plain
    name = friendly_name[:width]
    padding = label[len(name) :]
    return f"{MAGENTA if is_router else CYAN}{name}{RESET}{padding}"


def split_lines(text: str) -> list[str]:
    """Split text on line endings, keeping only segments with a word character."""
    return [segment for segment in _LINE_SPLIT.split(text) if _WORD.search(segment)]


def _is_framed(data: bytes) -> bool:
    """Whether data is a sequence of frame headers and payloads, the last possibly partial."""
    offset = 0
    while offset < len(data):
        header = data[offset : offset + FRAME_HEADER_SIZE]
        if header[0] not in STREAM_TYPES or header[1:4].strip(b"\0"):
            return False
        if len(header) < FRAME_HEADER_SIZE:
            return True
        (size,) = struct.unpack(">I", header[4:])
        offset += FRAME_HEADER_SIZE + size
    return True


class OutputDemultiplexer:
    """Turns a raw attach stream into labelled log lines.

    Frames may arrive split across chunks; incomplete frames are buffered
    until the rest arrives.
    """

    def __init__(
        self,
        identity: ContainerIdentity,
        emit: Callable[[str], None] | None = None,
        label_width: int = LABEL_WIDTH,
        color: bool = True,
    ) -> None:
        self.identity = identity
        self.label = format_label(identity.friendly_name, identity.is_router, label_width, color)
        self._emit = emit or output_logger.info
        self._buffer = bytearray()
        self.lines_emitted = 0

    def feed(self, chunk: bytes) -> None:
        """Process one chunk of the attach stream.

        Chunks that do not parse as a run of well-formed frames fall back to
        stripping a fixed 8-byte header from the chunk and emitting the rest.
        """
        if not _is_framed(bytes(self._buffer) + chunk):
            self.flush()
            self._write(chunk[FRAME_HEADER_SIZE:])
            return
        self._buffer.extend(chunk)
        while len(self._buffer) >= FRAME_HEADER_SIZE:
            (size,) = struct.unpack(">I", self._buffer[4:FRAME_HEADER_SIZE])
            end = FRAME_HEADER_SIZE + size
            if len(self._buffer) < end:
                return
            payload = bytes(self._buffer[FRAME_HEADER_SIZE:end])
            del self._buffer[:end]
            self._write(payload)

    def flush(self) -> None:
        """Emit whatever is left of a truncated final frame."""
        if len(self._buffer) > FRAME_HEADER_SIZE:
            self._write(bytes(self._buffer[FRAME_HEADER_SIZE:]))
        self._buffer.clear()

    def _write(self, payload: bytes) -> None:
        for line in split_lines(payload.decode("utf-8", errors="replace")):
            self._emit(f" {self.label} {line}")
            self.lines_emitted += 1

    async def consume(self, stream: AsyncIterable[bytes]) -> None:
        """Feed every chunk of the stream, then flush."""
        try:
            async for chunk in stream:
                self.feed(chunk)
        finally:
            self.flush()
        logger.debug(
            f"Output stream of '{self.identity.friendly_name}' closed",
            extra={"container": self.identity.runtime_name, "lines": self.lines_emitted},
        )
