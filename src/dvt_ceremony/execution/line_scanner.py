"""
Line-oriented scanner over streamed process output
"""

import logging
from typing import AsyncIterator, Callable, Dict, Optional

from .runtime import LogChunk, LogStream

logger = logging.getLogger(__name__)

LinePredicate = Callable[[str], bool]


def prefix_predicate(prefix: str) -> LinePredicate:
    """Match lines starting with prefix"""
    return lambda line: line.startswith(prefix)


class LineScanner:
    """
    Finds the first stdout line satisfying a predicate

    Chunks are reassembled into lines per stream. Stderr lines are logged at
    ERROR and never matched. Scanning stops at the first match and the stream
    is closed; None is returned if the stream ends without one.
    """

    def __init__(self, predicate: LinePredicate, encoding: str = "utf-8"):
        self.predicate = predicate
        self.encoding = encoding

    async def scan(self, chunks: AsyncIterator[LogChunk]) -> Optional[str]:
        buffers: Dict[LogStream, bytes] = {LogStream.STDOUT: b"", LogStream.STDERR: b""}

        try:
            async for chunk in chunks:
                buffer = buffers[chunk.stream] + chunk.data
                *lines, buffers[chunk.stream] = buffer.split(b"\n")
                for raw in lines:
                    match = self._feed(chunk.stream, raw)
                    if match is not None:
                        return match

            for stream, remainder in buffers.items():
                if remainder:
                    match = self._feed(stream, remainder)
                    if match is not None:
                        return match
            return None
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

    def _feed(self, stream: LogStream, raw: bytes) -> Optional[str]:
        line = raw.decode(self.encoding, errors="replace").rstrip("\r")
        if stream == LogStream.STDERR:
            if line:
                logger.error(line)
            return None
        if self.predicate(line):
            return line
        return None
