"""
Newline-Delimited Framing

One serialized message per line. Compact JSON escapes every newline
inside strings, so b"\\n" can only ever be a frame boundary. A stream
that ends without a trailing newline still yields its last frame, which
keeps one-message-per-connection senders working.
"""

import asyncio
from typing import Optional

from arbitra.models.message import Message
from arbitra.services.channel.integrity import ChannelError, encode_message


FRAME_DELIMITER = b"\n"


class FrameTooLargeError(ChannelError):
    """A frame exceeded the stream reader's limit and was discarded."""
    pass


def encode_frame(message: Message) -> bytes:
    return encode_message(message) + FRAME_DELIMITER


async def _discard_oversized(reader: asyncio.StreamReader) -> None:
    # Drop buffered bytes until the next delimiter (or EOF)
    while True:
        try:
            await reader.readuntil(FRAME_DELIMITER)
            return
        except asyncio.LimitOverrunError as e:
            await reader.readexactly(e.consumed)
        except asyncio.IncompleteReadError:
            return


async def read_frame(reader: asyncio.StreamReader) -> Optional[bytes]:
    """
    Read the next non-empty frame.

    Returns:
        The frame without its delimiter, or None at end of stream

    Raises:
        FrameTooLargeError: The frame was longer than the reader's limit.
            It has been skipped; the stream can still be read.
    """
    while True:
        try:
            line = await reader.readuntil(FRAME_DELIMITER)
        except asyncio.IncompleteReadError as e:
            tail = e.partial.strip()
            return tail or None
        except asyncio.LimitOverrunError:
            await _discard_oversized(reader)
            raise FrameTooLargeError("Frame exceeds the maximum frame size")

        frame = line.strip()
        if frame:
            return frame
