"""
Peer Client

Opens a connection, writes, half-closes the write side, and reads until
the peer closes. No state is kept between calls.

Connection attempts are bounded by connect_timeout and retried with
exponential backoff up to connect_attempts times (one attempt by default).
"""

import asyncio
import contextlib
from typing import Iterable, Optional, Union

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from arbitra.config import ChannelSettings, get_settings
from arbitra.models.message import Message
from arbitra.services.channel.framing import encode_frame, read_frame
from arbitra.services.channel.integrity import (
    ChannelError,
    MessageParseError,
    parse_message,
)


logger = structlog.get_logger(__name__)

DEFAULT_DIGEST_REQUEST = b"Hash this string please"


class PeerConnectionError(ChannelError):
    """Could not reach a peer."""

    def __init__(self, host: str, port: int, message: str):
        self.host = host
        self.port = port
        super().__init__(message)


class PeerClient:
    """Connecting side of the channel."""

    def __init__(self, settings: Optional[ChannelSettings] = None):
        self._settings = settings or get_settings().channel

    async def _connect(
        self,
        host: str,
        port: int,
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.connect_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            retry=retry_if_exception_type((OSError, asyncio.TimeoutError)),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await asyncio.wait_for(
                        asyncio.open_connection(
                            host,
                            port,
                            limit=self._settings.max_frame_bytes,
                        ),
                        timeout=self._settings.connect_timeout,
                    )
        except (OSError, asyncio.TimeoutError) as e:
            logger.error("peer_connect_failed", host=host, port=port, error=str(e))
            raise PeerConnectionError(host, port, f"Could not connect to {host}:{port}: {e}") from e

    @staticmethod
    async def _close(writer: asyncio.StreamWriter) -> None:
        writer.close()
        with contextlib.suppress(ConnectionError):
            await writer.wait_closed()
        logger.debug("peer_connection_closed")

    async def request_digest(
        self,
        host: str,
        port: Optional[int] = None,
        payload: Union[bytes, str] = DEFAULT_DIGEST_REQUEST,
    ) -> str:
        """
        Ask a hash oracle to digest payload.

        Returns:
            The oracle's response text (one hex digest per chunk it saw)
        """
        port = self._settings.oracle_port if port is None else port
        if isinstance(payload, str):
            payload = payload.encode("utf-8")

        reader, writer = await self._connect(host, port)
        try:
            writer.write(payload)
            await writer.drain()
            if writer.can_write_eof():
                writer.write_eof()
            response = await reader.read()
        finally:
            await self._close(writer)

        text = response.decode("ascii", errors="replace")
        logger.info("oracle_response_received", host=host, port=port, response=text)
        return text

    async def send_messages(
        self,
        messages: Iterable[Message],
        host: str,
        port: Optional[int] = None,
    ) -> list[Message]:
        """
        Send several framed messages over one connection.

        Returns:
            Reply messages the peer wrote before closing (empty when the
            peer does not acknowledge)
        """
        port = self._settings.message_port if port is None else port
        replies: list[Message] = []

        reader, writer = await self._connect(host, port)
        try:
            sent = 0
            for message in messages:
                writer.write(encode_frame(message))
                sent += 1
            await writer.drain()
            if writer.can_write_eof():
                writer.write_eof()

            while True:
                frame = await read_frame(reader)
                if frame is None:
                    break
                try:
                    replies.append(parse_message(frame))
                except MessageParseError as e:
                    logger.warning("peer_reply_unparseable", host=host, port=port, error=str(e))
        finally:
            await self._close(writer)

        logger.info("messages_sent", host=host, port=port, sent=sent, replies=len(replies))
        return replies

    async def send_message(
        self,
        message: Message,
        host: str,
        port: Optional[int] = None,
    ) -> list[Message]:
        return await self.send_messages([message], host, port)
