"""
Listening Endpoints

Two endpoints share the same shape (asyncio.start_server plus a
per-connection coroutine) but speak different protocols:

1. HashOracleServer - raw bytes in, hex SHA-256 of each received chunk
   out. Chunk boundaries are whatever the transport delivers.
2. MessageServer - newline-delimited structured messages. Each frame is
   verified and handed to an optional async handler. A bad frame is
   reported and skipped; the connection stays open.
"""

import asyncio
import contextlib
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

import structlog

from arbitra.config import ChannelSettings, get_settings
from arbitra.models.message import VerificationOutcome, VerificationResult
from arbitra.services.channel.framing import (
    FrameTooLargeError,
    encode_frame,
    read_frame,
)
from arbitra.services.channel.integrity import (
    build_reply,
    hash_bytes,
    verify_message,
)


logger = structlog.get_logger(__name__)

MessageHandler = Callable[[VerificationResult], Awaitable[None]]


def _peer_name(writer: asyncio.StreamWriter) -> str:
    peer = writer.get_extra_info("peername")
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer)


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    with contextlib.suppress(ConnectionError):
        await writer.wait_closed()


async def respond_with_digest(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    chunk_size: int = 65536,
) -> int:
    """
    Hash oracle connection handler.

    Writes the hex digest of every chunk received and closes the
    connection at end of stream.

    Returns:
        Number of chunks answered
    """
    peer = _peer_name(writer)
    answered = 0
    try:
        while True:
            chunk = await reader.read(chunk_size)
            if not chunk:
                break
            logger.info("oracle_chunk_received", peer=peer, size=len(chunk))
            writer.write(hash_bytes(chunk).encode("ascii"))
            await writer.drain()
            answered += 1
    finally:
        await _close(writer)
    return answered


class _Endpoint(ABC):
    """Start/stop plumbing shared by both servers."""

    def __init__(self, settings: Optional[ChannelSettings] = None):
        self._settings = settings or get_settings().channel
        self._server: Optional[asyncio.AbstractServer] = None

    @abstractmethod
    def _default_port(self) -> int:
        """Port used when start() is called without one."""
        pass

    @abstractmethod
    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Serve one accepted connection."""
        pass

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def address(self) -> tuple[str, int]:
        """(host, port) actually bound; useful when started on port 0."""
        if self._server is None or not self._server.sockets:
            raise RuntimeError(f"{type(self).__name__} is not started")
        sockname = self._server.sockets[0].getsockname()
        return sockname[0], sockname[1]

    async def start(self, host: Optional[str] = None, port: Optional[int] = None) -> tuple[str, int]:
        if self._server is not None:
            raise RuntimeError(f"{type(self).__name__} is already started")
        host = host or self._settings.host
        port = self._default_port() if port is None else port
        self._server = await asyncio.start_server(
            self._handle,
            host,
            port,
            limit=self._settings.max_frame_bytes,
        )
        bound = self.address
        logger.info("endpoint_listening", endpoint=type(self).__name__, host=bound[0], port=bound[1])
        return bound

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("endpoint_stopped", endpoint=type(self).__name__)

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        await self._server.serve_forever()

    async def __aenter__(self):
        if self._server is None:
            await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()


class HashOracleServer(_Endpoint):
    """Loopback endpoint that echoes the digest of whatever it receives."""

    def _default_port(self) -> int:
        return self._settings.oracle_port

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = _peer_name(writer)
        logger.info("oracle_connection_opened", peer=peer)
        try:
            await respond_with_digest(reader, writer, self._settings.chunk_size)
        except ConnectionError as e:
            logger.warning("oracle_connection_lost", peer=peer, error=str(e))


class MessageServer(_Endpoint):
    """
    Structured message endpoint.

    The handler is awaited for every frame, before any acknowledgement is
    written, so a sender that waits for the connection to close knows the
    handler has run.
    """

    def __init__(
        self,
        handler: Optional[MessageHandler] = None,
        settings: Optional[ChannelSettings] = None,
    ):
        super().__init__(settings)
        self._handler = handler

    def _default_port(self) -> int:
        return self._settings.message_port

    async def _dispatch(self, result: VerificationResult, peer: str) -> None:
        if self._handler is None:
            return
        try:
            await self._handler(result)
        except Exception:
            logger.exception("message_handler_failed", peer=peer, outcome=result.outcome.value)

    async def handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> int:
        """
        Read and verify frames until end of stream.

        Returns:
            Number of frames processed
        """
        peer = _peer_name(writer)
        processed = 0
        try:
            while True:
                try:
                    frame = await read_frame(reader)
                except FrameTooLargeError as e:
                    logger.warning("message_frame_too_large", peer=peer)
                    result = VerificationResult(
                        outcome=VerificationOutcome.INVALID_MESSAGE,
                        error=str(e),
                    )
                else:
                    if frame is None:
                        break
                    result = verify_message(frame)

                processed += 1
                await self._dispatch(result, peer)

                if self._settings.acknowledge_messages:
                    reply = build_reply(result, self._settings.origin_address)
                    writer.write(encode_frame(reply))
                    await writer.drain()
        except ConnectionError as e:
            logger.warning("peer_connection_lost", peer=peer, error=str(e))
        finally:
            await _close(writer)

        logger.info("peer_connection_closed", peer=peer, frames=processed)
        return processed

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await self.handle_connection(reader, writer)
