"""
Integrity Channel Package

Digest-carrying messages, newline framing, the listening endpoints and
the connecting client.
"""

from arbitra.services.channel.integrity import (
    ChannelError,
    MessageParseError,
    build_message,
    build_reply,
    build_transaction,
    encode_message,
    hash_body,
    hash_bytes,
    parse_message,
    serialize,
    serialize_body,
    verify,
    verify_message,
)
from arbitra.services.channel.framing import (
    FRAME_DELIMITER,
    FrameTooLargeError,
    encode_frame,
    read_frame,
)
from arbitra.services.channel.server import (
    HashOracleServer,
    MessageHandler,
    MessageServer,
    respond_with_digest,
)
from arbitra.services.channel.client import (
    DEFAULT_DIGEST_REQUEST,
    PeerClient,
    PeerConnectionError,
)

__all__ = [
    # Exceptions
    "ChannelError",
    "FrameTooLargeError",
    "MessageParseError",
    "PeerConnectionError",
    # Integrity
    "build_message",
    "build_reply",
    "build_transaction",
    "encode_message",
    "hash_body",
    "hash_bytes",
    "parse_message",
    "serialize",
    "serialize_body",
    "verify",
    "verify_message",
    # Framing
    "FRAME_DELIMITER",
    "encode_frame",
    "read_frame",
    # Endpoints
    "HashOracleServer",
    "MessageHandler",
    "MessageServer",
    "respond_with_digest",
    # Client
    "DEFAULT_DIGEST_REQUEST",
    "PeerClient",
]
