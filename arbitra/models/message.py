"""
Wire Message Models

A message is a header envelope plus an arbitrary JSON body:

    {"header": {"type": ..., "hash": ..., "from": ...}, "body": ...}

header.hash is the SHA-256 hex digest of the serialized body at send
time. The models only describe the shape; digesting lives in
arbitra.services.channel.integrity.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageType(str, Enum):
    """Message types this client understands."""
    TRANSACTION = "transaction"
    # Replies sent when acknowledgements are enabled
    ACK = "ack"
    NACK = "nack"


KNOWN_MESSAGE_TYPES = frozenset(t.value for t in MessageType)


class MessageHeader(BaseModel):
    """Metadata envelope accompanying a message body."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: str = Field(
        ...,
        min_length=1,
        description="Message type used for dispatch"
    )
    hash: str = Field(
        default="",
        description="Hex SHA-256 digest of the serialized body"
    )
    from_: str = Field(
        default="",
        alias="from",
        description="Origin address of the sender"
    )


class Message(BaseModel):
    """A header plus body, as carried on the wire."""

    header: MessageHeader
    body: Any = None

    @property
    def message_type(self) -> str:
        return self.header.type

    @property
    def is_known_type(self) -> bool:
        return self.header.type in KNOWN_MESSAGE_TYPES

    def to_wire(self) -> dict:
        """Plain dict in wire layout (header keys use "from")."""
        return {
            "header": self.header.model_dump(by_alias=True),
            "body": self.body,
        }


class VerificationOutcome(str, Enum):
    """Result of checking a received message."""
    VERIFIED = "verified"
    INTEGRITY_FAILED = "integrity_failed"
    INVALID_MESSAGE = "invalid_message"


class VerificationResult(BaseModel):
    """
    Outcome of verify_message().

    An unknown message type is not an error: known_type is False and the
    digest is still checked.
    """

    outcome: VerificationOutcome
    message: Optional[Message] = None
    message_type: Optional[str] = None
    known_type: bool = False
    expected_hash: Optional[str] = None
    computed_hash: Optional[str] = None
    error: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.outcome == VerificationOutcome.VERIFIED
