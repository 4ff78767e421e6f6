"""
Message Integrity

Every message body is digested with SHA-256 and the hex digest travels in
the header. The receiver re-serializes the body it got, digests it again
and compares.

DESIGN DECISION: The digest is over compact JSON in insertion order, laid
out byte for byte the way existing peers write it: numbers in their
shortest form (5.0 is "5", 1e-7 is "1e-7") and integer-like object keys
first. Keys are NOT otherwise sorted: a receiver digests the body in the
order it arrived.

This is tamper DETECTION only. There is no key, no signature and no peer
authentication; anyone can recompute a valid digest for a forged body.
"""

import hashlib
import hmac
import json
import math
import re
from typing import Any, Optional, Union

import structlog
from pydantic import ValidationError

from arbitra.config import get_settings
from arbitra.models.message import (
    Message,
    MessageHeader,
    MessageType,
    VerificationOutcome,
    VerificationResult,
)
from arbitra.models.transaction import TransactionRecord


logger = structlog.get_logger(__name__)


class ChannelError(Exception):
    """Base exception for channel operations."""
    pass


class MessageParseError(ChannelError):
    """Received bytes are not a structured message."""
    pass


def hash_bytes(data: Union[bytes, str]) -> str:
    """SHA-256 of data as a 64-character lowercase hex string."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


# Largest integer a peer's number type carries exactly
_MAX_EXACT_INTEGER = 2 ** 53
_ARRAY_INDEX = re.compile(r"0|[1-9][0-9]*")
_LONE_SURROGATE = re.compile("[\ud800-\udfff]")


def _format_number(value: Union[int, float]) -> str:
    """
    Shortest round-trip decimal form, laid out like ECMAScript
    Number::toString: 5.0 -> "5", 1e-7 -> "1e-7", 1e21 -> "1e+21".
    """
    if isinstance(value, int):
        if abs(value) <= _MAX_EXACT_INTEGER:
            return str(value)
        try:
            value = float(value)
        except OverflowError:
            raise ValueError("Integer too large to serialize") from None
    if not math.isfinite(value):
        raise ValueError(f"Out of range float values are not JSON compliant: {value!r}")
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    mantissa, _, exponent = repr(abs(value)).partition("e")
    whole, _, fraction = mantissa.partition(".")
    significant = (whole + fraction).lstrip("0")
    digits = significant.rstrip("0")
    point = int(exponent or 0) - len(fraction) + len(significant) - len(digits)

    # value == 0.<digits> * 10**n
    k = len(digits)
    n = k + point
    if k <= n <= 21:
        text = digits + "0" * (n - k)
    elif 0 < n <= 21:
        text = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        text = "0." + "0" * -n + digits
    else:
        e = n - 1
        mark = "e+" if e >= 0 else "e-"
        head = digits if k == 1 else digits[0] + "." + digits[1:]
        text = f"{head}{mark}{abs(e)}"
    return sign + text


def _format_string(value: str) -> str:
    text = json.dumps(value, ensure_ascii=False)
    return _LONE_SURROGATE.sub(lambda m: "\\u%04x" % ord(m.group()), text)


def _format_key(key: Any) -> str:
    if isinstance(key, str):
        return key
    if key is None or isinstance(key, bool):
        return _format_scalar(key)
    if isinstance(key, (int, float)):
        return _format_number(key)
    raise TypeError(f"Keys must be str, int, float, bool or None, not {type(key).__name__}")


def _format_scalar(value: Any) -> str:
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    return _format_number(value)


def _is_array_index(key: str) -> bool:
    return _ARRAY_INDEX.fullmatch(key) is not None and int(key) < 2 ** 32 - 1


def _ordered_items(obj: dict) -> list:
    # Integer-like keys come first in ascending order, as peers enumerate them
    items = [(_format_key(k), v) for k, v in obj.items()]
    indexed = [kv for kv in items if _is_array_index(kv[0])]
    if not indexed:
        return items
    indexed.sort(key=lambda kv: int(kv[0]))
    return indexed + [kv for kv in items if not _is_array_index(kv[0])]


def _encode(obj: Any, parts: list) -> None:
    if obj is None or isinstance(obj, (bool, int, float)):
        parts.append(_format_scalar(obj))
    elif isinstance(obj, str):
        parts.append(_format_string(obj))
    elif isinstance(obj, dict):
        parts.append("{")
        for i, (key, value) in enumerate(_ordered_items(obj)):
            if i:
                parts.append(",")
            parts.append(_format_string(key))
            parts.append(":")
            _encode(value, parts)
        parts.append("}")
    elif isinstance(obj, (list, tuple)):
        parts.append("[")
        for i, item in enumerate(obj):
            if i:
                parts.append(",")
            _encode(item, parts)
        parts.append("]")
    else:
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def serialize(obj: Any) -> str:
    """
    Compact JSON text used for digests and for the wire.

    No whitespace, keys in insertion order (integer-like keys first),
    non-ASCII kept as-is and numbers in their shortest form.

    Raises:
        ValueError: For NaN, infinities and numbers beyond float range
        TypeError: For values JSON cannot represent
    """
    parts: list[str] = []
    _encode(obj, parts)
    return "".join(parts)


def serialize_body(body: Any) -> bytes:
    return serialize(body).encode("utf-8")


def hash_body(body: Any) -> str:
    """Digest of a message body."""
    return hash_bytes(serialize_body(body))


def build_message(
    message_type: Union[MessageType, str],
    body: Any,
    origin: Optional[str] = None,
) -> Message:
    """
    Build a message whose header carries the digest of body.

    Args:
        message_type: Value for header.type
        body: Any JSON-serializable payload
        origin: Value for header.from (defaults to the configured origin)
    """
    if isinstance(message_type, MessageType):
        message_type = message_type.value
    if origin is None:
        origin = get_settings().channel.origin_address

    header = MessageHeader(type=message_type, hash=hash_body(body), from_=origin)
    return Message(header=header, body=body)


def build_transaction(
    sender: str,
    receiver: str,
    amount: Union[int, float],
    origin: Optional[str] = None,
    time: Optional[int] = None,
) -> Message:
    """Build a "transaction" message from a freshly created record."""
    fields = {"sender": sender, "receiver": receiver, "amount": amount}
    if time is not None:
        fields["time"] = time
    record = TransactionRecord(**fields)
    return build_message(MessageType.TRANSACTION, record.to_body(), origin)


def verify(message: Message) -> bool:
    """True when header.hash matches the digest of the body."""
    computed = hash_body(message.body)
    return hmac.compare_digest(
        computed.encode("utf-8"),
        message.header.hash.encode("utf-8"),
    )


def encode_message(message: Message) -> bytes:
    """Serialized message without framing."""
    return serialize(message.to_wire()).encode("utf-8")


def _reject_constant(name: str):
    # NaN and Infinity have no compact JSON form to digest
    raise ValueError(f"non-standard JSON constant {name}")


def parse_message(raw: Union[bytes, str]) -> Message:
    """
    Parse received bytes into a Message.

    Raises:
        MessageParseError: If the bytes are not JSON or lack a valid header
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MessageParseError(f"Message is not valid UTF-8: {e}") from e

    try:
        data = json.loads(raw, parse_constant=_reject_constant)
    except ValueError as e:
        raise MessageParseError(f"Message does not parse as JSON: {e}") from e

    try:
        return Message.model_validate(data)
    except ValidationError as e:
        raise MessageParseError(f"Message has no valid header: {e.error_count()} errors") from e


def verify_message(raw: Union[bytes, str]) -> VerificationResult:
    """
    Parse, dispatch on type, and check the digest of a received message.

    Never raises for bad input: a parse failure is an INVALID_MESSAGE
    outcome. Unknown types are logged and still verified.
    """
    try:
        message = parse_message(raw)
    except MessageParseError as e:
        logger.warning("message_parse_failed", error=str(e))
        return VerificationResult(
            outcome=VerificationOutcome.INVALID_MESSAGE,
            error=str(e),
        )

    message_type = message.header.type
    if message_type == MessageType.TRANSACTION.value:
        logger.info("transaction_message_received", origin=message.header.from_)
    elif not message.is_known_type:
        logger.info("message_type_unknown", message_type=message_type)

    try:
        computed = hash_body(message.body)
    except ValueError as e:
        logger.warning("message_parse_failed", message_type=message_type, error=str(e))
        return VerificationResult(
            outcome=VerificationOutcome.INVALID_MESSAGE,
            message=message,
            message_type=message_type,
            known_type=message.is_known_type,
            expected_hash=message.header.hash,
            error=f"Message body cannot be digested: {e}",
        )

    matches = hmac.compare_digest(
        computed.encode("utf-8"),
        message.header.hash.encode("utf-8"),
    )
    if matches:
        logger.info("message_verified", message_type=message_type, hash=computed)
        outcome = VerificationOutcome.VERIFIED
    else:
        logger.warning(
            "integrity_failed",
            message_type=message_type,
            expected_hash=message.header.hash,
            computed_hash=computed,
        )
        outcome = VerificationOutcome.INTEGRITY_FAILED

    return VerificationResult(
        outcome=outcome,
        message=message,
        message_type=message_type,
        known_type=message.is_known_type,
        expected_hash=message.header.hash,
        computed_hash=computed,
    )


def build_reply(result: VerificationResult, origin: Optional[str] = None) -> Message:
    """
    Acknowledgement for a received frame: "ack" when verified, "nack"
    otherwise. The body names the outcome and the digest being answered.
    """
    reply_type = MessageType.ACK if result.verified else MessageType.NACK
    body = {
        "outcome": result.outcome.value,
        "hash": result.expected_hash,
    }
    if result.error:
        body["error"] = result.error
    return build_message(reply_type, body, origin)
