"""
Transaction Record Model

A transaction is created when the user submits a transfer, appended to
the recent-transactions list document, and never mutated afterwards.

DESIGN DECISION: The record is frozen. History is append-only, so a
record that can change after it was written would make the stored log
and the transmitted digest disagree.
"""

import math
import time as _time
from datetime import datetime, timezone
from typing import Any, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(_time.time() * 1000)


class TransactionRecord(BaseModel):
    """
    A single transfer between two parties.

    Older clients wrote the receiver as "reciever" and the history view
    read it as "to"; all three spellings are accepted on input.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        frozen=True,
        populate_by_name=True,
    )

    sender: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Who sends the amount"
    )
    receiver: str = Field(
        ...,
        min_length=1,
        max_length=200,
        validation_alias=AliasChoices("receiver", "reciever", "to"),
        description="Who receives the amount"
    )
    amount: Union[int, float] = Field(
        ...,
        description="Amount transferred (positive)"
    )
    time: int = Field(
        default_factory=now_ms,
        ge=0,
        description="Creation time as epoch milliseconds"
    )

    @field_validator('amount', mode='before')
    @classmethod
    def validate_amount(cls, v: Any) -> Union[int, float]:
        """Amount must be a real, positive, finite JSON number."""
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("Amount must be a number")
        try:
            finite = math.isfinite(v)
        except OverflowError:
            finite = False
        if not finite or v <= 0:
            raise ValueError("Amount must be a positive finite number")
        return v

    @field_validator('time', mode='before')
    @classmethod
    def coerce_datetime(cls, v: Any) -> Any:
        """Accept datetimes as well as epoch milliseconds."""
        if isinstance(v, datetime):
            if v.tzinfo is None:
                v = v.replace(tzinfo=timezone.utc)
            return int(v.timestamp() * 1000)
        return v

    @property
    def timestamp(self) -> datetime:
        """Creation time as an aware UTC datetime."""
        return datetime.fromtimestamp(self.time / 1000, tz=timezone.utc)

    def to_body(self) -> dict:
        """Plain JSON payload used for storage and as a message body."""
        return {
            "sender": self.sender,
            "receiver": self.receiver,
            "amount": self.amount,
            "time": self.time,
        }
