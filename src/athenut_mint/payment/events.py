"""Payment event types emitted by the backends.

Events are:
- Immutable (frozen dataclasses)
- Self-describing (event_type)
- Serializable for logging and the ops surface

Absence of an event is never an error, only "nothing yet".
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from athenut_mint.payment.base import Amount, PaymentIdentifier, WaitPaymentResponse


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PaymentEvent:
    """Base class for payment events."""

    event_id: UUID = field(default_factory=uuid4, kw_only=True)
    occurred_at: datetime = field(default_factory=_utcnow, kw_only=True)

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = asdict(self)
        data["event_type"] = self.event_type
        return _serialize_dict(data)

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def _serialize_dict(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize_dict(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_serialize_dict(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, Enum):
        return obj.value
    return obj


@dataclass(frozen=True)
class PaymentReceived(PaymentEvent):
    """An incoming payment was confirmed by the rail.

    `amount` is the settlement amount to credit, never the rail-native amount.
    """

    lookup_id: PaymentIdentifier
    amount: Amount
    payment_id: str

    @classmethod
    def from_response(cls, response: WaitPaymentResponse) -> PaymentReceived:
        return cls(
            lookup_id=response.payment_identifier,
            amount=response.payment_amount,
            payment_id=response.payment_id,
        )

    def to_response(self) -> WaitPaymentResponse:
        return WaitPaymentResponse(
            payment_identifier=self.lookup_id,
            payment_amount=self.amount,
            payment_id=self.payment_id,
        )
