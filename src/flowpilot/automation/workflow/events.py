from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import Field

from .models import WireModel


class TriggerType(str, Enum):
    NEW_ORDER = "NEW_ORDER"
    ABANDONED_CHECKOUT = "ABANDONED_CHECKOUT"
    CUSTOMER_REGISTRATION = "CUSTOMER_REGISTRATION"
    ORDER_STATUS_CHANGE = "ORDER_STATUS_CHANGE"


class TriggerPayload(WireModel):
    """A business event that starts a run.

    The context is the data condition clauses and action configs refer to by
    dotted path.
    """

    type: TriggerType
    context: dict[str, Any] = Field(default_factory=dict)
