"""Typed node configuration.

`Node.config` is stored as a raw mapping; this module turns it into one typed
variant per node type and reports the first rule it breaks.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, TypeAlias

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
    model_validator,
)

from .models import ConditionLogic, Node, NodeType


class NodeConfigError(ValueError):
    pass


class DelayUnit(str, Enum):
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


_UNIT_MILLISECONDS: dict[DelayUnit, int] = {
    DelayUnit.SECONDS: 1000,
    DelayUnit.MINUTES: 60 * 1000,
    DelayUnit.HOURS: 60 * 60 * 1000,
    DelayUnit.DAYS: 24 * 60 * 60 * 1000,
}


def delay_to_milliseconds(amount: int, unit: DelayUnit | str) -> int:
    return _UNIT_MILLISECONDS[DelayUnit(unit)] * amount


class _Config(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TriggerConfig(_Config):
    model_config = ConfigDict(extra="allow")


class EndConfig(_Config):
    model_config = ConfigDict(extra="allow")


class DelaySpec(_Config):
    amount: StrictInt = Field(gt=0, le=365)
    unit: DelayUnit

    @field_validator("amount", mode="before")
    @classmethod
    def _integral_float(cls, value: Any) -> Any:
        # Integral floats such as 2.0 count as integers; 2.5 and "2" do not.
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value


class DelayConfig(_Config):
    delay: DelaySpec


class ActionConfig(_Config):
    to_field: StrictStr = Field(alias="toField", min_length=1)
    template: StrictStr | None = None
    body: StrictStr | None = None

    @model_validator(mode="after")
    def _require_content(self) -> ActionConfig:
        if not self.to_field.strip():
            raise ValueError("toField must not be empty")
        if not (self.template or "").strip() and not (self.body or "").strip():
            raise ValueError("ACTION node requires a template or a non-empty body")
        return self


class ConditionConfig(_Config):
    logic: ConditionLogic


NodeConfig: TypeAlias = TriggerConfig | ActionConfig | ConditionConfig | DelayConfig | EndConfig

_CONFIG_MODELS: dict[NodeType, type[_Config]] = {
    NodeType.TRIGGER: TriggerConfig,
    NodeType.ACTION: ActionConfig,
    NodeType.CONDITION: ConditionConfig,
    NodeType.DELAY: DelayConfig,
    NodeType.END: EndConfig,
}

# Checked before field-level validation so an absent config reads naturally.
_MISSING_CONFIG_MESSAGES: dict[NodeType, tuple[str | None, str]] = {
    NodeType.DELAY: (None, "DELAY node requires config with delay settings"),
    NodeType.ACTION: (None, "ACTION node requires config with action details"),
    NodeType.CONDITION: ("logic", "CONDITION node requires config.logic"),
}


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    cause: Any = (err.get("ctx") or {}).get("error")
    message = str(cause) if cause is not None else err["msg"]
    location = ".".join(str(part) for part in err["loc"])
    return f"{location}: {message}" if location else message


def parse_node_config(node: Node) -> NodeConfig:
    """Return the typed config variant for ``node`` or raise NodeConfigError."""

    required = _MISSING_CONFIG_MESSAGES.get(node.type)
    if required is not None:
        key, message = required
        present = node.config.get(key) if key is not None else node.config
        if not present:
            raise NodeConfigError(message)

    model = _CONFIG_MODELS[node.type]
    try:
        return model.model_validate(node.config)  # type: ignore[return-value]
    except ValidationError as e:
        raise NodeConfigError(_first_error(e)) from e


def validate_node_config(node: Node) -> str | None:
    try:
        parse_node_config(node)
    except NodeConfigError as e:
        return str(e)
    return None
