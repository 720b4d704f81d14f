"""Graph and run models.

Wire format is camelCase (what the graph editor and REST clients exchange);
Python attributes are snake_case. Models carry no behaviour beyond structural
accessors.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
)
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class NodeType(str, Enum):
    TRIGGER = "TRIGGER"
    ACTION = "ACTION"
    CONDITION = "CONDITION"
    DELAY = "DELAY"
    END = "END"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


class LogicType(str, Enum):
    AND = "AND"
    OR = "OR"


class ConditionClause(WireModel):
    left: StrictStr = Field(min_length=1)
    op: ConditionOperator
    right: StrictStr | StrictInt | StrictFloat

    @field_validator("right")
    @classmethod
    def _right_not_blank(cls, value: str | int | float) -> str | int | float:
        if isinstance(value, str) and not value.strip():
            raise ValueError("right operand must not be empty")
        return value


class ConditionLogic(WireModel):
    type: LogicType
    clauses: list[ConditionClause] = Field(min_length=1)


class Node(WireModel):
    id: StrictStr = Field(min_length=1)
    label: StrictStr = Field(min_length=1)
    type: NodeType
    # Raw mapping so the persisted config round-trips untouched. Typed access
    # goes through node_config.parse_node_config().
    config: dict[str, Any] = Field(default_factory=dict)


class Edge(WireModel):
    id: StrictStr = Field(min_length=1)
    source: StrictStr = Field(min_length=1)
    target: StrictStr = Field(min_length=1)
    label: str | None = None
    condition_path: str | None = None


class Flow(WireModel):
    id: StrictStr = Field(min_length=1)
    name: StrictStr = Field(min_length=1)
    active: bool = False
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def trigger_nodes(self) -> list[Node]:
        return [n for n in self.nodes if n.type is NodeType.TRIGGER]

    def node_by_id(self, node_id: str) -> Node | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing_edges(self, node_id: str) -> list[Edge]:
        return [e for e in self.edges if e.source == node_id]

    def successors(self, node_id: str) -> list[str]:
        """Targets of the node's outgoing edges, in edge-list order."""

        return [e.target for e in self.outgoing_edges(node_id)]


class RunStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class LogLevel(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class LogEntry(WireModel):
    timestamp: datetime = Field(default_factory=utc_now)
    level: LogLevel
    message: str
    payload: Any = None


class ExecutionHistory(WireModel):
    """State of one run. Only the execution engine writes to it."""

    id: str
    flow_id: str
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None
    status: RunStatus = RunStatus.PENDING
    logs: list[LogEntry] = Field(default_factory=list)
    current_node_ids: list[str] = Field(default_factory=list)
    error: str | None = None


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class ValidationCode(str, Enum):
    SCHEMA_INVALID = "SCHEMA_INVALID"
    EMPTY_NODE_LABEL = "EMPTY_NODE_LABEL"
    EMPTY_EDGE_ID = "EMPTY_EDGE_ID"
    NO_TRIGGER = "NO_TRIGGER"
    INVALID_EDGE_REFERENCE = "INVALID_EDGE_REFERENCE"
    SELF_LOOP = "SELF_LOOP"
    DUPLICATE_NODE_IDS = "DUPLICATE_NODE_IDS"
    DUPLICATE_EDGE_IDS = "DUPLICATE_EDGE_IDS"
    INVALID_NODE_CONFIG = "INVALID_NODE_CONFIG"
    EMPTY_FLOW = "EMPTY_FLOW"
    NO_ACTIONS = "NO_ACTIONS"
    DISCONNECTED_NODE = "DISCONNECTED_NODE"
    UNREACHABLE_NODE = "UNREACHABLE_NODE"
    CYCLE_DETECTED = "CYCLE_DETECTED"
    NO_INCOMING_EDGE = "NO_INCOMING_EDGE"
    NO_OUTGOING_EDGE = "NO_OUTGOING_EDGE"
    INCOMPLETE_CONDITION = "INCOMPLETE_CONDITION"
    MISSING_TRUE_PATH = "MISSING_TRUE_PATH"
    MISSING_FALSE_PATH = "MISSING_FALSE_PATH"
    NO_REACHABLE_ACTIONS = "NO_REACHABLE_ACTIONS"
    NO_ACTION_NODES = "NO_ACTION_NODES"


class ValidationFinding(WireModel):
    code: ValidationCode
    message: str
    node_id: str | None = None
    edge_id: str | None = None
    severity: Severity = Severity.ERROR


class ValidationResult(WireModel):
    valid: bool
    errors: list[ValidationFinding] = Field(default_factory=list)

    def codes(self) -> list[str]:
        return [f.code.value for f in self.errors]
