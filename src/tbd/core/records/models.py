"""
Record data models for tbd.

Defines the Record model (one issue/task), its enums, and the per-field
merge strategy table used by the three-way merger. The table is checked
against the model's field set when this module is imported, so a field
added without a strategy fails loudly instead of merging silently wrong.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tbd.core.ids.generator import INTERNAL_ID_PATTERN, generate_internal_id
from tbd.utils.timeutil import ensure_utc, now_utc


class RecordKind(str, Enum):
    """Kind of work a record describes."""

    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    EPIC = "epic"
    CHORE = "chore"


class RecordStatus(str, Enum):
    """Record lifecycle status.

    Closing a record is a status transition; records are never deleted by
    normal workflow.
    """

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    CLOSED = "closed"


class MergeStrategy(str, Enum):
    """How a field is resolved when both sides changed it differently."""

    IMMUTABLE = "immutable"  # keep base
    LWW = "lww"  # later whole-record updated_at wins
    UNION = "union"  # deduplicated union, local order first
    MAX = "max"  # numeric/temporal maximum


class Dependency(BaseModel):
    """A directed dependency edge: this record blocks ``target``."""

    type: Literal["blocks"] = Field(default="blocks", description="Dependency type")
    target: str = Field(..., pattern=INTERNAL_ID_PATTERN, description="Internal id of the target")

    model_config = ConfigDict(frozen=True)


class Record(BaseModel):
    """
    A single issue/task record.

    Records are immutable values. Use ``Record.create`` for new records and
    ``with_changes`` to derive an edited copy (which bumps ``version`` and
    ``updated_at``).

    Example:
        >>> record = Record.create(title="Fix login redirect", kind=RecordKind.BUG)
        >>> record.version
        1
        >>> edited = record.with_changes(status=RecordStatus.IN_PROGRESS)
        >>> edited.version
        2
    """

    # Identity
    type: Literal["is"] = Field(default="is", description="Entity discriminator")
    id: str = Field(..., pattern=INTERNAL_ID_PATTERN, description="Internal id (is-<ulid>)")
    version: int = Field(default=1, ge=0, description="Monotonic edit counter")
    kind: RecordKind = Field(default=RecordKind.TASK, description="Record kind")

    # Content
    title: str = Field(..., min_length=1, max_length=500, description="Record title")
    description: str | None = Field(default=None, description="Markdown description")
    notes: str | None = Field(default=None, description="Working notes")

    # Workflow
    status: RecordStatus = Field(default=RecordStatus.OPEN, description="Current status")
    priority: int = Field(default=2, ge=0, le=4, description="0 = critical, 4 = backlog")
    assignee: str | None = Field(default=None, description="Assigned person")
    parent_id: str | None = Field(
        default=None, pattern=INTERNAL_ID_PATTERN, description="Parent record id"
    )
    labels: list[str] = Field(default_factory=list, description="Labels (set semantics)")
    dependencies: list[Dependency] = Field(
        default_factory=list, description="Records this record blocks"
    )

    # Timestamps
    created_at: datetime = Field(..., description="When the record was created (UTC)")
    created_by: str | None = Field(default=None, description="Who created the record")
    updated_at: datetime = Field(..., description="When the record was last changed (UTC)")
    closed_at: datetime | None = Field(default=None, description="When the record was closed")
    close_reason: str | None = Field(default=None, description="Why the record was closed")
    due_date: datetime | None = Field(default=None, description="Due date")
    deferred_until: datetime | None = Field(default=None, description="Deferred until")

    # Opaque data owned by integrations
    extensions: dict[str, Any] = Field(default_factory=dict, description="Extension data")

    model_config = ConfigDict(frozen=True)

    @field_validator(
        "created_at", "updated_at", "closed_at", "due_date", "deferred_until", mode="after"
    )
    @classmethod
    def validate_utc(cls, v: datetime | None) -> datetime | None:
        """Interpret naive datetimes as UTC."""
        if v is None:
            return None
        return ensure_utc(v)

    @classmethod
    def create(cls, title: str, **fields: Any) -> "Record":
        """
        Create a new record with a fresh internal id.

        Args:
            title: Record title
            **fields: Any other field values

        Returns:
            Record with version 1 and created_at == updated_at == now
        """
        now = now_utc()
        data: dict[str, Any] = {
            "id": generate_internal_id(),
            "created_at": now,
            **fields,
            "title": title,
            "version": 1,
            "updated_at": now,
        }
        if "created_at" in fields:
            data["updated_at"] = data["created_at"]
        return cls.model_validate(data)

    def with_changes(self, **changes: Any) -> "Record":
        """
        Return an edited copy with ``version + 1`` and ``updated_at = now``.

        Identity fields cannot be changed this way.

        Raises:
            ValueError: If an immutable field is included in ``changes``
        """
        immutable = [
            name for name in changes if FIELD_STRATEGIES.get(name) == MergeStrategy.IMMUTABLE
        ]
        if immutable:
            raise ValueError(f"Cannot change immutable fields: {', '.join(immutable)}")

        data = self.model_dump()
        data.update(changes)
        data["version"] = self.version + 1
        data["updated_at"] = now_utc()
        return Record.model_validate(data)

    @property
    def is_closed(self) -> bool:
        return self.status == RecordStatus.CLOSED


FIELD_STRATEGIES: dict[str, MergeStrategy] = {
    "type": MergeStrategy.IMMUTABLE,
    "id": MergeStrategy.IMMUTABLE,
    "version": MergeStrategy.MAX,
    "kind": MergeStrategy.IMMUTABLE,
    "title": MergeStrategy.LWW,
    "description": MergeStrategy.LWW,
    "notes": MergeStrategy.LWW,
    "status": MergeStrategy.LWW,
    "priority": MergeStrategy.LWW,
    "assignee": MergeStrategy.LWW,
    "parent_id": MergeStrategy.LWW,
    "labels": MergeStrategy.UNION,
    "dependencies": MergeStrategy.UNION,
    "created_at": MergeStrategy.IMMUTABLE,
    "created_by": MergeStrategy.IMMUTABLE,
    "updated_at": MergeStrategy.MAX,
    "closed_at": MergeStrategy.LWW,
    "close_reason": MergeStrategy.LWW,
    "due_date": MergeStrategy.LWW,
    "deferred_until": MergeStrategy.LWW,
    "extensions": MergeStrategy.LWW,
}


def check_strategy_table(
    model: type[BaseModel], strategies: dict[str, MergeStrategy]
) -> None:
    """
    Verify that ``strategies`` covers exactly the fields of ``model``.

    Raises:
        TypeError: If a field has no strategy or a strategy names no field
    """
    fields = set(model.model_fields)
    missing = sorted(fields - set(strategies))
    unknown = sorted(set(strategies) - fields)
    if missing or unknown:
        raise TypeError(
            f"Merge strategy table for {model.__name__} is out of date: "
            f"missing={missing} unknown={unknown}"
        )


check_strategy_table(Record, FIELD_STRATEGIES)
