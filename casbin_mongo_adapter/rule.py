"""
Rule record type for the Casbin MongoDB adapter.

A CasbinRule is the persisted form of a single Casbin policy line. Each rule
is stored as one document with a ``ptype`` discriminator and up to six
positional values ``v0``..``v5``. Only the populated prefix of the values is
written, so a three-value permission rule produces ``v0``, ``v1`` and ``v2``
and nothing else.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

MAX_VALUES = 6

PTYPE_FIELD = "ptype"
VALUE_FIELDS = tuple(f"v{i}" for i in range(MAX_VALUES))
INDEX_FIELDS = (PTYPE_FIELD, *VALUE_FIELDS)


def _iso_now() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class CasbinRule:
    """
    One persisted Casbin policy rule.

    Attributes:
        ptype: Rule type, e.g. "p" for permissions or "g" for role grouping.
        values: The populated positional values, at most six. Position i is
            stored as field ``v{i}``.
        created_at: ISO-8601 creation timestamp, or None.
        updated_at: ISO-8601 update timestamp, or None.

    Example:
        >>> rule = CasbinRule.from_policy("p", ["alice", "data1", "read"])
        >>> rule.to_line()
        'p, alice, data1, read'
    """
    ptype: str
    values: tuple[str, ...] = ()
    created_at: str | None = None
    updated_at: str | None = None

    def __post_init__(self) -> None:
        if len(self.values) > MAX_VALUES:
            raise ValueError(
                f"a rule holds at most {MAX_VALUES} values, got {len(self.values)}"
            )

    @classmethod
    def from_policy(
        cls,
        ptype: str,
        rule: Iterable[str],
        include_timestamps: bool = False,
    ) -> CasbinRule:
        """
        Build a record from a Casbin rule tuple.

        Values past the sixth are dropped.

        Args:
            ptype: Rule type.
            rule: Ordered rule values.
            include_timestamps: Stamp created_at/updated_at with the current time.
        """
        values = tuple(rule)[:MAX_VALUES]
        if include_timestamps:
            now = _iso_now()
            return cls(ptype=ptype, values=values, created_at=now, updated_at=now)
        return cls(ptype=ptype, values=values)

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> CasbinRule:
        """
        Build a record from a stored document.

        Reading stops at the first unset position so that the values always
        form a contiguous prefix. MongoDB's ``_id`` is ignored.
        """
        values: list[str] = []
        for name in VALUE_FIELDS:
            value = document.get(name)
            if value is None:
                break
            values.append(value)
        return cls(
            ptype=document.get(PTYPE_FIELD, ""),
            values=tuple(values),
            created_at=document.get("createdAt"),
            updated_at=document.get("updatedAt"),
        )

    def to_document(self) -> dict[str, Any]:
        """Convert to a MongoDB document. Unset fields are omitted."""
        document: dict[str, Any] = {PTYPE_FIELD: self.ptype}
        for name, value in zip(VALUE_FIELDS, self.values):
            document[name] = value
        if self.created_at is not None:
            document["createdAt"] = self.created_at
        if self.updated_at is not None:
            document["updatedAt"] = self.updated_at
        return document

    def to_line(self) -> str:
        """Render as a Casbin policy line, e.g. ``g, alice, admin``."""
        return ", ".join([self.ptype, *self.values])


@dataclass(frozen=True)
class RuleFilter:
    """
    Partial-match pattern used by filtered removal.

    Only the positions present in ``fields`` take part in the match; every
    other position acts as a wildcard.
    """
    ptype: str
    fields: dict[int, str] = field(default_factory=dict)

    @classmethod
    def from_field_values(
        cls,
        ptype: str,
        field_index: int,
        field_values: Iterable[str],
    ) -> RuleFilter:
        """
        Map ``field_values[i]`` to position ``field_index + i``.

        Positions outside 0..5 are dropped, as are empty values, which
        Casbin uses to mean "any value".
        """
        fields: dict[int, str] = {}
        for offset, value in enumerate(field_values):
            position = field_index + offset
            if 0 <= position < MAX_VALUES and value:
                fields[position] = value
        return cls(ptype=ptype, fields=fields)

    def to_query(self) -> dict[str, Any]:
        """Convert to a MongoDB equality query."""
        query: dict[str, Any] = {PTYPE_FIELD: self.ptype}
        for position in sorted(self.fields):
            query[VALUE_FIELDS[position]] = self.fields[position]
        return query
