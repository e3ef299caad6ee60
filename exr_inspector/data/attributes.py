"""Dirty tracking for the EXR attribute editor table."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union


class RowState(Enum):
    ORIGINAL = "original"
    MODIFIED = "modified"
    ADDED = "added"
    DELETED = "deleted"


@dataclass
class AttributeRow:
    name: str = ""
    value: str = ""
    original_name: Optional[str] = None
    original_value: Optional[str] = None
    added: bool = False
    deleted: bool = False

    @property
    def modified(self) -> bool:
        if self.added:
            return False
        return self.name != (self.original_name or "") or self.value != (self.original_value or "")

    @property
    def state(self) -> RowState:
        if self.added:
            return RowState.ADDED
        if self.deleted:
            return RowState.DELETED
        if self.modified:
            return RowState.MODIFIED
        return RowState.ORIGINAL


@dataclass(frozen=True)
class AttributeChanges:
    added: Tuple[Tuple[str, str], ...] = ()
    modified: Tuple[Tuple[str, str, str], ...] = ()
    deleted: Tuple[str, ...] = ()

    @property
    def empty(self) -> bool:
        return not (self.added or self.modified or self.deleted)


AttributeEntries = Union[Mapping[str, Any], Iterable[Tuple[Any, Any]]]


@dataclass
class AttributeTable:
    """Rows loaded from ``read_metadata`` plus the user's pending edits."""

    rows: List[AttributeRow] = field(default_factory=list)

    def load(self, entries: AttributeEntries) -> None:
        pairs = entries.items() if isinstance(entries, Mapping) else entries
        self.rows = [
            AttributeRow(str(name), str(value), str(name), str(value))
            for name, value in pairs
        ]

    def add_row(self, name: str = "", value: str = "") -> AttributeRow:
        row = AttributeRow(name=name, value=value, added=True)
        self.rows.append(row)
        return row

    def edit(self, index: int, *, name: Optional[str] = None, value: Optional[str] = None) -> AttributeRow:
        row = self.rows[index]
        if name is not None:
            row.name = name
        if value is not None:
            row.value = value
        # Typing into a deleted row brings it back.
        row.deleted = False
        return row

    def toggle_delete(self, index: int) -> Optional[AttributeRow]:
        """Delete or restore the row; rows added in this session are dropped."""

        row = self.rows[index]
        if row.added:
            del self.rows[index]
            return None
        row.deleted = not row.deleted
        return row

    def dirty_rows(self) -> List[AttributeRow]:
        return [row for row in self.rows if row.state is not RowState.ORIGINAL]

    @property
    def is_dirty(self) -> bool:
        return bool(self.dirty_rows())

    def changes(self) -> AttributeChanges:
        added = tuple((row.name, row.value) for row in self.rows if row.added and row.name)
        modified = tuple(
            (row.original_name or "", row.name, row.value)
            for row in self.rows
            if row.state is RowState.MODIFIED
        )
        deleted = tuple(row.original_name or "" for row in self.rows if row.state is RowState.DELETED)
        return AttributeChanges(added, modified, deleted)


__all__ = ["AttributeChanges", "AttributeRow", "AttributeTable", "RowState"]
