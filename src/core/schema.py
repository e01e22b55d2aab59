"""
Core records - code table snapshots, restriction lists and resolution results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

LEVEL_SEPARATOR = " → "
FULL_CODE_LENGTH = 10


def join_labels(labels: Iterable[str]) -> str:
    return LEVEL_SEPARATOR.join(labels)


def split_description(description: str) -> Tuple[str, ...]:
    return tuple(part for part in description.split(LEVEL_SEPARATOR) if part)


@dataclass(frozen=True)
class CodeRecord:
    code: str
    labels: Tuple[str, ...]

    @property
    def description(self) -> str:
        return join_labels(self.labels)


@dataclass(frozen=True)
class ChangeSummary:
    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0

    @property
    def total_changes(self) -> int:
        return self.added + self.updated + self.removed

    def to_dict(self) -> Dict[str, int]:
        return {
            "added": self.added,
            "updated": self.updated,
            "removed": self.removed,
            "unchanged": self.unchanged,
        }


class CodeTable:
    """Immutable snapshot of code -> breadcrumb labels.

    A snapshot is never mutated; a sync run builds a new one and the store
    slot is overwritten wholesale.
    """

    __slots__ = ("_entries", "last_sync", "change_summary")

    def __init__(self, entries: Mapping[str, Tuple[str, ...]], last_sync: Optional[datetime] = None,
                 change_summary: Optional[ChangeSummary] = None):
        self._entries = MappingProxyType(dict(entries))
        self.last_sync = last_sync
        self.change_summary = change_summary

    @classmethod
    def empty(cls) -> "CodeTable":
        return cls({})

    @classmethod
    def from_records(cls, records: Iterable[CodeRecord]) -> "CodeTable":
        """Build a table from flattened records; a later duplicate code wins."""
        return cls({record.code: tuple(record.labels) for record in records})

    @classmethod
    def from_wire(cls, data: Mapping[str, str]) -> "CodeTable":
        """Build a table from the stored code -> joined description mapping."""
        return cls({code: split_description(description) for code, description in data.items()})

    def to_wire(self) -> Dict[str, str]:
        return {code: join_labels(labels) for code, labels in self._entries.items()}

    @property
    def entries(self) -> Mapping[str, Tuple[str, ...]]:
        return self._entries

    def get(self, code: str) -> Optional[Tuple[str, ...]]:
        return self._entries.get(code)

    def description_of(self, code: str) -> Optional[str]:
        labels = self._entries.get(code)
        return join_labels(labels) if labels is not None else None

    def codes_with_prefix(self, prefix: str) -> List[str]:
        return [code for code in self._entries if code.startswith(prefix)]

    def __contains__(self, code: object) -> bool:
        return code in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def __repr__(self) -> str:
        return f"CodeTable(records={len(self._entries)}, last_sync={self.last_sync!r})"


@dataclass(frozen=True)
class StatusList:
    """Named set of restriction prefixes, replaced wholesale on update."""
    name: str
    prefixes: FrozenSet[str] = frozenset()
    last_updated: Optional[datetime] = None
    updated_by: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.prefixes)

    def matches(self, code: str) -> bool:
        return any(code.startswith(prefix) for prefix in self.prefixes)

    def to_dict(self) -> Dict:
        return {
            "codes": sorted(self.prefixes),
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
            "updatedBy": self.updated_by,
            "count": self.count,
        }

    @classmethod
    def from_dict(cls, name: str, data: Mapping) -> "StatusList":
        last_updated = data.get("lastUpdated")
        return cls(
            name=name,
            prefixes=frozenset(data.get("codes") or []),
            last_updated=datetime.fromisoformat(last_updated) if last_updated else None,
            updated_by=data.get("updatedBy"),
        )


class MatchKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    EXACT_FINAL = "exact_final"
    EXACT_GENERAL_WITH_SUBCODES = "exact_general_with_subcodes"
    SINGLE_SUBCODE_EXTENSION = "single_subcode_extension"
    PREFIX_EXTENSION = "prefix_extension"


class Restriction(str, Enum):
    NONE = "none"
    SANCTION = "sanction"
    SANEPID = "sanepid"


DETERMINATE_KINDS = frozenset({
    MatchKind.EXACT_FINAL,
    MatchKind.SINGLE_SUBCODE_EXTENSION,
    MatchKind.PREFIX_EXTENSION,
})


@dataclass(frozen=True)
class MatchResult:
    """Outcome of resolving one query. Shared fields across every match kind."""
    kind: MatchKind
    query: str
    code: str = ""
    original_code: Optional[str] = None
    labels: Tuple[str, ...] = ()
    exact_match: bool = False
    subcodes: Tuple[str, ...] = ()
    subcode_count: int = 0
    matched_prefix: Optional[str] = None
    sanctioned: bool = False
    sanepid: bool = False
    restriction: Restriction = Restriction.NONE
    restriction_message: Optional[str] = None
    error: Optional[str] = None
    placeholder: Optional[str] = field(default=None, repr=False)

    @property
    def found(self) -> bool:
        return self.kind not in (MatchKind.INVALID_INPUT, MatchKind.NOT_FOUND)

    @property
    def is_valid(self) -> bool:
        return self.kind in DETERMINATE_KINDS and self.restriction is Restriction.NONE

    @property
    def is_general_code(self) -> bool:
        return self.kind is MatchKind.EXACT_GENERAL_WITH_SUBCODES

    @property
    def is_single_subcode(self) -> bool:
        return self.kind is MatchKind.SINGLE_SUBCODE_EXTENSION

    @property
    def is_extended_from_prefix(self) -> bool:
        return self.kind is MatchKind.PREFIX_EXTENSION

    @property
    def description(self) -> Optional[str]:
        if self.labels:
            return join_labels(self.labels)
        return self.placeholder
