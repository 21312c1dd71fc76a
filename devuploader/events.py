from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List


class ChangeKind(enum.Enum):
    CREATED = "create"
    MODIFIED = "modify"
    DELETED = "remove"
    OTHER = "other"

    @classmethod
    def from_raw(cls, kind: str) -> "ChangeKind":
        try:
            return cls(kind)
        except ValueError:
            return cls.OTHER


WRITE_KINDS = frozenset({ChangeKind.CREATED, ChangeKind.MODIFIED})


@dataclass(frozen=True)
class RawEvent:
    """A notification as pushed by an event source: one kind, many paths."""

    kind: str
    paths: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    path: str


@dataclass(frozen=True)
class IgnoreRules:
    suffixes: FrozenSet[str] = frozenset()
    substrings: FrozenSet[str] = frozenset()

    @classmethod
    def from_lists(cls, suffixes: Iterable[str] = (), substrings: Iterable[str] = ()) -> "IgnoreRules":
        # empty patterns would match every path
        return cls(
            suffixes=frozenset(s for s in suffixes if s),
            substrings=frozenset(s for s in substrings if s),
        )


def to_change_events(raw: RawEvent) -> List[ChangeEvent]:
    kind = ChangeKind.from_raw(raw.kind)
    return [ChangeEvent(kind, p) for p in raw.paths]


def should_keep(event: ChangeEvent, rules: IgnoreRules) -> bool:
    if event.kind not in WRITE_KINDS:
        return False
    if any(event.path.endswith(s) for s in rules.suffixes):
        return False
    if any(s in event.path for s in rules.substrings):
        return False
    return True
