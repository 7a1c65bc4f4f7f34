from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

Row = Mapping[str, str]
ColumnSet = Tuple[str, ...]


@dataclass(frozen=True)
class Dataset:
    """Rows of string cells plus the column order taken from the first row."""
    rows: Tuple[Dict[str, str], ...]
    columns: ColumnSet
    version: int = 0
    source_name: Optional[str] = None

    @classmethod
    def from_rows(cls, rows: Sequence[Mapping[str, Any]], *, source_name: Optional[str] = None) -> "Dataset":
        normalized = tuple({str(k): "" if v is None else str(v) for k, v in row.items()} for row in rows)
        columns: ColumnSet = tuple(normalized[0].keys()) if normalized else ()
        return cls(rows=normalized, columns=columns, source_name=source_name)

    @property
    def record_count(self) -> int:
        return len(self.rows)

    def head(self, n: int) -> List[Dict[str, str]]:
        return [dict(r) for r in self.rows[: max(0, n)]]

    def column_values(self, column: str) -> List[str]:
        return [row.get(column, "") for row in self.rows]

    def with_version(self, version: int) -> "Dataset":
        return Dataset(rows=self.rows, columns=self.columns, version=version, source_name=self.source_name)


@dataclass(frozen=True)
class ColumnSummary:
    mean: str
    median: str
    max: str
    min: str
    sum: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


SummaryTable = Dict[str, ColumnSummary]


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class ConversationLog:
    """Append-only transcript; `append` returns a new log."""
    messages: Tuple[ChatMessage, ...] = field(default_factory=tuple)

    def append(self, message: ChatMessage) -> "ConversationLog":
        return ConversationLog(self.messages + (message,))

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self):
        return iter(self.messages)

    def to_list(self) -> List[Dict[str, str]]:
        return [m.to_dict() for m in self.messages]


@dataclass(frozen=True)
class InsightResult:
    version: int
    insights: Tuple[str, ...]
    ok: bool
