"""Data model shared by the prediction pipeline.

Everything here is immutable: a snapshot, the context collected from it,
and the request built around that context are never mutated once
handed to the next stage.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

from foresight.config import ModelCapabilities


@dataclass(frozen=True, order=True)
class CursorPosition:
    """Zero-based line and column (in characters) within a buffer."""

    line: int
    column: int


@dataclass(frozen=True)
class Diagnostic:
    line: int
    message: str
    severity: str = "error"


@dataclass(frozen=True)
class Reference:
    symbol: str
    location: str
    excerpt: str = ""


@dataclass(frozen=True)
class Signature:
    name: str
    text: str


@dataclass(frozen=True)
class BufferSnapshot:
    """A frozen copy of buffer state as supplied by the host.

    ``version`` increases whenever the host's buffer changes; it is what
    lets the pipeline notice that an anchor went stale.
    """

    buffer_id: str
    text: str
    version: int = 0
    language: str = "unknown"
    file_path: str | None = None
    tab_size: int = 4
    hard_tabs: bool = False
    diagnostics: tuple[Diagnostic, ...] = ()
    references: tuple[Reference, ...] = ()
    signatures: tuple[Signature, ...] = ()

    def offset_of(self, cursor: CursorPosition) -> int:
        """Character offset for a cursor, clamped to the buffer bounds."""
        if cursor.line < 0:
            return 0
        lines = self.text.split("\n")
        if cursor.line >= len(lines):
            return len(self.text)
        offset = sum(len(line) + 1 for line in lines[:cursor.line])
        return offset + max(0, min(cursor.column, len(lines[cursor.line])))


@dataclass(frozen=True)
class PromptContext:
    prefix: str
    suffix: str
    language: str = "unknown"
    file_path: str | None = None
    tab_size: int = 4
    hard_tabs: bool = False
    diagnostics: tuple[Diagnostic, ...] = ()
    references: tuple[Reference, ...] = ()
    signatures: tuple[Signature, ...] = ()


class Framing(enum.Enum):
    """How the model was asked to answer, which decides reconciliation."""

    FIM = "fim"
    COMPLETION = "completion"
    REWRITE = "rewrite"


@dataclass(frozen=True)
class PredictionRequest:
    id: int
    context: PromptContext
    model: ModelCapabilities
    buffer_id: str
    anchor: CursorPosition
    snapshot_version: int
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass(frozen=True)
class EditPrediction:
    """An insertion of ``inserted_text`` at ``anchor``."""

    anchor: CursorPosition
    inserted_text: str
    request_id: int
    buffer_id: str = ""
    snapshot_version: int = 0


class ErrorKind(enum.Enum):
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    MALFORMED_RESPONSE = "malformed_response"
    INTERNAL = "internal"


@dataclass(frozen=True)
class PredictionFailure:
    kind: ErrorKind
    request_id: int
    message: str = ""
