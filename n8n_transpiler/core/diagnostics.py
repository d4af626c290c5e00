"""
diagnostics.py
==============
Warning channel shared by the parser and the pattern detector.

Structural defects and pattern-detection gaps are collected here instead of
being raised, so callers always receive the partial model together with the
list of caveats to show the user.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

logger = logging.getLogger(__name__)


class DiagnosticCode(str, Enum):
    DANGLING_CONNECTION = "dangling_connection"
    DUPLICATE_NODE_NAME = "duplicate_node_name"
    INVALID_NODE = "invalid_node"
    INVALID_SETTINGS = "invalid_settings"
    UNMERGED_BRANCH = "unmerged_branch"
    LOOP_BODY_EMPTY = "loop_body_empty"
    LOOP_END_NOT_FOUND = "loop_end_not_found"
    AMBIGUOUS_LOOP_END = "ambiguous_loop_end"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    code: DiagnosticCode
    message: str
    node: str | None = None
    severity: Severity = Severity.WARNING

    def __str__(self) -> str:
        prefix = f"[{self.node}] " if self.node else ""
        return f"{prefix}{self.message}"


@dataclass
class Diagnostics:
    """Ordered, append-only list of diagnostics for one conversion run."""

    items: list[Diagnostic] = field(default_factory=list)

    def warn(self, code: DiagnosticCode, message: str, node: str | None = None) -> Diagnostic:
        diagnostic = Diagnostic(code=code, message=message, node=node)
        self.items.append(diagnostic)
        logger.warning("%s: %s", code.value, diagnostic)
        return diagnostic

    def by_code(self, code: DiagnosticCode) -> list[Diagnostic]:
        return [d for d in self.items if d.code == code]

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)
