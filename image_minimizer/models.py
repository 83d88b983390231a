"""
Value objects and error types shared by every backend.

A `WorkItem` is the unit flowing through the pipeline: a filename, the
current payload and the diagnostics accumulated so far. Backends never
mutate the item they receive on success; they `derive` a new one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional


class FileType(NamedTuple):
    extension: str
    mime: str


class InvalidConfigError(TypeError):
    """Raised for malformed configuration; never recorded on an item."""


class UnknownPluginError(InvalidConfigError):
    pass


class TransformError(Exception):
    """Per-item failure carrying the offending filename in its message."""

    def __init__(self, filename: str, message: str) -> None:
        super().__init__(f"Error with '{filename}': {message}")
        self.filename = filename


class TransformWarning(Exception):
    """Advisory condition recorded on an item (not a hard error)."""


@dataclass
class WorkItem:
    filename: str
    data: bytes
    warnings: List[Exception] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)
    info: Dict[str, Any] = field(default_factory=dict)

    def derive(
        self,
        *,
        filename: Optional[str] = None,
        data: Optional[bytes] = None,
        info: Optional[Dict[str, Any]] = None,
    ) -> "WorkItem":
        """Copy this item with a new payload; diagnostics are carried forward."""
        merged = dict(self.info)
        if info:
            merged.update(info)
        return WorkItem(
            filename=self.filename if filename is None else filename,
            data=self.data if data is None else bytes(data),
            warnings=list(self.warnings),
            errors=list(self.errors),
            info=merged,
        )

    def mark(self, stage: str, backend: str, **extra: Any) -> Dict[str, Any]:
        """
        Build the additive info update for a processing stage.

        `stage` is either "generated" or "minimized"; the backend name is
        prepended to the matching provenance list.
        """
        provenance_key = f"{stage}By"
        return {
            **extra,
            stage: True,
            provenance_key: [backend, *self.info.get(provenance_key, [])],
        }
