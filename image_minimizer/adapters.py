"""
Uniform transform contract shared by every backend.

An adapter is an async callable `(item, options) -> WorkItem | None`. A
returned item is a fresh copy; None means "leave the original item
untouched by this step", in which case a diagnostic may have been appended
to the original item's `warnings` or `errors`.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Awaitable, Optional, Protocol

from .filenames import extension_of, is_absolute_url
from .filetype import normalize_extension, sniff
from .models import TransformError, TransformWarning, WorkItem

logger = logging.getLogger(__name__)


class Mode(str, enum.Enum):
    MINIFY = "minify"
    GENERATE = "generate"


class Adapter(Protocol):
    def __call__(self, item: WorkItem, options: Any) -> Awaitable[Optional[WorkItem]]: ...


def capture_failure(item: WorkItem, exc: BaseException) -> None:
    """Record a backend fault on `item` with the filename for context."""
    error = TransformError(item.filename, str(exc) or type(exc).__name__)
    error.__cause__ = exc
    logger.warning("%s", error)
    item.errors.append(error)
    return None


def record_error(item: WorkItem, message: str) -> None:
    error = TransformError(item.filename, message)
    logger.warning("%s", error)
    item.errors.append(error)
    return None


def check_same_format(item: WorkItem, data: bytes, backend: str) -> bool:
    """
    Verify that a minify step kept the declared format.

    Appends a warning to `item` and returns False on mismatch. Absolute
    paths and URLs are not checked.
    """
    if is_absolute_url(item.filename):
        return True

    detected = sniff(data)
    ext_input = normalize_extension(extension_of(item.filename))
    if detected is not None and normalize_extension(detected.extension) != ext_input:
        item.warnings.append(
            TransformWarning(
                f'"{backend}" minify does not support generating "{detected.extension}" '
                f'from "{item.filename}". Use the generate mode instead.'
            )
        )
        logger.debug("Format mismatch for %s: got %s", item.filename, detected.extension)
        return False
    return True
