"""SVG minification backend built on scour. Only handles `.svg` files."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Optional

from scour import scour

from .adapters import capture_failure
from .filenames import extension_of
from .models import InvalidConfigError, WorkItem

logger = logging.getLogger(__name__)

BACKEND_NAME = "svg"


@dataclass
class SvgOptions:
    # scour option names, e.g. {"enable_viewboxing": True, "strip_comments": True}
    encode_options: Dict[str, Any] = field(default_factory=dict)


def _scour_options(encode_options: Dict[str, Any]):
    options = scour.sanitizeOptions()
    for key, value in encode_options.items():
        if not hasattr(options, key):
            raise InvalidConfigError(f"Unknown SVG option '{key}'")
        setattr(options, key, value)
    return options


def optimize_svg(data: bytes, options) -> bytes:
    return scour.scourString(data.decode("utf-8"), options).encode("utf-8")


async def minify(item: WorkItem, options: Optional[SvgOptions] = None) -> Optional[WorkItem]:
    if extension_of(item.filename) != "svg":
        logger.debug("Not an SVG file, skipping %s", item.filename)
        return None

    scour_options = _scour_options((options or SvgOptions()).encode_options)
    try:
        result = await asyncio.to_thread(optimize_svg, item.data, scour_options)
    except Exception as exc:  # noqa: BLE001
        return capture_failure(item, exc)

    return item.derive(data=result, info=item.mark("minimized", BACKEND_NAME))
