"""
In-process Pillow backend.

Supports EXIF-aware or fixed-angle rotation, pixel or percent resizing and
re-encoding either to the input's own format (minify) or to a single
configured target format (generate).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
import logging
from typing import Any, Callable, Dict, Mapping, NamedTuple, Optional, Union

from .adapters import capture_failure, record_error
from .filenames import extension_of, with_size_suffix
from .models import InvalidConfigError, WorkItem
from .preprocessing import (
    ResizeOptions,
    Rotate,
    encode_frames,
    load_image,
    read_size,
    resize_frames,
    resolve_resize,
    rotate_frames,
    validate_rotate,
)

logger = logging.getLogger(__name__)

BACKEND_NAME = "pillow"

# extension -> Pillow format name
MINIFY_FORMATS: Dict[str, str] = {
    "avif": "AVIF",
    "gif": "GIF",
    "heic": "HEIF",
    "heif": "HEIF",
    "j2c": "JPEG2000",
    "j2k": "JPEG2000",
    "jp2": "JPEG2000",
    "jpeg": "JPEG",
    "jpg": "JPEG",
    "jpx": "JPEG2000",
    "png": "PNG",
    "tif": "TIFF",
    "tiff": "TIFF",
    "webp": "WEBP",
}

GENERATE_FORMATS: Dict[str, str] = {**MINIFY_FORMATS, "bmp": "BMP"}

SizeSuffix = Callable[[int, int], str]


@dataclass
class PillowOptions:
    encode_options: Dict[str, Mapping[str, Any]] = field(default_factory=dict)
    resize: Union[ResizeOptions, Mapping[str, Any], None] = None
    rotate: Rotate = None
    size_suffix: Optional[SizeSuffix] = None

    def __post_init__(self) -> None:
        self.resize = ResizeOptions.from_value(self.resize)
        validate_rotate(self.rotate)


class _Encoded(NamedTuple):
    data: bytes
    width: int
    height: int


async def _resolve_percent(data: bytes, resize: Optional[ResizeOptions]) -> Optional[ResizeOptions]:
    """Convert a percent resize into pixels using the source's real size."""
    if resize is None or not resize.enabled or resize.unit != "percent":
        return resize
    if resize.width is None and resize.height is None:
        return resize
    source_size = await asyncio.to_thread(read_size, data)
    width, height = resolve_resize(resize, source_size)
    return replace(resize, unit="px", width=width, height=height)


def _process(
    data: bytes,
    resize: Optional[ResizeOptions],
    rotate: Rotate,
    fmt: Optional[str],
    encode_options_for: Callable[[str], Optional[Mapping[str, Any]]],
) -> _Encoded:
    decoded = load_image(data)
    frames = rotate_frames(decoded.frames, rotate)
    target = resolve_resize(resize, frames[0].size)
    if target is not None:
        frames = resize_frames(frames, target, resize)

    output_format = fmt or decoded.format
    if output_format is None:
        raise ValueError("Could not determine the image format")
    binary = encode_frames(frames, output_format, encode_options_for(output_format))
    width, height = frames[0].size
    return _Encoded(binary, width, height)


def _minify_encode_options(encode_options: Mapping[str, Mapping[str, Any]]):
    def lookup(pillow_format: str) -> Optional[Mapping[str, Any]]:
        for ext, fmt in MINIFY_FORMATS.items():
            if fmt == pillow_format and ext in encode_options:
                return encode_options[ext]
        return None

    return lookup


async def transform(
    item: WorkItem, options: Optional[PillowOptions] = None, target_format: Optional[str] = None
) -> Optional[WorkItem]:
    """
    Shared minify/generate path.

    Without `target_format` the image is re-encoded in its own format and
    unsupported inputs are skipped silently; with it, unsupported inputs
    are recorded as errors.
    """
    options = options or PillowOptions()
    input_ext = extension_of(item.filename)
    supported = GENERATE_FORMATS if target_format else MINIFY_FORMATS
    if input_ext not in supported:
        if target_format:
            return record_error(item, "Input file has an unsupported format")
        logger.debug("Pillow backend does not minify %s, skipping", item.filename)
        return None

    resize = ResizeOptions.from_value(options.resize)
    try:
        resize = await _resolve_percent(item.data, resize)
        if target_format:
            fmt = GENERATE_FORMATS[target_format]
            target_options = options.encode_options.get(target_format)
            encode_options_for = lambda _fmt: target_options  # noqa: E731
        else:
            fmt = None
            encode_options_for = _minify_encode_options(options.encode_options)
        encoded = await asyncio.to_thread(_process, item.data, resize, options.rotate, fmt, encode_options_for)
    except Exception as exc:  # noqa: BLE001
        return capture_failure(item, exc)

    output_ext = target_format or input_ext
    suffix = options.size_suffix(encoded.width, encoded.height) if options.size_suffix else ""
    stage = "generated" if target_format else "minimized"

    return item.derive(
        filename=with_size_suffix(item.filename, suffix, output_ext),
        data=encoded.data,
        info=item.mark(stage, BACKEND_NAME, width=encoded.width, height=encoded.height),
    )


async def generate(item: WorkItem, options: Optional[PillowOptions] = None) -> Optional[WorkItem]:
    options = options or PillowOptions()
    targets = list(options.encode_options)
    if not targets:
        return record_error(
            item, "No result from 'pillow', please configure the 'encode_options' option to generate images"
        )
    if len(targets) > 1:
        return record_error(
            item,
            "Multiple values for the 'encode_options' option is not supported, "
            "specify only one codec for the generator",
        )
    if targets[0] not in GENERATE_FORMATS:
        raise InvalidConfigError(
            f"Unsupported target format '{targets[0]}', expected one of {', '.join(GENERATE_FORMATS)}"
        )
    return await transform(item, options, targets[0])


async def minify(item: WorkItem, options: Optional[PillowOptions] = None) -> Optional[WorkItem]:
    return await transform(item, options)
