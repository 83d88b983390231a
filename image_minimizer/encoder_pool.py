"""
Encoder-pool backend.

Decoding, preprocessing and encoding run inside a worker-process pool.
The pool is an explicit handle: callers that pass one in keep ownership
and it is never closed here; when none is given an ad-hoc single-worker
pool is created for the call and closed on every exit path.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import Executor, ProcessPoolExecutor
from dataclasses import dataclass, field
import functools
import logging
from typing import Any, Dict, Mapping, NamedTuple, Optional, Union

from .adapters import capture_failure, record_error
from .filenames import extension_of, replace_file_extension
from .models import InvalidConfigError, WorkItem
from .preprocessing import ResizeOptions, encode_frames, load_image, resize_frames, resolve_resize, rotate_frames

logger = logging.getLogger(__name__)

BACKEND_NAME = "encoder-pool"


class Codec(NamedTuple):
    pillow_format: str
    extension: str
    defaults: Dict[str, Any]


CODECS: Dict[str, Codec] = {
    "jpeg": Codec("JPEG", "jpg", {"quality": 75, "optimize": True}),
    "webp": Codec("WEBP", "webp", {"quality": 75}),
    "png": Codec("PNG", "png", {"optimize": True}),
    "avif": Codec("AVIF", "avif", {"quality": 50}),
    "gif": Codec("GIF", "gif", {"optimize": True}),
    "tiff": Codec("TIFF", "tif", {"compression": "tiff_lzw"}),
}

EXTENSION_ALIASES = {"jpg": "jpeg", "tif": "tiff"}


def _minify_targets() -> Dict[str, str]:
    targets: Dict[str, str] = {}
    for name, codec in CODECS.items():
        ext = codec.extension.lower()
        targets[ext] = name
        if ext in EXTENSION_ALIASES:
            targets[EXTENSION_ALIASES[ext]] = name
    return targets


MINIFY_TARGETS = _minify_targets()


class EncodedImage(NamedTuple):
    binary: bytes
    extension: str
    width: int
    height: int


def encode_in_worker(
    data: bytes,
    resize: Optional[ResizeOptions],
    num_rotations: int,
    codec_name: str,
    codec_options: Mapping[str, Any],
) -> EncodedImage:
    """Runs in a pool worker: decode -> rotate -> resize -> encode."""
    codec = CODECS[codec_name]
    decoded = load_image(data)
    frames = decoded.frames
    if num_rotations % 4:
        frames = rotate_frames(frames, 90 * (num_rotations % 4))
    target = resolve_resize(resize, frames[0].size)
    if target is not None:
        frames = resize_frames(frames, target, resize)
    binary = encode_frames(frames, codec.pillow_format, {**codec.defaults, **codec_options})
    width, height = frames[0].size
    return EncodedImage(binary, codec.extension, width, height)


class EncoderPool:
    """
    Reference-counted handle over a worker pool.

    `retain` registers another user; `close` releases one reference and shuts
    the executor down once the last one is gone. Closing a shut-down pool is
    a no-op.
    """

    def __init__(self, workers: int = 1, executor: Optional[Executor] = None) -> None:
        if workers < 1:
            raise InvalidConfigError(f"Encoder pool needs at least one worker, got {workers}")
        self.workers = workers
        self._executor = executor or ProcessPoolExecutor(max_workers=workers)
        self._refs = 1
        self._closed = False
        logger.info("Encoder pool started with %d worker(s)", workers)

    @property
    def closed(self) -> bool:
        return self._closed

    def retain(self) -> "EncoderPool":
        if self._closed:
            raise RuntimeError("Encoder pool is already closed")
        self._refs += 1
        return self

    async def encode(
        self,
        data: bytes,
        resize: Optional[ResizeOptions],
        num_rotations: int,
        codec_name: str,
        codec_options: Mapping[str, Any],
    ) -> EncodedImage:
        if self._closed:
            raise RuntimeError("Encoder pool is already closed")
        loop = asyncio.get_running_loop()
        job = functools.partial(encode_in_worker, data, resize, num_rotations, codec_name, dict(codec_options))
        return await loop.run_in_executor(self._executor, job)

    async def close(self) -> None:
        if self._closed:
            return
        self._refs -= 1
        if self._refs > 0:
            return
        self._closed = True
        await asyncio.to_thread(self._executor.shutdown, True)
        logger.info("Encoder pool closed")


@dataclass
class PoolOptions:
    encode_options: Dict[str, Mapping[str, Any]] = field(default_factory=dict)
    resize: Union[ResizeOptions, Mapping[str, Any], None] = None
    rotate: Optional[Mapping[str, Any]] = None  # {"num_rotations": int}
    pool: Optional[EncoderPool] = None

    def __post_init__(self) -> None:
        self.resize = ResizeOptions.from_value(self.resize)


def _preprocess_args(options: PoolOptions):
    resize = ResizeOptions.from_value(options.resize)
    if resize is not None and not resize.enabled:
        resize = None
    num_rotations = 0
    if options.rotate is not None:
        value = options.rotate.get("num_rotations", 0)
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidConfigError(f"'rotate.num_rotations' must be an integer, got {value!r}")
        num_rotations = value
    return resize, num_rotations


def _check_codecs(names) -> None:
    unknown = [name for name in names if name not in CODECS]
    if unknown:
        raise InvalidConfigError(
            f"Unknown codec(s) {', '.join(unknown)} in 'encode_options', expected one of {', '.join(CODECS)}"
        )


async def _encode(item: WorkItem, options: PoolOptions, codec_name: str) -> Optional[EncodedImage]:
    resize, num_rotations = _preprocess_args(options)
    codec_options = options.encode_options.get(codec_name) or {}

    owned = options.pool is None
    pool = EncoderPool(workers=1) if owned else options.pool
    try:
        return await pool.encode(item.data, resize, num_rotations, codec_name, codec_options)
    except Exception as exc:  # noqa: BLE001
        return capture_failure(item, exc)
    finally:
        if owned:
            await pool.close()


async def generate(item: WorkItem, options: Optional[PoolOptions] = None) -> Optional[WorkItem]:
    """Encode with the single configured codec and rename to its extension."""
    options = options or PoolOptions()
    targets = list(options.encode_options)
    _check_codecs(targets)

    if not targets:
        return record_error(
            item, "No result from the encoder pool, please configure the 'encode_options' option to generate images"
        )
    if len(targets) > 1:
        return record_error(
            item,
            "Multiple values for the 'encode_options' option is not supported, "
            "specify only one codec for the generator",
        )

    encoded = await _encode(item, options, targets[0])
    if encoded is None:
        return None

    return item.derive(
        filename=replace_file_extension(item.filename, encoded.extension),
        data=encoded.binary,
        info=item.mark("generated", BACKEND_NAME, width=encoded.width, height=encoded.height),
    )


async def minify(item: WorkItem, options: Optional[PoolOptions] = None) -> Optional[WorkItem]:
    """Re-encode with the codec matching the filename's extension."""
    options = options or PoolOptions()
    _check_codecs(options.encode_options)
    codec_name = MINIFY_TARGETS.get(extension_of(item.filename))
    if codec_name is None:
        logger.debug("No encoder-pool codec for %s, skipping", item.filename)
        return None

    encoded = await _encode(item, options, codec_name)
    if encoded is None:
        return None

    return item.derive(
        data=encoded.binary,
        info=item.mark("minimized", BACKEND_NAME, width=encoded.width, height=encoded.height),
    )
