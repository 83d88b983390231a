"""
Image decoding, resize/rotate preprocessing and encoding with Pillow.

Both the in-process Pillow backend and the encoder-pool workers go through
these helpers so that resize semantics (pixel or percent units, aspect
preservation, the `enabled` switch) are identical everywhere.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import math
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from PIL import Image, ImageOps, ImageSequence

from .models import InvalidConfigError

# Formats Pillow can write as multi-frame files.
ANIMATED_FORMATS = {"GIF", "PNG", "WEBP", "TIFF", "AVIF"}
# Formats that cannot carry an alpha channel or palette as-is.
RGB_ONLY_FORMATS = {"JPEG"}

Rotate = Union[int, float, str, None]

FIT_MODES = ("cover", "contain", "fill", "inside", "outside")
POSITIONS = {
    "centre": (0.5, 0.5),
    "center": (0.5, 0.5),
    "top": (0.5, 0.0),
    "bottom": (0.5, 1.0),
    "left": (0.0, 0.5),
    "right": (1.0, 0.5),
}


@dataclass
class ResizeOptions:
    enabled: bool = True
    unit: str = "px"  # "px" | "percent"
    width: Optional[float] = None
    height: Optional[float] = None
    fit: str = "cover"
    position: str = "centre"
    background: Any = 0  # padding colour for fit="contain"
    without_enlargement: bool = False
    resample: str = "lanczos"

    def __post_init__(self) -> None:
        if self.unit not in ("px", "percent"):
            raise InvalidConfigError(f"Unknown resize unit '{self.unit}', expected 'px' or 'percent'")
        if self.fit not in FIT_MODES:
            raise InvalidConfigError(f"Unknown resize fit '{self.fit}', expected one of {', '.join(FIT_MODES)}")
        if self.position not in POSITIONS:
            raise InvalidConfigError(
                f"Unknown resize position '{self.position}', expected one of {', '.join(POSITIONS)}"
            )
        if not isinstance(self.resample, str) or self.resample.upper() not in Image.Resampling.__members__:
            raise InvalidConfigError(f"Unknown resample filter '{self.resample}'")
        for name in ("width", "height"):
            value = getattr(self, name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0):
                raise InvalidConfigError(f"Resize {name} must be a positive number, got {value!r}")

    @classmethod
    def from_value(cls, value: Union["ResizeOptions", Mapping[str, Any], None]) -> Optional["ResizeOptions"]:
        if value is None or isinstance(value, ResizeOptions):
            return value
        try:
            return cls(**dict(value))
        except InvalidConfigError:
            raise
        except TypeError as exc:
            raise InvalidConfigError(f"Invalid resize options {dict(value)!r}: {exc}") from exc


def validate_rotate(rotate: Rotate) -> Rotate:
    if rotate is None or rotate == "auto":
        return rotate
    if isinstance(rotate, bool) or not isinstance(rotate, (int, float)):
        raise InvalidConfigError(f"Unsupported rotate value {rotate!r}, expected degrees or 'auto'")
    return rotate


@dataclass
class DecodedImage:
    frames: List[Image.Image]
    format: Optional[str]
    size: Tuple[int, int]  # (width, height) of the decoded source
    info: Dict[str, Any]


def load_image(data: bytes) -> DecodedImage:
    """
    Decode every frame of `data`.

    Raises:
        ValueError: when Pillow cannot identify the payload.
    """
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except Exception as exc:  # noqa: BLE001
        raise ValueError("Invalid image data") from exc

    size, fmt, info = image.size, image.format, dict(image.info)
    frames = [frame.copy() for frame in ImageSequence.Iterator(image)]
    return DecodedImage(frames=frames, format=fmt, size=size, info=info)


def read_size(data: bytes) -> Tuple[int, int]:
    """Read (width, height) from the header without decoding pixels."""
    try:
        with Image.open(BytesIO(data)) as image:
            return image.size
    except Exception as exc:  # noqa: BLE001
        raise ValueError("Invalid image data") from exc


def resolve_resize(
    options: Optional[ResizeOptions], source_size: Tuple[int, int]
) -> Optional[Tuple[int, int]]:
    """
    Turn resize options into concrete pixel dimensions.

    Returns None when resizing is disabled or no dimension is given. Percent
    values are taken against the decoded source size and rounded up; a single
    missing dimension is derived from the source aspect ratio.
    """
    if options is None or not options.enabled:
        return None
    width, height = options.width, options.height
    if width is None and height is None:
        return None

    src_w, src_h = source_size
    if options.unit == "percent":
        if width is not None and src_w > 0:
            width = math.ceil(src_w * width / 100)
        if height is not None and src_h > 0:
            height = math.ceil(src_h * height / 100)

    if width is None:
        width = max(1, round(src_w * height / src_h))
    if height is None:
        height = max(1, round(src_h * width / src_w))
    return int(width), int(height)


def _scale_to_fit(source: Tuple[int, int], target: Tuple[int, int], fit: str) -> float:
    src_w, src_h = source
    ratios = (target[0] / src_w, target[1] / src_h)
    return max(ratios) if fit in ("cover", "outside") else min(ratios)


def _scaled(source: Tuple[int, int], scale: float) -> Tuple[int, int]:
    return max(1, round(source[0] * scale)), max(1, round(source[1] * scale))


def resize_frame(frame: Image.Image, target: Tuple[int, int], options: ResizeOptions) -> Image.Image:
    """
    Resize one frame to `target` following `options.fit`.

    cover: crop to exactly `target`; contain: letterbox to exactly `target`;
    fill: stretch; inside/outside: keep the aspect ratio so the result fits
    within / covers `target`.
    """
    method = Image.Resampling[options.resample.upper()]
    source = frame.size
    fit = options.fit

    if options.without_enlargement:
        if fit == "fill":
            enlarges = target[0] > source[0] or target[1] > source[1]
        else:
            enlarges = _scale_to_fit(source, target, fit) > 1
        if enlarges:
            return frame

    centering = POSITIONS[options.position]
    if fit == "cover":
        return ImageOps.fit(frame, target, method=method, centering=centering)
    if fit == "contain":
        return ImageOps.pad(frame, target, method=method, color=options.background, centering=centering)
    if fit == "fill":
        return frame.resize(target, method)
    return frame.resize(_scaled(source, _scale_to_fit(source, target, fit)), method)


def resize_frames(frames: List[Image.Image], target: Tuple[int, int], options: ResizeOptions) -> List[Image.Image]:
    return [resize_frame(frame, target, options) for frame in frames]


def rotate_frames(frames: List[Image.Image], rotate: Rotate) -> List[Image.Image]:
    """Rotate clockwise by `rotate` degrees, or apply EXIF orientation for "auto"."""
    rotate = validate_rotate(rotate)
    if rotate is None:
        return frames
    if rotate == "auto":
        return [ImageOps.exif_transpose(frame) for frame in frames]
    # Pillow rotates counter-clockwise.
    return [frame.rotate(-rotate, expand=True) for frame in frames]


def encode_frames(frames: List[Image.Image], fmt: str, options: Optional[Mapping[str, Any]] = None) -> bytes:
    """Encode `frames` as `fmt` (a Pillow format name) and return the bytes."""
    params = dict(options or {})
    if fmt in RGB_ONLY_FORMATS:
        frames = [frame if frame.mode in ("RGB", "L", "CMYK") else frame.convert("RGB") for frame in frames]

    out = BytesIO()
    first, rest = frames[0], frames[1:]
    if rest and fmt in ANIMATED_FORMATS:
        first.save(out, format=fmt, save_all=True, append_images=rest, **params)
    else:
        first.save(out, format=fmt, **params)
    return out.getvalue()
