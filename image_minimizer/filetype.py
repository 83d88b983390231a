"""
Byte-signature sniffing for image payloads.

`sniff` classifies a buffer by its content instead of trusting the
filename. Checks run in a fixed order: raw camera formats share a TIFF
header and must be tested before the generic TIFF rule, and container
formats (ISO-BMFF, JPEG-2000) dispatch on an embedded brand once the outer
signature matches.
"""

from __future__ import annotations

from typing import Optional, Sequence, Union

from .models import FileType

BytesLike = Union[bytes, bytearray, memoryview]

PNG_SIGNATURE = bytes([0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A])
# 8 bytes signature + IHDR chunk (4 length + 4 type + 13 data + 4 CRC)
PNG_FIRST_CHUNK_END = 33

ISOBMFF_BRANDS = {
    "avif": FileType("avif", "image/avif"),
    "mif1": FileType("heic", "image/heif"),
    "msf1": FileType("heic", "image/heif-sequence"),
    "heic": FileType("heic", "image/heic"),
    "heix": FileType("heic", "image/heic"),
    "hevc": FileType("heic", "image/heic-sequence"),
    "hevx": FileType("heic", "image/heic-sequence"),
}

JPEG2000_BRANDS = (
    (b"jp2 ", FileType("jp2", "image/jp2")),
    (b"jpx ", FileType("jpx", "image/jpx")),
    (b"jpm ", FileType("jpm", "image/jpm")),
    (b"mjp2", FileType("mj2", "image/mj2")),
)

EXTENSION_ALIASES = {"jpeg": "jpg", "tiff": "tif"}


def normalize_extension(ext: str) -> str:
    ext = ext.lower()
    return EXTENSION_ALIASES.get(ext, ext)


class _Matcher:
    """Offset/mask aware comparisons against a single buffer."""

    def __init__(self, buffer: bytes) -> None:
        self.buffer = buffer

    def check(
        self, header: Sequence[int], offset: int = 0, mask: Optional[Sequence[int]] = None
    ) -> bool:
        buffer = self.buffer
        if offset + len(header) > len(buffer):
            return False
        for i, expected in enumerate(header):
            actual = buffer[offset + i]
            if mask is not None:
                actual &= mask[i]
            if expected != actual:
                return False
        return True

    def check_string(self, header: str, offset: int = 0) -> bool:
        return self.check(header.encode("latin-1"), offset=offset)


def _png_or_apng(buffer: bytes) -> FileType:
    idat_index = buffer.find(b"IDAT", PNG_FIRST_CHUNK_END)
    if idat_index == -1:
        return FileType("png", "image/png")
    if buffer.find(b"acTL", PNG_FIRST_CHUNK_END, idat_index) != -1:
        return FileType("apng", "image/apng")
    return FileType("png", "image/png")


def sniff(buffer: BytesLike) -> Optional[FileType]:
    """
    Return the (extension, mime) pair for `buffer`, or None when unknown.

    Raises:
        TypeError: when `buffer` is not a bytes-like object.
    """
    if not isinstance(buffer, (bytes, bytearray, memoryview)):
        raise TypeError(
            "Expected the `buffer` argument to be of type `bytes`, `bytearray` "
            f"or `memoryview`, got `{type(buffer).__name__}`"
        )

    data = bytes(buffer)
    if len(data) < 2:
        return None

    m = _Matcher(data)
    check = m.check

    if check([0xFF, 0xD8, 0xFF]):
        return FileType("jpg", "image/jpeg")

    if check(PNG_SIGNATURE):
        return _png_or_apng(data)

    if check([0x47, 0x49, 0x46]):
        return FileType("gif", "image/gif")

    if check([0x57, 0x45, 0x42, 0x50], offset=8):
        return FileType("webp", "image/webp")

    if check([0x46, 0x4C, 0x49, 0x46]):
        return FileType("flif", "image/flif")

    tiff_le = check([0x49, 0x49, 0x2A, 0x00])
    tiff_be = check([0x4D, 0x4D, 0x00, 0x2A])

    if (tiff_le or tiff_be) and check([0x43, 0x52], offset=8):
        return FileType("cr2", "image/x-canon-cr2")

    if check([0x49, 0x49, 0x52, 0x4F, 0x08, 0x00, 0x00, 0x00, 0x18]):
        return FileType("orf", "image/x-olympus-orf")

    if (
        tiff_le
        and (
            check([0x10, 0xFB, 0x86, 0x01], offset=4)
            or check([0x08, 0x00, 0x00, 0x00], offset=4)
        )
        and check(
            [0x00, 0xFE, 0x00, 0x04, 0x00, 0x01, 0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x03, 0x01],
            offset=9,
        )
    ):
        return FileType("arw", "image/x-sony-arw")

    if check([0x49, 0x49, 0x2A, 0x00, 0x08, 0x00, 0x00, 0x00]) and (
        check([0x2D, 0x00, 0xFE, 0x00], offset=8) or check([0x27, 0x00, 0xFE, 0x00], offset=8)
    ):
        return FileType("dng", "image/x-adobe-dng")

    if tiff_le and check([0x1C, 0x00, 0xFE, 0x00], offset=8):
        return FileType("nef", "image/x-nikon-nef")

    if check([0x49, 0x49, 0x55, 0x00, 0x18, 0x00, 0x00, 0x00, 0x88, 0xE7, 0x74, 0xD8]):
        return FileType("rw2", "image/x-panasonic-rw2")

    if m.check_string("FUJIFILMCCD-RAW"):
        return FileType("raf", "image/x-fujifilm-raf")

    if tiff_le or tiff_be:
        return FileType("tif", "image/tiff")

    if check([0x42, 0x4D]):
        return FileType("bmp", "image/bmp")

    if check([0x49, 0x49, 0xBC]):
        return FileType("jxr", "image/vnd.ms-photo")

    if check([0x38, 0x42, 0x50, 0x53]):
        return FileType("psd", "image/vnd.adobe.photoshop")

    # Major brand's first character must look like ASCII.
    if m.check_string("ftyp", offset=4) and len(data) > 8 and (data[8] & 0x60) != 0x00:
        brand = data[8:12].decode("latin-1").replace("\0", " ", 1).strip()
        found = ISOBMFF_BRANDS.get(brand)
        if found is not None:
            return found

    if check([0x00, 0x00, 0x01, 0x00]):
        return FileType("ico", "image/x-icon")

    if check([0x00, 0x00, 0x02, 0x00]):
        return FileType("cur", "image/x-icon")

    if check([0x42, 0x50, 0x47, 0xFB]):
        return FileType("bpg", "image/bpg")

    if check([0x00, 0x00, 0x00, 0x0C, 0x6A, 0x50, 0x20, 0x20, 0x0D, 0x0A, 0x87, 0x0A]):
        for brand, file_type in JPEG2000_BRANDS:
            if check(brand, offset=20):
                return file_type

    if check([0xFF, 0x0A]) or check(
        [0x00, 0x00, 0x00, 0x0C, 0x4A, 0x58, 0x4C, 0x20, 0x0D, 0x0A, 0x87, 0x0A]
    ):
        return FileType("jxl", "image/jxl")

    if check([0xAB, 0x4B, 0x54, 0x58, 0x20, 0x31, 0x31, 0xBB, 0x0D, 0x0A, 0x1A, 0x0A]):
        return FileType("ktx", "image/ktx")

    return None
