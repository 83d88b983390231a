from __future__ import annotations

import pytest

from image_minimizer.filetype import normalize_extension, sniff
from image_minimizer.models import FileType

from .conftest import make_apng_bytes, make_image_bytes

JP2_HEADER = bytes([0x00, 0x00, 0x00, 0x0C, 0x6A, 0x50, 0x20, 0x20, 0x0D, 0x0A, 0x87, 0x0A])
FTYP_BOX = b"\x00\x00\x00\x14ftyp"


def _ftyp(brand: bytes) -> bytes:
    return b"\x00\x00\x00\x1cftyp" + brand + b"\x00\x00\x00\x00" + b"mif1" * 3


@pytest.mark.parametrize(
    "buffer, expected",
    [
        (b"\xff\xd8\xff\xe0\x00\x10JFIF", ("jpg", "image/jpeg")),
        (b"GIF89a\x01\x00\x01\x00", ("gif", "image/gif")),
        (b"RIFF\x24\x00\x00\x00WEBPVP8 ", ("webp", "image/webp")),
        (b"FLIF4\x11", ("flif", "image/flif")),
        (b"II*\x00\x10\x00\x00\x00CR\x02\x00", ("cr2", "image/x-canon-cr2")),
        (b"MM\x00*\x00\x00\x00\x10CR\x02\x00", ("cr2", "image/x-canon-cr2")),
        (bytes([0x49, 0x49, 0x52, 0x4F, 0x08, 0x00, 0x00, 0x00, 0x18, 0x00]), ("orf", "image/x-olympus-orf")),
        (
            b"II*\x00\x08\x00\x00\x00\x00"
            + bytes([0x00, 0xFE, 0x00, 0x04, 0x00, 0x01, 0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x03, 0x01]),
            ("arw", "image/x-sony-arw"),
        ),
        (b"II*\x00\x08\x00\x00\x00\x2d\x00\xfe\x00", ("dng", "image/x-adobe-dng")),
        (b"II*\x00\x08\x00\x00\x00\x1c\x00\xfe\x00", ("nef", "image/x-nikon-nef")),
        (
            bytes([0x49, 0x49, 0x55, 0x00, 0x18, 0x00, 0x00, 0x00, 0x88, 0xE7, 0x74, 0xD8, 0x00]),
            ("rw2", "image/x-panasonic-rw2"),
        ),
        (b"FUJIFILMCCD-RAW 0201", ("raf", "image/x-fujifilm-raf")),
        (b"II*\x00\x08\x00\x00\x00\x00\x00", ("tif", "image/tiff")),
        (b"MM\x00*\x00\x00\x00\x08\x00\x00", ("tif", "image/tiff")),
        (b"BM\x36\x00\x00\x00", ("bmp", "image/bmp")),
        (b"II\xbc\x01", ("jxr", "image/vnd.ms-photo")),
        (b"8BPS\x00\x01", ("psd", "image/vnd.adobe.photoshop")),
        (_ftyp(b"avif"), ("avif", "image/avif")),
        (_ftyp(b"mif1"), ("heic", "image/heif")),
        (_ftyp(b"msf1"), ("heic", "image/heif-sequence")),
        (_ftyp(b"heic"), ("heic", "image/heic")),
        (_ftyp(b"heix"), ("heic", "image/heic")),
        (_ftyp(b"hevc"), ("heic", "image/heic-sequence")),
        (_ftyp(b"hevx"), ("heic", "image/heic-sequence")),
        (b"\x00\x00\x01\x00\x01\x00", ("ico", "image/x-icon")),
        (b"\x00\x00\x02\x00\x01\x00", ("cur", "image/x-icon")),
        (b"BPG\xfb\x00", ("bpg", "image/bpg")),
        (JP2_HEADER + FTYP_BOX + b"jp2 ", ("jp2", "image/jp2")),
        (JP2_HEADER + FTYP_BOX + b"jpx ", ("jpx", "image/jpx")),
        (JP2_HEADER + FTYP_BOX + b"jpm ", ("jpm", "image/jpm")),
        (JP2_HEADER + FTYP_BOX + b"mjp2", ("mj2", "image/mj2")),
        (b"\xff\x0a\x00\x00", ("jxl", "image/jxl")),
        (bytes([0x00, 0x00, 0x00, 0x0C, 0x4A, 0x58, 0x4C, 0x20, 0x0D, 0x0A, 0x87, 0x0A]), ("jxl", "image/jxl")),
        (
            bytes([0xAB, 0x4B, 0x54, 0x58, 0x20, 0x31, 0x31, 0xBB, 0x0D, 0x0A, 0x1A, 0x0A, 0x01]),
            ("ktx", "image/ktx"),
        ),
    ],
)
def test_sniff_known_signatures(buffer, expected):
    assert sniff(buffer) == FileType(*expected)


@pytest.mark.parametrize("buffer", [b"", b"\xff", bytearray(b"B")])
def test_sniff_short_buffers_return_none(buffer):
    assert sniff(buffer) is None


@pytest.mark.parametrize("value", ["\xff\xd8\xff", [0xFF, 0xD8, 0xFF], None, 42])
def test_sniff_rejects_non_bytes(value):
    with pytest.raises(TypeError):
        sniff(value)


def test_sniff_accepts_bytearray_and_memoryview():
    data = b"\xff\xd8\xff\xdb"
    assert sniff(bytearray(data)).extension == "jpg"
    assert sniff(memoryview(data)).extension == "jpg"


def test_sniff_real_encoded_images():
    assert sniff(make_image_bytes("PNG")).extension == "png"
    assert sniff(make_image_bytes("JPEG")).extension == "jpg"
    assert sniff(make_image_bytes("WEBP")).extension == "webp"
    assert sniff(make_image_bytes("BMP")).extension == "bmp"
    assert sniff(make_image_bytes("TIFF")).extension == "tif"


def test_sniff_animated_png_is_apng():
    assert sniff(make_apng_bytes()) == FileType("apng", "image/apng")


def test_sniff_png_with_actl_after_idat_stays_png():
    header = b"\x89PNG\r\n\x1a\n" + b"\x00" * 25
    buffer = header + b"\x00\x00\x00\x00IDAT" + b"\x00\x00\x00\x08acTL"
    assert sniff(buffer).extension == "png"


def test_sniff_png_without_idat_falls_back_to_png():
    header = b"\x89PNG\r\n\x1a\n" + b"\x00" * 25
    assert sniff(header + b"\x00\x00\x00\x08acTL" + b"\x00" * 8) == FileType("png", "image/png")


def test_sniff_unknown_isobmff_brand_is_no_match():
    assert sniff(_ftyp(b"isom")) is None


def test_sniff_rejects_ftyp_with_non_ascii_brand():
    assert sniff(b"\x00\x00\x00\x1cftyp\x00\x00\x00\x00" + b"\x00" * 8) is None


def test_sniff_jpeg2000_with_unknown_brand_is_no_match():
    assert sniff(JP2_HEADER + FTYP_BOX + b"abcd") is None


def test_sniff_is_deterministic():
    data = make_apng_bytes()
    assert {sniff(data) for _ in range(5)} == {FileType("apng", "image/apng")}


def test_sniff_unknown_payload():
    assert sniff(b"<svg xmlns='http://www.w3.org/2000/svg'/>") is None


@pytest.mark.parametrize("ext, expected", [("jpeg", "jpg"), ("JPG", "jpg"), ("tiff", "tif"), ("png", "png")])
def test_normalize_extension(ext, expected):
    assert normalize_extension(ext) == expected
