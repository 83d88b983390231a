from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from image_minimizer import encoder_pool
from image_minimizer.encoder_pool import MINIFY_TARGETS, EncoderPool, PoolOptions, encode_in_worker
from image_minimizer.filetype import sniff
from image_minimizer.models import InvalidConfigError, WorkItem
from image_minimizer.preprocessing import ResizeOptions

from .conftest import image_size


def run(coro):
    return asyncio.run(coro)


def test_minify_targets_include_aliases():
    assert MINIFY_TARGETS["jpg"] == "jpeg"
    assert MINIFY_TARGETS["jpeg"] == "jpeg"
    assert MINIFY_TARGETS["tif"] == "tiff"
    assert MINIFY_TARGETS["webp"] == "webp"


def test_encode_in_worker_applies_preprocessing(png_bytes):
    encoded = encode_in_worker(png_bytes, ResizeOptions(unit="percent", width=50), 1, "webp", {})
    assert encoded.extension == "webp"
    # rotated to 20x40 first, then halved
    assert (encoded.width, encoded.height) == (10, 20)
    assert sniff(encoded.binary).extension == "webp"


def test_generate_with_ad_hoc_pool_closes_it(png_bytes, thread_pools):
    item = WorkItem("assets/logo.png", png_bytes)

    result = run(encoder_pool.generate(item, PoolOptions(encode_options={"webp": {"quality": 60}})))

    assert result.filename == "assets/logo.webp"
    assert sniff(result.data).extension == "webp"
    assert result.info["generatedBy"] == ["encoder-pool"]
    assert (result.info["width"], result.info["height"]) == (40, 20)
    assert len(thread_pools) == 1 and thread_pools[0].closed


def test_generate_without_codecs_is_an_error(png_bytes, thread_pools):
    item = WorkItem("logo.png", png_bytes)
    assert run(encoder_pool.generate(item, PoolOptions())) is None
    assert "configure the 'encode_options'" in str(item.errors[0])
    assert thread_pools == []


def test_generate_with_two_codecs_is_an_error(png_bytes, thread_pools):
    item = WorkItem("logo.png", png_bytes)
    assert run(encoder_pool.generate(item, PoolOptions(encode_options={"webp": {}, "jpeg": {}}))) is None
    assert len(item.errors) == 1
    assert "Multiple values" in str(item.errors[0])


def test_unknown_codec_is_a_configuration_error(png_bytes):
    with pytest.raises(InvalidConfigError, match="Unknown codec"):
        run(encoder_pool.generate(WorkItem("logo.png", png_bytes), PoolOptions(encode_options={"jxl": {}})))


def test_minify_picks_codec_from_extension(jpeg_bytes, thread_pools):
    item = WorkItem("photo.JPG", jpeg_bytes)

    result = run(encoder_pool.minify(item, PoolOptions(encode_options={"jpeg": {"quality": 30}})))

    assert result.filename == "photo.JPG"
    assert sniff(result.data).extension == "jpg"
    assert result.info["minimized"] is True


def test_minify_unsupported_extension_returns_none(png_bytes, thread_pools):
    item = WorkItem("vector.svg", png_bytes)
    assert run(encoder_pool.minify(item)) is None
    assert item.errors == []
    assert thread_pools == []


def test_minify_resize_and_disabled_resize(png_bytes, thread_pools):
    resized = run(encoder_pool.minify(WorkItem("a.png", png_bytes), PoolOptions(resize={"width": 20})))
    assert image_size(resized.data) == (20, 10)

    untouched = run(
        encoder_pool.minify(WorkItem("a.png", png_bytes), PoolOptions(resize={"enabled": False, "width": 20}))
    )
    assert image_size(untouched.data) == (40, 20)


def test_failure_closes_ad_hoc_pool_and_records_error(thread_pools):
    item = WorkItem("bad.png", b"not an image at all")

    assert run(encoder_pool.minify(item)) is None
    assert str(item.errors[0]) == "Error with 'bad.png': Invalid image data"
    assert thread_pools[0].closed


def test_shared_pool_is_never_closed_by_the_adapter(png_bytes):
    async def main():
        pool = EncoderPool(workers=2, executor=ThreadPoolExecutor(max_workers=2))
        ok = await encoder_pool.minify(WorkItem("a.png", png_bytes), PoolOptions(pool=pool))
        failed_item = WorkItem("b.png", b"garbage")
        failed = await encoder_pool.minify(failed_item, PoolOptions(pool=pool))
        still_open = not pool.closed
        await pool.close()
        return ok, failed, failed_item, still_open, pool.closed

    ok, failed, failed_item, still_open, closed_after = run(main())
    assert ok is not None
    assert failed is None and len(failed_item.errors) == 1
    assert still_open
    assert closed_after


def test_pool_reference_counting():
    async def main():
        pool = EncoderPool(executor=ThreadPoolExecutor(max_workers=1))
        pool.retain()
        await pool.close()
        first = pool.closed
        await pool.close()
        second = pool.closed
        await pool.close()
        return first, second, pool.closed

    assert run(main()) == (False, True, True)


def test_closed_pool_refuses_work(png_bytes):
    async def main():
        pool = EncoderPool(executor=ThreadPoolExecutor(max_workers=1))
        await pool.close()
        with pytest.raises(RuntimeError):
            pool.retain()
        item = WorkItem("a.png", png_bytes)
        return await encoder_pool.minify(item, PoolOptions(pool=pool)), item

    result, item = run(main())
    assert result is None
    assert "already closed" in str(item.errors[0])


def test_invalid_pool_size():
    with pytest.raises(InvalidConfigError):
        EncoderPool(workers=0)


def test_generate_with_real_process_pool(png_bytes):
    item = WorkItem("assets/logo.png", png_bytes)
    options = PoolOptions(
        encode_options={"webp": {"quality": 60}},
        resize={"width": 10, "height": 10, "fit": "inside"},
        rotate={"num_rotations": 1},
    )

    result = run(encoder_pool.generate(item, options))

    assert item.errors == []
    assert result.filename == "assets/logo.webp"
    assert sniff(result.data).extension == "webp"
    # rotated to 20x40, then fitted inside 10x10
    assert (result.info["width"], result.info["height"]) == (5, 10)
    assert image_size(result.data) == (5, 10)


def test_real_process_pool_failure_is_recorded():
    item = WorkItem("bad.jpg", b"\xff\xd8\xff but not really")

    assert run(encoder_pool.minify(item)) is None
    assert str(item.errors[0]) == "Error with 'bad.jpg': Invalid image data"
