from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from io import BytesIO

import pytest
from PIL import Image

from image_minimizer import encoder_pool
from image_minimizer.encoder_pool import EncoderPool


def make_image_bytes(fmt: str, size=(40, 20), mode="RGB", color=(200, 30, 30)) -> bytes:
    out = BytesIO()
    Image.new(mode, size, color).save(out, format=fmt)
    return out.getvalue()


def make_apng_bytes(size=(8, 8)) -> bytes:
    frames = [Image.new("RGBA", size, (255, 0, 0, 255)), Image.new("RGBA", size, (0, 0, 255, 255))]
    out = BytesIO()
    frames[0].save(out, format="PNG", save_all=True, append_images=frames[1:])
    return out.getvalue()


def image_size(data: bytes):
    with Image.open(BytesIO(data)) as image:
        return image.size


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes("JPEG")


@pytest.fixture
def gif_bytes() -> bytes:
    return make_image_bytes("GIF", mode="P", color=1)


class ThreadEncoderPool(EncoderPool):
    """Encoder pool backed by threads so tests do not spawn processes."""

    created: list = []

    def __init__(self, workers: int = 1, executor=None) -> None:
        super().__init__(workers, executor or ThreadPoolExecutor(max_workers=workers))
        ThreadEncoderPool.created.append(self)


@pytest.fixture
def thread_pools(monkeypatch):
    ThreadEncoderPool.created = []
    monkeypatch.setattr(encoder_pool, "EncoderPool", ThreadEncoderPool)
    return ThreadEncoderPool.created
