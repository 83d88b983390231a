"""Filename helpers used when a backend changes the output format."""

from __future__ import annotations

import re

ABSOLUTE_URL_REGEX = re.compile(r"^[a-zA-Z][a-zA-Z\d+\-.]*?:")
WINDOWS_PATH_REGEX = re.compile(r"^[a-zA-Z]:\\")
POSIX_PATH_REGEX = re.compile(r"^/")


def replace_file_extension(filename: str, ext: str) -> str:
    """
    Swap the extension of `filename` for `ext` (given without the dot).

    `path/img.png` -> `path/img.webp`. Names without an extension in their
    last path segment are returned unchanged.
    """
    dot_index = -1
    for i in range(len(filename) - 1, -1, -1):
        char = filename[i]
        if char == ".":
            dot_index = i
            break
        if char in ("/", "\\"):
            break

    if dot_index == -1:
        return filename
    return f"{filename[:dot_index]}.{ext}"


def with_size_suffix(filename: str, suffix: str, ext: str) -> str:
    """Insert `suffix` before the last dot and set the extension."""
    dot_index = filename.rfind(".")
    if dot_index == -1:
        return filename
    return f"{filename[:dot_index]}{suffix}.{ext}"


def is_absolute_url(value: str) -> bool:
    return bool(
        WINDOWS_PATH_REGEX.match(value)
        or POSIX_PATH_REGEX.match(value)
        or ABSOLUTE_URL_REGEX.match(value)
    )


def extension_of(filename: str) -> str:
    """Lower-cased extension without the dot, ignoring any `?query` suffix."""
    path = filename.split("?", 1)[0]
    base = re.split(r"[\\/]", path)[-1]
    dot_index = base.rfind(".")
    if dot_index <= 0:
        return ""
    return base[dot_index + 1 :].lower()
