"""
Plugin-chain backend.

A chain of byte-to-byte plugins is applied in order to the payload. Plugins
are looked up by name in an explicit registry that maps identifiers to
factories; the built-in plugins below are Pillow based and leave payloads
of other formats untouched.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .adapters import capture_failure, check_same_format
from .filenames import extension_of, replace_file_extension
from .filetype import sniff
from .models import InvalidConfigError, UnknownPluginError, WorkItem
from .preprocessing import encode_frames, load_image

logger = logging.getLogger(__name__)

BACKEND_NAME = "plugins"
PLUGIN_PREFIX = "pillow-"

Plugin = Callable[[bytes], bytes]
PluginFactory = Callable[[Optional[Mapping[str, Any]]], Plugin]
PluginSpec = Union[str, Tuple[str, Mapping[str, Any]], List[Any]]


class PluginRegistry:
    """Maps plugin identifiers to factories building configured plugins."""

    def __init__(self) -> None:
        self._factories: Dict[str, PluginFactory] = {}

    def register(self, name: str, factory: PluginFactory) -> None:
        if name in self._factories:
            raise InvalidConfigError(f"Plugin '{name}' is already registered")
        self._factories[name] = factory

    def names(self) -> List[str]:
        return sorted(self._factories)

    def resolve(self, name: str) -> PluginFactory:
        """
        Find the factory for `name`, trying the prefixed name first.

        Raises:
            UnknownPluginError: when neither form is registered.
        """
        bare = name[len(PLUGIN_PREFIX):] if name.startswith(PLUGIN_PREFIX) else name
        for candidate in (PLUGIN_PREFIX + bare, bare):
            factory = self._factories.get(candidate)
            if factory is not None:
                return factory
        raise UnknownPluginError(
            f"Unknown plugin: {name}\n\nDid you forget to register it? "
            f"Known plugins: {', '.join(self.names()) or 'none'}"
        )


default_registry = PluginRegistry()


def register_plugin(name: str, registry: Optional[PluginRegistry] = None):
    """Decorator registering a plugin factory under `name`."""

    def decorator(factory: PluginFactory) -> PluginFactory:
        (registry or default_registry).register(name, factory)
        return factory

    return decorator


@dataclass
class PluginsOptions:
    plugins: Sequence[PluginSpec] = field(default_factory=list)
    registry: Optional[PluginRegistry] = None


def normalize_plugins(options: Optional[PluginsOptions]) -> List[Plugin]:
    """
    Resolve plugin specs into configured plugin callables.

    Each spec is a name or a `(name, options)` pair.

    Raises:
        InvalidConfigError: no plugins, or a malformed spec.
        UnknownPluginError: a name missing from the registry.
    """
    if options is None or not options.plugins:
        raise InvalidConfigError("No plugins found for the plugin backend, please configure 'plugins'")

    registry = options.registry or default_registry
    plugins: List[Plugin] = []
    for spec in options.plugins:
        if isinstance(spec, str):
            name, plugin_options = spec, None
        elif (
            isinstance(spec, (list, tuple))
            and len(spec) == 2
            and isinstance(spec[0], str)
            and (spec[1] is None or isinstance(spec[1], Mapping))
        ):
            name, plugin_options = spec[0], spec[1]
        else:
            raise InvalidConfigError(
                f"Invalid plugin configuration '{spec!r}', plugin configuration "
                "should be 'str' or '(str, dict)'"
            )
        plugins.append(registry.resolve(name)(plugin_options))
    return plugins


def run_chain(data: bytes, plugins: Iterable[Plugin]) -> bytes:
    for plugin in plugins:
        data = plugin(data)
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError(f"Plugin {plugin!r} returned {type(data).__name__}, expected bytes")
    return bytes(data)


async def _encode(item: WorkItem, options: Optional[PluginsOptions]) -> Optional[bytes]:
    plugins = normalize_plugins(options)
    try:
        return await asyncio.to_thread(run_chain, item.data, plugins)
    except Exception as exc:  # noqa: BLE001
        return capture_failure(item, exc)


async def generate(item: WorkItem, options: Optional[PluginsOptions] = None) -> Optional[WorkItem]:
    """Run the chain and rename the output after its sniffed format."""
    result = await _encode(item, options)
    if result is None:
        return None

    filename = item.filename
    detected = sniff(result)
    if detected is not None and detected.extension != extension_of(item.filename):
        filename = replace_file_extension(item.filename, detected.extension)

    return item.derive(filename=filename, data=result, info=item.mark("generated", BACKEND_NAME))


async def minify(item: WorkItem, options: Optional[PluginsOptions] = None) -> Optional[WorkItem]:
    """Run the chain; refuse results whose format differs from the input."""
    result = await _encode(item, options)
    if result is None:
        return None
    if not check_same_format(item, result, BACKEND_NAME):
        return None
    return item.derive(data=result, info=item.mark("minimized", BACKEND_NAME))


def _reencode(data: bytes, accepts: Tuple[str, ...], fmt: str, params: Dict[str, Any]) -> bytes:
    detected = sniff(data)
    if detected is None or detected.extension not in accepts:
        return data
    decoded = load_image(data)
    return encode_frames(decoded.frames, fmt, params)


@register_plugin("pillow-png")
def png_plugin(options: Optional[Mapping[str, Any]] = None) -> Plugin:
    params = {"optimize": True, **(options or {})}
    return lambda data: _reencode(data, ("png", "apng"), "PNG", params)


@register_plugin("pillow-jpeg")
def jpeg_plugin(options: Optional[Mapping[str, Any]] = None) -> Plugin:
    params = {"quality": 80, "optimize": True, "progressive": True, **(options or {})}
    return lambda data: _reencode(data, ("jpg",), "JPEG", params)


@register_plugin("pillow-gif")
def gif_plugin(options: Optional[Mapping[str, Any]] = None) -> Plugin:
    params = {"optimize": True, **(options or {})}
    return lambda data: _reencode(data, ("gif",), "GIF", params)


@register_plugin("pillow-webp")
def webp_plugin(options: Optional[Mapping[str, Any]] = None) -> Plugin:
    """Convert raster inputs to WebP (changes the format; use with generate)."""
    params = {"quality": 75, **(options or {})}
    return lambda data: _reencode(data, ("png", "apng", "jpg", "gif", "tif", "bmp", "webp"), "WEBP", params)
