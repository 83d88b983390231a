"""
High-level transform pipeline.

`ImagePipeline` is the main entry point used by host integrations and
batch workers. It keeps orchestration simple:
work item in -> each configured step in order -> final item + per-step results.

A step that returns None leaves the previous item in place; diagnostics it
recorded stay on that item.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from typing import Any, List, Optional, Sequence, Tuple, Union

from . import config, encoder_pool, pillow_backend, plugins, svg_backend
from .adapters import Adapter, Mode
from .encoder_pool import EncoderPool, PoolOptions
from .models import InvalidConfigError, WorkItem
from .pillow_backend import PillowOptions
from .plugins import PluginsOptions
from .svg_backend import SvgOptions
from .throttle import throttle_all

logger = logging.getLogger(__name__)

BackendOptions = Union[PluginsOptions, PoolOptions, PillowOptions, SvgOptions]


@dataclass
class Step:
    mode: Mode
    options: BackendOptions

    def __post_init__(self) -> None:
        self.mode = Mode(self.mode)

    @classmethod
    def minify(cls, options: BackendOptions) -> "Step":
        return cls(Mode.MINIFY, options)

    @classmethod
    def generate(cls, options: BackendOptions) -> "Step":
        return cls(Mode.GENERATE, options)


@dataclass
class PipelineResult:
    item: WorkItem
    step_results: List[Optional[WorkItem]]


def resolve_adapter(step: Step) -> Adapter:
    """
    Map a step to its backend function.

    Raises:
        InvalidConfigError: unknown options type or unsupported mode.
    """
    mode = step.mode
    options = step.options
    if isinstance(options, PluginsOptions):
        module: Any = plugins
    elif isinstance(options, PoolOptions):
        module = encoder_pool
    elif isinstance(options, PillowOptions):
        module = pillow_backend
    elif isinstance(options, SvgOptions):
        if mode is Mode.GENERATE:
            raise InvalidConfigError("The SVG backend only supports minify")
        module = svg_backend
    else:
        raise InvalidConfigError(f"Unsupported backend options {type(options).__name__}")
    return module.minify if mode is Mode.MINIFY else module.generate


async def run_steps(item: WorkItem, steps: Sequence[Step]) -> PipelineResult:
    """Apply `steps` in order, keeping the previous item when a step returns None."""
    current = item
    step_results: List[Optional[WorkItem]] = []
    for step in steps:
        adapter = resolve_adapter(step)
        result = await adapter(current, step.options)
        step_results.append(result)
        if result is not None:
            current = result
        else:
            logger.debug("Step %s left %s unchanged", step.mode.value, current.filename)
    return PipelineResult(item=current, step_results=step_results)


class ImagePipeline:
    """
    Runs a fixed list of steps over one item or a batch of items.

    Encoder-pool steps configured without a pool share one pool owned by
    this pipeline: `setup` creates it lazily and `teardown` closes it. Both
    are idempotent, and the pipeline is usable as an async context manager.
    """

    def __init__(
        self,
        steps: Sequence[Step],
        concurrency: Optional[int] = None,
        settings: Optional[config.Settings] = None,
    ) -> None:
        for step in steps:
            resolve_adapter(step)
        self.settings = settings or config.get_settings()
        self.concurrency = config.resolve_concurrency(concurrency, self.settings)
        self._steps = list(steps)
        self._pool: Optional[EncoderPool] = None

    @property
    def needs_pool(self) -> bool:
        return any(isinstance(step.options, PoolOptions) and step.options.pool is None for step in self._steps)

    def setup(self) -> None:
        if self._pool is None and self.needs_pool:
            self._pool = EncoderPool(workers=self.settings.pool_workers)

    async def teardown(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()

    async def __aenter__(self) -> "ImagePipeline":
        self.setup()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.teardown()

    def _bind_pool(self) -> Tuple[List[Step], Optional[EncoderPool]]:
        """
        Point pool steps at the shared pool, holding a reference for one run.

        The caller releases the returned pool with `close()` when the run ends,
        so a concurrent `teardown` cannot shut it down under running work.
        """
        if self._pool is None:
            return self._steps, None
        pool = self._pool.retain()
        bound = []
        for step in self._steps:
            if isinstance(step.options, PoolOptions) and step.options.pool is None:
                step = Step(step.mode, replace(step.options, pool=pool))
            bound.append(step)
        return bound, pool

    async def run(self, item: WorkItem) -> PipelineResult:
        steps, pool = self._bind_pool()
        try:
            return await run_steps(item, steps)
        finally:
            if pool is not None:
                await pool.close()

    async def run_batch(self, items: Sequence[WorkItem]) -> List[PipelineResult]:
        """
        Process `items` with at most `concurrency` of them in flight.

        Results follow input order. An unexpected fault in any item fails the
        whole batch; backend failures are recorded on the items instead.
        """
        steps, pool = self._bind_pool()
        logger.info("Processing %d item(s) with concurrency=%d", len(items), self.concurrency)
        tasks = [lambda item=item: run_steps(item, steps) for item in items]
        try:
            return await throttle_all(self.concurrency, tasks)
        finally:
            if pool is not None:
                await pool.close()
