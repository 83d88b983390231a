"""
Batch/queue worker entry point.

Queue integrations (Redis, Kafka, a build tool's asset hooks) pull items
in whatever way suits them and hand them here; fetching and emitting files
stays with the caller.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .models import WorkItem
from .pipeline import ImagePipeline, Step

logger = logging.getLogger(__name__)


async def process_batch(
    items: Sequence[WorkItem],
    steps: Sequence[Step],
    concurrency: Optional[int] = None,
) -> List[WorkItem]:
    """
    Run `steps` over every item and return the final items in input order.

    Items a step could not process come back unchanged, with the reason in
    their `warnings` or `errors`.
    """
    async with ImagePipeline(steps, concurrency=concurrency) as pipeline:
        results = await pipeline.run_batch(items)

    outputs = [result.item for result in results]
    failed = sum(1 for item in outputs if item.errors)
    if failed:
        logger.warning("Batch finished with %d item(s) carrying errors", failed)
    return outputs
