"""
Loader that consumes and discards records
"""

import logging

from etl.base import Loader

logger = logging.getLogger(__name__)


class NoopLoader(Loader):
    """Counts records without persisting them (dry runs, smoke tests)."""

    async def load(self, ctx, records) -> None:
        async for record in records:
            self.stats.loaded += 1
            logger.debug(f"Discarded {record.kind} record from {record.source}")
