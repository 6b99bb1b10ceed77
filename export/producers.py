"""
Pull-based batch producers
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional, Sequence
import logging

from schemas.product import Product

logger = logging.getLogger(__name__)


class BatchProducer(ABC):
    """
    Abstract paginator over the records of one export.

    Contract:
    - ``next_page(offset, page_size)`` is called with offsets increasing by
      ``page_size``
    - a short page is only returned at the end
    - an empty page signals exhaustion, and every later call returns empty
    """

    @abstractmethod
    async def next_page(self, offset: int, page_size: int) -> List[Product]:
        pass

    @staticmethod
    def _check_page_args(offset: int, page_size: int):
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        if page_size <= 0:
            raise ValueError(f"page_size must be > 0, got {page_size}")


class ListBatchProducer(BatchProducer):
    """Slices a pre-existing bounded collection"""

    def __init__(self, records: Sequence[Product]):
        self.records = records

    async def next_page(self, offset: int, page_size: int) -> List[Product]:
        self._check_page_args(offset, page_size)
        if offset >= len(self.records):
            return []
        return list(self.records[offset:offset + page_size])


class SyntheticBatchProducer(BatchProducer):
    """
    Generates ``count`` records from a template for performance probes.

    Only the key varies: record ``i`` gets ``longArticleId == str(i)``, so a
    probe of 1000 records writes keys "0" through "999".
    """

    DEFAULT_TEMPLATE = Product(
        title="Performance probe product",
        article="PERF-0000",
        descriptionContent="Synthetic product generated for a performance probe",
        mainCategoryTitle="Performance",
        categoryTree="Performance/Probe",
        image="https://example.com/images/perf-probe.png",
        producerTitle="Probe Producer",
    )

    def __init__(self, count: int, template: Optional[Product] = None):
        if count < 0:
            raise ValueError(f"count must be >= 0, got {count}")
        self.count = count
        self.template = template or self.DEFAULT_TEMPLATE

    async def next_page(self, offset: int, page_size: int) -> List[Product]:
        self._check_page_args(offset, page_size)
        end = min(offset + page_size, self.count)
        return [
            self.template.model_copy(update={"long_article_id": str(i)})
            for i in range(offset, end)
        ]


async def iter_batches(producer: BatchProducer, batch_size: int) -> AsyncIterator[List[Product]]:
    """
    Drive a producer to exhaustion, yielding each non-empty page.

    Stops at the first empty page, so the producer sees exactly one empty
    pull per run.
    """
    offset = 0
    batch_index = 0
    while True:
        page = await producer.next_page(offset, batch_size)
        if not page:
            logger.debug(f"Producer exhausted after {batch_index} batches")
            return
        batch_index += 1
        yield page
        offset += batch_size
