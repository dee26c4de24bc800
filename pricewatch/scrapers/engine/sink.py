"""Per-batch result sinks.

The engine hands every page's records to a sink as soon as they are
extracted. A sink returns how many records it saved; the engine logs partial
saves but never retries them. Persistence and dedup are the sink's business.
"""

from typing import Awaitable, Callable, List, Protocol, Tuple, runtime_checkable

from pricewatch.scrapers.models import BatchMeta, CanonicalProductRecord


@runtime_checkable
class ResultSink(Protocol):
    async def on_batch(self, records: List[CanonicalProductRecord], meta: BatchMeta) -> int:
        """Persist a batch.

        Returns:
            Number of records saved (at most ``len(records)``)
        """
        ...


class CollectingSink:
    """Keeps every batch in memory."""

    def __init__(self):
        self.batches: List[Tuple[BatchMeta, List[CanonicalProductRecord]]] = []

    async def on_batch(self, records: List[CanonicalProductRecord], meta: BatchMeta) -> int:
        self.batches.append((meta, list(records)))
        return len(records)

    @property
    def records(self) -> List[CanonicalProductRecord]:
        return [record for _, batch in self.batches for record in batch]


class CallbackSink:
    """Adapts an ``async (records, meta) -> int`` callable."""

    def __init__(
        self,
        callback: Callable[[List[CanonicalProductRecord], BatchMeta], Awaitable[int]],
    ):
        self._callback = callback

    async def on_batch(self, records: List[CanonicalProductRecord], meta: BatchMeta) -> int:
        return await self._callback(records, meta)
