import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Tuple, Union

from config.settings import get_settings
from core.errors import TableMissing, ValidationFailure
from core.storage.base import RowStore

logger = logging.getLogger(__name__)

HISTORY_TABLE = "price_history"
CONFLICT_KEYS = ("product_id", "recorded_date")


@dataclass(frozen=True)
class PriceHistoryEntry:
    product_id: str
    price: float
    recorded_date: date

    @classmethod
    def from_row(cls, row) -> "PriceHistoryEntry":
        return cls(
            product_id=row["product_id"],
            price=row["price"],
            recorded_date=row["recorded_date"],
        )


def chunked(rows: list, size: int):
    """Yield consecutive slices of at most ``size`` rows."""
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


class HistoryLedger:
    """Date-keyed log of observed prices.

    The ledger answers "what was the price on day D": several edits on the
    same day collapse into one entry holding the last price written.
    """

    def __init__(self, store: RowStore, chunk_size: Optional[int] = None):
        self.store = store
        self.chunk_size = chunk_size or get_settings().BATCH_CHUNK_SIZE

    async def record(self, product_id: str, price: Union[int, float], on: date) -> PriceHistoryEntry:
        """Upsert the entry for (product_id, on)."""
        if price is None:
            raise ValidationFailure("Unpriced products have no history entries")
        rows = await self.store.upsert(
            HISTORY_TABLE,
            [{"product_id": product_id, "price": price, "recorded_date": on}],
            CONFLICT_KEYS,
        )
        logger.debug("Recorded price %s for %s on %s", price, product_id, on)
        return PriceHistoryEntry.from_row(rows[0])

    async def record_many(self, entries: Iterable[Tuple[str, Union[int, float], date]]) -> int:
        """Upsert many entries in fixed-size chunks.

        A failing chunk aborts the remaining ones and the error propagates.
        Entries without a price are skipped.
        """
        rows = [
            {"product_id": product_id, "price": price, "recorded_date": on}
            for product_id, price, on in entries
            if price is not None
        ]
        for chunk in chunked(rows, self.chunk_size):
            await self.store.upsert(HISTORY_TABLE, chunk, CONFLICT_KEYS)
        return len(rows)

    async def all_entries(self) -> List[PriceHistoryEntry]:
        """Every ledger entry, unordered.

        A ledger table that was never created reads as empty.
        """
        try:
            rows = await self.store.select(HISTORY_TABLE)
        except TableMissing:
            logger.warning("Price history table is missing; treating the ledger as empty")
            return []
        return [PriceHistoryEntry.from_row(row) for row in rows]

    async def entries_for(self, product_id: str) -> List[PriceHistoryEntry]:
        """Entries of one product, newest first."""
        rows = await self.store.select(
            HISTORY_TABLE, {"product_id": product_id}, order_by="recorded_date", descending=True
        )
        return [PriceHistoryEntry.from_row(row) for row in rows]
