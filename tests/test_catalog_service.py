import asyncio
import re
from datetime import date, timedelta

import pytest

from conftest import run
from core.catalog.importer import parse_lines
from core.catalog.product import filter_products
from core.catalog.review import ReviewState, ReviewWorkflow
from core.catalog.sanitizer import UNPRICED
from core.catalog.service import CatalogService
from core.errors import NotFound, TableMissing, TransientNetwork, ValidationFailure
from core.storage.sql_store import SQLRowStore


class SlowStore(SQLRowStore):
    async def select(self, table, filters=None, order_by=None, descending=False):
        await asyncio.sleep(1)
        return await super().select(table, filters, order_by, descending)


class FailingStore(SQLRowStore):
    """Raises on the named operation once ``fail_on`` is set."""

    fail_on = None
    after_calls = 0

    def __init__(self, engine):
        super().__init__(engine)
        self.calls = {}

    def _maybe_fail(self, operation, detail=None):
        self.calls[operation] = self.calls.get(operation, 0) + 1
        if operation == self.fail_on and self.calls[operation] > self.after_calls:
            if detail is None or detail:
                raise TransientNetwork(f"{operation} failed")

    async def insert(self, table, rows):
        self._maybe_fail("insert")
        return await super().insert(table, rows)

    async def update(self, table, filters, patch):
        self._maybe_fail("update", "price" in patch)
        return await super().update(table, filters, patch)

    async def upsert(self, table, rows, conflict_keys):
        self._maybe_fail("upsert")
        return await super().upsert(table, rows, conflict_keys)


@pytest.fixture
def catalog(store, clock):
    return CatalogService(store, clock=clock)


def test_add_product_sanitizes_and_records_history(catalog, clock):
    async def scenario():
        product = await catalog.add_product("  Tea ", "5,000")
        return product, await catalog.ledger.all_entries()

    product, entries = run(scenario())
    assert product.name == "Tea"
    assert product.price == 5000
    assert product.last_updated == clock.now
    assert not product.is_review_requested
    assert [(e.product_id, e.price, e.recorded_date) for e in entries] == [(product.id, 5000, date(2026, 10, 17))]


def test_unparsable_price_adds_unpriced_product(catalog):
    async def scenario():
        product = await catalog.add_product("Salt", "cheap")
        return product, await catalog.ledger.all_entries()

    product, entries = run(scenario())
    assert product.price is None
    assert entries == []


@pytest.mark.parametrize("name, price", [("", "10"), ("   ", "10"), (None, "10"), ("Tea", "-5")])
def test_invalid_new_products_are_rejected(catalog, name, price):
    with pytest.raises(ValidationFailure):
        run(catalog.add_product(name, price))


def test_batch_import_in_chunks(store, clock):
    catalog = CatalogService(store, clock=clock, chunk_size=2)
    records = parse_lines("A 10\nB 20\nC\nD 1,000\nE 5")

    async def scenario():
        added = await catalog.add_batch_products(records)
        return added, await catalog.fetch_products(), await catalog.ledger.all_entries()

    added, products, entries = run(scenario())
    assert len(added) == 5
    assert [p.name for p in products] == ["A", "B", "C", "D", "E"]
    assert len(entries) == 4
    assert {e.price for e in entries} == {10, 20, 1000, 5}


def test_batch_chunk_failure_aborts_remaining_chunks(engine, clock):
    store = FailingStore(engine)
    store.fail_on, store.after_calls = "insert", 1
    catalog = CatalogService(store, clock=clock, chunk_size=2)

    with pytest.raises(TransientNetwork):
        run(catalog.add_batch_products([{"name": n, "price": "1"} for n in "ABCDE"]))
    assert run(store.count("products")) == 2
    assert store.calls["insert"] == 2


def test_empty_batch_is_rejected(catalog):
    with pytest.raises(ValidationFailure):
        run(catalog.add_batch_products([]))


def test_initialize_seeds_only_an_empty_catalog(catalog):
    async def scenario():
        first = await catalog.initialize_data([{"name": "Tea", "price": "5,000"}])
        second = await catalog.initialize_data([{"name": "Coffee", "price": "1"}])
        return first, second, await catalog.fetch_products()

    first, second, products = run(scenario())
    assert (first, second) == (1, 0)
    assert [p.name for p in products] == ["Tea"]


def test_initialize_on_missing_table(bare_store):
    with pytest.raises(TableMissing):
        run(CatalogService(bare_store).initialize_data([{"name": "Tea"}]))


def test_fetch_times_out(engine):
    catalog = CatalogService(SlowStore(engine), fetch_timeout=0.05)
    with pytest.raises(TransientNetwork):
        run(catalog.fetch_products())


def test_review_round_trip(catalog):
    async def scenario():
        tea = await catalog.add_product("Tea", "5,000")
        sugar = await catalog.add_product("Sugar", "30")
        batch = await catalog.review.request_review([tea.id, sugar.id])
        pending = ReviewWorkflow.pending(await catalog.fetch_products())
        await catalog.review.complete_review(tea.id)
        return batch, pending, await catalog.get_product(tea.id), await catalog.get_product(sugar.id)

    batch, pending, tea, sugar = run(scenario())
    assert re.fullmatch(r"BATCH-\d{1,4}", batch.batch_id)
    assert batch.count == 2
    assert {p.review_batch_id for p in pending} == {batch.batch_id}
    assert len(pending) == 2
    assert ReviewWorkflow.state_of(tea) is ReviewState.NORMAL
    assert tea.review_batch_id is None
    assert ReviewWorkflow.state_of(sugar) is ReviewState.PENDING_REVIEW


def test_review_request_validation(catalog):
    with pytest.raises(ValidationFailure):
        run(catalog.review.request_review([]))
    with pytest.raises(NotFound):
        run(catalog.review.request_review(["nope"]))
    with pytest.raises(NotFound):
        run(catalog.review.complete_review("nope"))


def test_commit_price_resolves_pending_review(catalog, clock):
    async def scenario():
        tea = await catalog.add_product("Tea", "5,000")
        await catalog.review.request_review([tea.id], "BATCH-7")
        clock.now += timedelta(hours=1)
        updated = await catalog.commit_price(tea.id, "5,500")
        return updated, await catalog.ledger.entries_for(tea.id)

    updated, entries = run(scenario())
    assert updated.price == 5500
    assert not updated.is_review_requested
    assert updated.review_batch_id is None
    assert updated.last_updated == clock.now
    assert [e.price for e in entries] == [5500]


def test_commit_price_rejects_text(catalog):
    async def scenario():
        tea = await catalog.add_product("Tea", "5,000")
        with pytest.raises(ValidationFailure):
            await catalog.commit_price(tea.id, "abc")
        with pytest.raises(ValidationFailure):
            await catalog.commit_price(tea.id, -1)
        return await catalog.get_product(tea.id)

    assert run(scenario()).price == 5000


def test_blank_price_clears_without_touching_history(catalog):
    async def scenario():
        tea = await catalog.add_product("Tea", "5,000")
        cleared = await catalog.commit_price(tea.id, "  ")
        return cleared, await catalog.ledger.all_entries()

    cleared, entries = run(scenario())
    assert cleared.price is None
    assert [e.price for e in entries] == [5000]


def test_commit_price_on_unknown_product(catalog):
    with pytest.raises(NotFound):
        run(catalog.commit_price("nope", "10"))


def test_failed_price_update_leaves_review_pending(engine, clock):
    store = FailingStore(engine)
    catalog = CatalogService(store, clock=clock)

    async def scenario():
        tea = await catalog.add_product("Tea", "5,000")
        await catalog.review.request_review([tea.id])
        store.fail_on = "update"
        with pytest.raises(TransientNetwork):
            await catalog.commit_price(tea.id, "6,000")
        return await catalog.get_product(tea.id)

    tea = run(scenario())
    assert tea.price == 5000
    assert tea.is_review_requested


def test_history_failure_does_not_block_review_completion(engine, clock):
    store = FailingStore(engine)
    catalog = CatalogService(store, clock=clock)

    async def scenario():
        tea = await catalog.add_product("Tea", "5,000")
        await catalog.review.request_review([tea.id])
        store.fail_on = "upsert"
        return await catalog.commit_price(tea.id, "6,000")

    tea = run(scenario())
    assert tea.price == 6000
    assert not tea.is_review_requested


def test_delete_keeps_history(catalog):
    async def scenario():
        tea = await catalog.add_product("Tea", "5,000")
        deleted = await catalog.delete_products([tea.id, tea.id])
        return deleted, await catalog.fetch_products(), await catalog.ledger.all_entries()

    deleted, products, entries = run(scenario())
    assert deleted == 1
    assert products == []
    assert len(entries) == 1


def test_filter_and_recent_flag(catalog, clock):
    async def scenario():
        await catalog.add_product("Black tea", "10")
        await catalog.add_product("Sugar", "20")
        return await catalog.fetch_products()

    products = run(scenario())
    assert [p.name for p in filter_products(products, "tea")] == ["Black tea"]
    assert filter_products(products, pending_only=True) == []
    assert products[0].is_recently_updated(clock.now + timedelta(hours=2))
    assert not products[0].is_recently_updated(clock.now + timedelta(days=2))


def test_review_count_skips_unknown_ids(catalog):
    async def scenario():
        tea = await catalog.add_product("Tea", "5,000")
        return await catalog.review.request_review([tea.id, "nope", tea.id], "BATCH-3")

    batch = run(scenario())
    assert (batch.batch_id, batch.count) == ("BATCH-3", 1)


def test_unpriced_text_never_reaches_storage_as_a_price(catalog):
    async def scenario():
        salt = await catalog.add_product("Salt", "nan")
        cleared = await catalog.commit_price((await catalog.add_product("Tea", "10")).id, None)
        return salt, cleared

    salt, cleared = run(scenario())
    assert salt.price_variant is UNPRICED
    assert not salt.is_priced
    assert cleared.price_variant is UNPRICED
