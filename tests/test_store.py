from datetime import date

import pytest

from conftest import run
from core.errors import NotFound, TableMissing
from core.storage.base import DELETE, INSERT, UPDATE, ChangeEvent
from core.storage.poller import ChangePoller, diff_rows
from core.storage.sql_store import SQLRowStore


def product_row(id, name, price=None):
    return {"id": id, "name": name, "price": price}


def test_insert_select_ordered(store):
    async def scenario():
        await store.insert("products", [product_row("b", "Sugar", 30), product_row("a", "Tea", 50)])
        rows = await store.select("products", order_by="name")
        desc = await store.select("products", order_by="name", descending=True)
        return rows, desc

    rows, desc = run(scenario())
    assert [r["name"] for r in rows] == ["Sugar", "Tea"]
    assert [r["name"] for r in desc] == ["Tea", "Sugar"]
    assert rows[0]["is_review_requested"] is False


def test_filters_accept_value_lists(store):
    async def scenario():
        await store.insert("products", [product_row(str(i), f"P{i}") for i in range(4)])
        return await store.select("products", {"id": ["1", "3"]}, order_by="name")

    assert [r["id"] for r in run(scenario())] == ["1", "3"]


def test_update_and_delete_report_counts_and_publish(store):
    async def scenario():
        subscription = store.subscribe("products")
        await store.insert("products", [product_row("a", "Tea", 50)])
        changed = await store.update("products", {"id": "a"}, {"price": 55})
        missing = await store.update("products", {"id": "zzz"}, {"price": 1})
        deleted = await store.delete("products", {"id": "a"})
        events = subscription.drain()
        subscription.unsubscribe()
        return changed, missing, deleted, events

    changed, missing, deleted, events = run(scenario())
    assert (changed, missing, deleted) == (1, 0, 1)
    assert [e.event_type for e in events] == [INSERT, UPDATE, DELETE]
    assert events[1].before["price"] == 50
    assert events[1].after["price"] == 55
    assert events[2].after is None
    assert store.subscription_count == 0


def test_subscription_filters_by_table_and_event_type(store):
    async def scenario():
        updates_only = store.subscribe("products", [UPDATE])
        orders = store.subscribe("orders")
        await store.insert("products", [product_row("a", "Tea")])
        await store.update("products", {"id": "a"}, {"price": 5})
        return updates_only.drain(), orders.drain()

    updates, orders = run(scenario())
    assert [e.event_type for e in updates] == [UPDATE]
    assert orders == []


def test_upsert_overwrites_on_conflict_keys(store):
    async def scenario():
        day = date(2026, 10, 17)
        await store.upsert("price_history", [{"product_id": "a", "price": 10, "recorded_date": day}],
                           ("product_id", "recorded_date"))
        await store.upsert("price_history", [{"product_id": "a", "price": 12, "recorded_date": day}],
                           ("product_id", "recorded_date"))
        return await store.select("price_history")

    rows = run(scenario())
    assert len(rows) == 1
    assert rows[0]["price"] == 12


def test_missing_table_is_reported_and_repairable(bare_store):
    with pytest.raises(TableMissing) as excinfo:
        run(bare_store.count("products"))
    assert excinfo.value.table == "products"
    assert isinstance(excinfo.value, NotFound)

    async def repair():
        await bare_store.ensure_schema()
        return await bare_store.count("products")

    assert run(repair()) == 0


def test_unknown_table_is_not_found(store):
    with pytest.raises(NotFound):
        run(store.select("customers"))


def test_diff_rows():
    previous = {"a": {"id": "a", "price": 1}, "b": {"id": "b", "price": 2}}
    current = {"a": {"id": "a", "price": 3}, "c": {"id": "c", "price": 4}}
    events = diff_rows("products", previous, current)
    assert ChangeEvent(UPDATE, "products", before=previous["a"], after=current["a"]) in events
    assert ChangeEvent(INSERT, "products", after=current["c"]) in events
    assert ChangeEvent(DELETE, "products", before=previous["b"]) in events
    assert len(events) == 3


def test_poller_sees_writes_from_another_store(engine):
    writer = SQLRowStore(engine)
    watcher = SQLRowStore(engine)

    async def scenario():
        poller = ChangePoller(watcher, "products", interval=0.01)
        await poller.prime()
        subscription = watcher.subscribe("products")
        await writer.insert("products", [product_row("a", "Tea", 50)])
        await writer.update("products", {"id": "a"}, {"price": 60})
        polled = await poller.poll_once()
        return polled, subscription.drain(), await poller.poll_once()

    polled, received, second = run(scenario())
    assert [e.event_type for e in polled] == [INSERT]
    assert received[0].after["price"] == 60
    assert second == []
