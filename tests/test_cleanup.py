"""Tests for interactive cleanup and enhancement."""

from __future__ import annotations

import asyncio

import pytest

from intake.cleanup import CleanupTrigger, TransformMode
from intake.errors import EnrichmentTransportError, ItemStateError
from intake.models import ItemStatus, SourceAsset
from intake.queue_manager import QueueManager


def test_cleanup_replaces_image_and_returns_item_to_pending(store, enricher, make_asset) -> None:
    async def scenario():
        queue = QueueManager(store)
        trigger = CleanupTrigger(queue, enricher)
        (item_id,) = queue.enqueue([make_asset("watermarked.jpg")])

        ok = await trigger.remove_watermark(item_id, prompt="remove the shop logo")

        item = queue.get(item_id)
        assert ok is True
        assert item.status is ItemStatus.PENDING
        assert item.image == enricher.transform_result
        assert item.preview_url.startswith("data:image/jpeg;base64,")
        assert enricher.transform_calls == [("cleanup", "remove the shop logo")]

        async with queue:
            await queue.join()

    asyncio.run(scenario())

    # The cleaned image, not the original, is what gets uploaded
    assert store.uploads[0][0] == enricher.transform_result.data
    assert store.records[0].title == "watermarked"


def test_enhance_uses_enhancement_operation(store, enricher, make_asset) -> None:
    async def scenario():
        queue = QueueManager(store)
        trigger = CleanupTrigger(queue, enricher)
        (item_id,) = queue.enqueue([make_asset("ring.jpg")])
        return await trigger.enhance(item_id), queue

    ok, queue = asyncio.run(scenario())

    assert ok is True
    assert enricher.transform_calls == [("enhance", None)]
    assert queue.items[0].status is ItemStatus.PENDING


def test_failed_transform_marks_error_and_keeps_original(store, enricher, make_asset) -> None:
    enricher.transform_error = EnrichmentTransportError("connection reset")

    async def scenario():
        queue = QueueManager(store)
        trigger = CleanupTrigger(queue, enricher)
        (item_id,) = queue.enqueue([make_asset("ring.jpg")])
        return await trigger.enhance(item_id), queue

    ok, queue = asyncio.run(scenario())

    item = queue.items[0]
    assert ok is False
    assert item.status is ItemStatus.ERROR
    assert item.error.startswith("Enhancement failed")
    assert item.image is None


def test_transform_of_corrupt_asset_marks_error(store, enricher) -> None:
    async def scenario():
        queue = QueueManager(store)
        trigger = CleanupTrigger(queue, enricher)
        (item_id,) = queue.enqueue([SourceAsset("bad.jpg", b"junk")])
        return await trigger.remove_watermark(item_id), queue

    ok, queue = asyncio.run(scenario())

    assert ok is False
    assert queue.items[0].error.startswith("Could not read image")
    assert enricher.transform_calls == []


def test_transform_requires_pending_item(store, enricher, make_asset) -> None:
    async def scenario():
        queue = QueueManager(store)
        trigger = CleanupTrigger(queue, enricher)
        (item_id,) = queue.enqueue([make_asset("ring.jpg")])
        async with queue:
            await queue.join()

        with pytest.raises(ItemStateError):
            await trigger.remove_watermark(item_id)
        with pytest.raises(KeyError):
            await trigger.remove_watermark("missing")

    asyncio.run(scenario())
    assert enricher.transform_calls == []


def test_cleanup_runs_alongside_busy_drain_loop(store, enricher, make_asset) -> None:
    async def scenario():
        enricher.gate = asyncio.Event()
        enricher.started = asyncio.Event()
        queue = QueueManager(store, enricher=enricher, use_ai=True)
        trigger = CleanupTrigger(queue, enricher)
        first, second = queue.enqueue([make_asset("first.jpg"), make_asset("second.jpg")])

        async with queue:
            await enricher.started.wait()
            assert queue.get(first).status is ItemStatus.ANALYZING
            assert queue.is_processing

            # The drain loop is blocked on the first item's AI call
            ok = await asyncio.wait_for(trigger.remove_watermark(second), timeout=5)
            assert ok is True
            assert queue.get(first).status is ItemStatus.ANALYZING
            assert queue.get(second).status is ItemStatus.PENDING

            enricher.gate.set()
            await queue.join()

        return queue

    queue = asyncio.run(scenario())

    assert [item.status for item in queue.items] == [ItemStatus.COMPLETE, ItemStatus.COMPLETE]
    assert [r.title for r in store.records] == ["first", "second"]


def test_item_in_transform_is_skipped_by_drain_loop(store, enricher, make_asset) -> None:
    async def scenario():
        enricher.transform_gate = asyncio.Event()
        queue = QueueManager(store)
        trigger = CleanupTrigger(queue, enricher)
        cleaned, plain = queue.enqueue([make_asset("cleaned.jpg"), make_asset("plain.jpg")])

        task = asyncio.create_task(trigger.remove_watermark(cleaned))
        await asyncio.sleep(0)
        assert queue.get(cleaned).status is ItemStatus.ANALYZING

        async with queue:
            # Only the untouched item drains while the transform is running
            while queue.get(plain).status is not ItemStatus.COMPLETE:
                await asyncio.sleep(0.01)
            assert store.records[0].title == "plain"

            enricher.transform_gate.set()
            assert await task is True
            await queue.join()

    asyncio.run(scenario())
    assert [r.title for r in store.records] == ["plain", "cleaned"]


def test_join_waits_for_running_transform(store, enricher, make_asset) -> None:
    async def scenario():
        enricher.transform_gate = asyncio.Event()
        queue = QueueManager(store)
        trigger = CleanupTrigger(queue, enricher)
        plain, enhanced = queue.enqueue([make_asset("plain.jpg"), make_asset("enhanced.jpg")])

        task = asyncio.create_task(trigger.enhance(enhanced))
        await asyncio.sleep(0)

        async with queue:
            join_task = asyncio.create_task(queue.join())
            while queue.get(plain).status is not ItemStatus.COMPLETE:
                await asyncio.sleep(0.01)
            await asyncio.sleep(0.05)

            # Nothing is pending, but the enhanced item is still out
            assert not join_task.done()

            enricher.transform_gate.set()
            await asyncio.wait_for(join_task, timeout=5)
            assert await task is True

        return queue, enhanced

    queue, enhanced = asyncio.run(scenario())

    assert queue.get(enhanced).status is ItemStatus.COMPLETE
    assert [r.title for r in store.records] == ["plain", "enhanced"]


def test_close_waits_for_running_transform(store, enricher, make_asset) -> None:
    async def scenario():
        enricher.transform_gate = asyncio.Event()
        queue = QueueManager(store)
        trigger = CleanupTrigger(queue, enricher)
        (item_id,) = queue.enqueue([make_asset("ring.jpg")])

        task = asyncio.create_task(trigger.remove_watermark(item_id))
        await asyncio.sleep(0)
        queue.start()

        close_task = asyncio.create_task(queue.close())
        await asyncio.sleep(0.05)
        assert not close_task.done()

        enricher.transform_gate.set()
        await asyncio.wait_for(close_task, timeout=5)
        return await task, queue, item_id

    ok, queue, item_id = asyncio.run(scenario())

    assert ok is True
    # The stopped queue keeps the cleaned item for the next run
    assert queue.get(item_id).status is ItemStatus.PENDING
    assert store.records == []


def test_failed_transform_releases_join(store, enricher, make_asset) -> None:
    enricher.transform_error = EnrichmentTransportError("connection reset")

    async def scenario():
        enricher.transform_gate = asyncio.Event()
        queue = QueueManager(store)
        trigger = CleanupTrigger(queue, enricher)
        (item_id,) = queue.enqueue([make_asset("ring.jpg")])

        task = asyncio.create_task(trigger.remove_watermark(item_id))
        await asyncio.sleep(0)

        async with queue:
            join_task = asyncio.create_task(queue.join())
            await asyncio.sleep(0.05)
            assert not join_task.done()

            enricher.transform_gate.set()
            await asyncio.wait_for(join_task, timeout=5)
            return await task, queue.get(item_id)

    ok, item = asyncio.run(scenario())

    assert ok is False
    assert item.status is ItemStatus.ERROR


def test_removing_item_during_transform_drops_result(store, enricher, make_asset) -> None:
    async def scenario():
        enricher.transform_gate = asyncio.Event()
        queue = QueueManager(store)
        trigger = CleanupTrigger(queue, enricher)
        (item_id,) = queue.enqueue([make_asset("ring.jpg")])

        task = asyncio.create_task(trigger.enhance(item_id))
        await asyncio.sleep(0)
        queue.remove(item_id)
        enricher.transform_gate.set()

        assert await task is True
        assert queue.items == ()

    asyncio.run(scenario())


def test_transform_asset_before_queueing(store, enricher, make_asset) -> None:
    async def scenario():
        queue = QueueManager(store)
        trigger = CleanupTrigger(queue, enricher)
        return await trigger.transform_asset(make_asset("single.jpg"), TransformMode.ENHANCE), queue

    image, queue = asyncio.run(scenario())

    assert image == enricher.transform_result
    assert queue.items == ()
