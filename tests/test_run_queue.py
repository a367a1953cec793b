import asyncio

import pytest

from promptreel.models.job import FinalVideoBlock
from promptreel.services.run_queue import RunQueue


def _queue(handler, store=None, worker_count=1, max_pending=5):
    async def load_any(job_id):
        return _Pending()

    queue = RunQueue()
    queue.configure(handler, store.get if store else load_any, worker_count=worker_count, max_pending=max_pending)
    return queue


class _Pending:
    is_complete = False


async def test_jobs_run_once_even_when_queued_twice() -> None:
    seen = []
    release = asyncio.Event()

    async def handler(job_id):
        seen.append(job_id)
        await release.wait()

    queue = _queue(handler)
    await queue.start()

    assert await queue.enqueue("a")
    assert await queue.enqueue("a")
    assert queue.is_tracked("a")
    release.set()
    await queue.stop()

    assert seen == ["a"]
    assert not queue.is_tracked("a")


async def test_full_queue_refuses_new_jobs() -> None:
    gate = asyncio.Event()

    async def handler(job_id):
        await gate.wait()

    queue = _queue(handler, max_pending=1)
    await queue.start()
    assert await queue.enqueue("running")
    await asyncio.sleep(0)
    assert await queue.enqueue("waiting")

    assert not queue.can_accept()
    assert await queue.enqueue("rejected") is False

    gate.set()
    await queue.stop()


async def test_workers_survive_a_failing_run() -> None:
    done = []

    async def handler(job_id):
        if job_id == "bad":
            raise RuntimeError("stage exploded")
        done.append(job_id)

    queue = _queue(handler, worker_count=1, max_pending=4)
    await queue.start()
    await queue.enqueue("bad")
    await queue.enqueue("good")
    await queue.stop()

    assert done == ["good"]
    assert not queue.is_tracked("bad")


async def test_deleted_and_finished_jobs_are_skipped(store, make_job) -> None:
    ran = []
    gate = asyncio.Event()

    async def handler(job_id):
        ran.append(job_id)
        await gate.wait()

    blocker = await store.save(make_job(prompt="blocker"))
    deleted = await store.save(make_job(prompt="deleted"))
    finished = await store.save(make_job(prompt="finished"))
    waiting = await store.save(make_job(prompt="waiting"))

    queue = _queue(handler, store=store)
    await queue.start()
    for job in (blocker, deleted, finished, waiting):
        assert await queue.enqueue(job.id)
    while not ran:
        await asyncio.sleep(0.01)

    await store.delete(deleted.id)
    await store.update(finished.id, {"final_video": FinalVideoBlock(video_url="file:///final.mp4")})
    gate.set()
    await queue.stop()

    assert ran == [blocker.id, waiting.id]
    assert queue.stats()["skipped"] == 2


async def test_enqueue_before_start_is_an_error() -> None:
    queue = RunQueue()
    with pytest.raises(RuntimeError):
        await queue.enqueue("a")


async def test_start_needs_a_handler() -> None:
    with pytest.raises(RuntimeError):
        await RunQueue().start()
