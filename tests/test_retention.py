from promptreel.services.retention import RetentionSweeper
from promptreel.utils.exceptions import StorageError


async def test_sweep_deletes_expired_jobs_and_their_media(settings, store, object_store, make_job, tmp_path) -> None:
    job = await store.save(make_job())
    await object_store.put_bytes(b"mp3", f"user-1/{job.id}/audio/narration.mp3", "audio/mpeg")
    keep = await object_store.put_bytes(b"kept", "user-1/other-job/audio/narration.mp3", "audio/mpeg")

    async def everything(max_age_days):
        return [await store.require(job.id)]

    store.list_expired = everything
    removed = await RetentionSweeper(store, object_store, settings).sweep()

    assert removed == 1
    assert await store.get(job.id) is None
    assert not (tmp_path / "objects" / "user-1" / job.id).exists()
    copy = tmp_path / "kept.mp3"
    await object_store.download(keep, str(copy))
    assert copy.read_bytes() == b"kept"


async def test_zero_retention_disables_the_sweep(settings, store, object_store, make_job) -> None:
    settings.retention_days = 0
    job = await store.save(make_job())

    assert await RetentionSweeper(store, object_store, settings).sweep() == 0
    assert await store.get(job.id) is not None


async def test_storage_failure_skips_only_that_job(settings, store, make_job) -> None:
    jobs = [await store.save(make_job(prompt=f"job {i}")) for i in range(2)]

    class FlakyStore:
        async def delete_prefix(self, prefix):
            if jobs[0].id in prefix:
                raise StorageError("bucket unavailable", prefix=prefix)
            return 0

    async def everything(max_age_days):
        return jobs

    store.list_expired = everything
    removed = await RetentionSweeper(store, FlakyStore(), settings).sweep()

    assert removed == 1
    assert await store.get(jobs[0].id) is not None
    assert await store.get(jobs[1].id) is None
