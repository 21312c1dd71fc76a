import asyncio
import io
import logging

import pytest
from rich.console import Console
from rich.progress import Progress

from devuploader.transfer import BucketReport, UploadCoordinator


def _connections(factory, n, overrides=None):
    return [factory(f"sftp_{i + 1}", **(overrides or {}).get(i, {})) for i in range(n)]


@pytest.mark.asyncio
async def test_batch_is_split_across_connections(fake_connection):
    conns = _connections(fake_connection, 3)
    coordinator = UploadCoordinator("w1", conns)

    report = await coordinator.upload_batch(["a", "b", "c", "d", "e"])

    assert [c.uploads for c in conns] == [[["a", "b"]], [["c", "d"]], [["e"]]]
    assert report.ok
    assert report.uploaded == 5
    assert [b.uploader for b in report.buckets] == ["SFTP1", "SFTP2", "SFTP3"]


@pytest.mark.asyncio
async def test_failed_bucket_does_not_stop_siblings(fake_connection):
    conns = _connections(fake_connection, 3, {1: {"fail_upload": True}})
    coordinator = UploadCoordinator("w1", conns)

    report = await coordinator.upload_batch(["a", "b", "c", "d", "e", "f"])

    assert not report.ok
    assert [b.slot for b in report.failed] == [1]
    first, second, third = report.buckets
    assert first.ok and first.uploaded == 2
    assert third.ok and third.uploaded == 2
    assert second.uploaded == 1
    assert isinstance(second.error, OSError)
    assert "Upload failed after 1 of 2 files" in second.summary()


@pytest.mark.asyncio
async def test_empty_buckets_are_not_dispatched(fake_connection):
    conns = _connections(fake_connection, 4)
    coordinator = UploadCoordinator("w1", conns)

    report = await coordinator.upload_batch(["a", "b"])

    assert len(report.buckets) == 2
    assert conns[2].uploads == [] and conns[3].uploads == []


@pytest.mark.asyncio
async def test_prepare_survives_cd_failure(fake_connection):
    conns = _connections(fake_connection, 3, {1: {"fail_cd": True}})
    coordinator = UploadCoordinator("w1", conns)

    await coordinator.prepare("/srv/www")

    assert [c.cd_calls for c in conns] == [["/srv/www"]] * 3
    assert conns[0].cwd == "/srv/www" and conns[1].cwd is None
    # the connection is still used for uploads afterwards
    report = await coordinator.upload_batch(["a", "b", "c"])
    assert conns[1].uploads == [["b"]]
    assert report.ok


@pytest.mark.asyncio
async def test_connection_finishes_bucket_before_next_batch(fake_connection):
    conns = _connections(fake_connection, 2, {0: {"delay": 0.02}, 1: {"delay": 0.02}})
    coordinator = UploadCoordinator("w1", conns)

    first = coordinator.dispatch(["a", "b", "c", "d"])
    second = coordinator.dispatch(["e", "f"])
    await asyncio.gather(first, second)

    assert conns[0].uploads == [["a", "b"], ["e"]]
    assert conns[1].uploads == [["c", "d"], ["f"]]
    assert all(c.max_active == 1 for c in conns)


@pytest.mark.asyncio
async def test_drain_waits_for_inflight_batches(fake_connection):
    conns = _connections(fake_connection, 2, {0: {"delay": 0.02}})
    coordinator = UploadCoordinator("w1", conns)

    task = coordinator.dispatch(["a", "b", "c"])
    await coordinator.drain()

    assert task.done()
    assert task.result().uploaded == 3


@pytest.mark.asyncio
async def test_progress_tasks_are_removed_when_done(fake_connection):
    progress = Progress(console=Console(file=io.StringIO()))
    coordinator = UploadCoordinator("w1", _connections(fake_connection, 2), progress=progress)

    await coordinator.upload_batch(["a", "b", "c"])

    assert progress.tasks == []


def test_bucket_summary():
    report = BucketReport(uploader="SFTP1", slot=0, files=["a", "b"], uploaded=2, duration_s=1.23456)
    assert report.summary() == "SFTP1: Uploaded 2 files in 1.23 seconds!"


def test_needs_connections():
    with pytest.raises(ValueError):
        UploadCoordinator("w1", [])


@pytest.mark.asyncio
async def test_each_bucket_reports_as_soon_as_it_finishes(fake_connection, caplog):
    caplog.set_level(logging.INFO, logger="devuploader.transfer")
    conns = _connections(fake_connection, 2, {1: {"delay": 0.3}})
    coordinator = UploadCoordinator("w1", conns)

    task = coordinator.dispatch(["a", "b", "c"])
    for _ in range(100):
        if any("SFTP1: Uploaded 2 files" in m for m in caplog.messages):
            break
        await asyncio.sleep(0.01)

    assert any("SFTP1: Uploaded 2 files" in m for m in caplog.messages)
    assert not any("SFTP2" in m for m in caplog.messages)
    assert not task.done()
    report = await task
    assert report.ok
    assert any("SFTP2: Uploaded 1 files" in m for m in caplog.messages)
