import pytest

from conftest import fast_config, make_file
from portal_uploads.core.client import PortalClient
from portal_uploads.core.exceptions import (
    TaskNotFoundError,
    UploadStateError,
    ValidationError,
)
from portal_uploads.core.models import MIB, TaskStatus, UploadContext
from portal_uploads.core.registry import UploadRegistry


@pytest.fixture
def registry(make_client, context, config):
    return UploadRegistry(make_client(), context, config)


@pytest.fixture
def big_path(tmp_path):
    return make_file(tmp_path, "lecture.mp4", 25 * MIB)


@pytest.mark.asyncio
async def test_add_starts_upload(portal, registry, big_path):
    task_id = registry.add(big_path, "Lecture")

    assert task_id in registry
    task = await registry.wait(task_id)
    assert task.status == TaskStatus.COMPLETE
    assert task.display_name == "Lecture"
    assert len(portal.ranges) == 5


@pytest.mark.asyncio
async def test_small_file_creates_no_task(portal, registry, tmp_path):
    small = make_file(tmp_path, "notes.pdf", 20 * MIB - 1)

    assert registry.add(small, "Notes") is None
    assert len(registry) == 0
    assert portal.calls == []


@pytest.mark.asyncio
async def test_threshold_is_inclusive(registry, tmp_path):
    exact = make_file(tmp_path, "exact.bin", 20 * MIB)

    assert registry.add(exact) is not None
    await registry.close()


@pytest.mark.asyncio
async def test_missing_file_is_rejected(registry, tmp_path):
    with pytest.raises(ValidationError, match="File not found"):
        registry.add(tmp_path / "nope.mp4")


@pytest.mark.asyncio
async def test_disallowed_type_is_rejected(make_client, config, big_path):
    context = UploadContext(
        assignment_id="A",
        student_email="s@example.edu",
        student_name="S",
        allowed_file_types="pdf, .zip",
    )
    registry = UploadRegistry(make_client(), context, config)

    with pytest.raises(ValidationError, match="pdf, zip"):
        registry.add(big_path)
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_concurrent_tasks_each_upload_in_order(portal, registry, tmp_path):
    first = registry.add(make_file(tmp_path, "a.bin", 25 * MIB))
    second = registry.add(make_file(tmp_path, "b.bin", 21 * MIB))

    tasks = await registry.wait_all()

    assert [t.status for t in tasks] == [TaskStatus.COMPLETE, TaskStatus.COMPLETE]
    assert [t.id for t in tasks] == [first, second]
    assert portal.count("put") == 10
    for total in (25 * MIB, 21 * MIB):
        starts = [s for s, _, t in portal.ranges if t == total]
        assert starts == sorted(starts)


@pytest.mark.asyncio
async def test_remove_while_uploading_cancels(portal, registry, big_path):
    removed = []

    def remove_after_first_chunk(task):
        if task.uploaded_bytes == 5 * MIB and task.id in registry:
            removed.append(registry.remove(task.id))

    registry.add_listener(remove_after_first_chunk)
    task_id = registry.add(big_path, "Lecture")
    await registry.wait(task_id)

    assert len(removed) == 1
    task = removed[0]
    assert task.id == task_id
    assert task.cancel_token.cancelled
    assert task.status == TaskStatus.CANCELLED
    assert task_id not in registry
    assert portal.count("put") == 1


@pytest.mark.asyncio
async def test_remove_unknown_task(registry):
    with pytest.raises(TaskNotFoundError):
        registry.remove("missing")


@pytest.mark.asyncio
async def test_submit_gate(portal, registry, big_path, tmp_path):
    gate = []
    registry.add_listener(lambda t: gate.append(registry.is_submittable()))

    registry.add(big_path, "Lecture")
    portal.chunk_failures[0] = 5
    await registry.wait_all()

    assert False in gate
    assert registry.is_submittable()


@pytest.mark.asyncio
async def test_error_task_does_not_block_submission(portal, registry, tmp_path):
    portal.chunk_failures[0] = 5
    failed = registry.add(make_file(tmp_path, "bad.bin", 25 * MIB), "Bad")
    await registry.wait_all()

    assert registry.get(failed).status == TaskStatus.ERROR
    assert registry.is_submittable()
    assert registry.submission_files() == []


@pytest.mark.asyncio
async def test_submission_files_blocked_while_uploading(registry, big_path):
    registry.add(big_path, "Lecture")
    registry.tasks()[0]._advance(1)

    with pytest.raises(UploadStateError):
        registry.submission_files()
    await registry.close()


@pytest.mark.asyncio
async def test_submission_files_need_display_names(registry, big_path):
    task_id = registry.add(big_path)
    await registry.wait_all()

    with pytest.raises(ValidationError, match="enter a name"):
        registry.submission_files()

    registry.rename(task_id, "Lecture")
    files = registry.submission_files()
    assert [(f.display_name, f.file_id, f.verified) for f in files] == [
        ("Lecture", "file-finalized", True)
    ]


@pytest.mark.asyncio
async def test_rename_rejects_blank(registry, big_path):
    task_id = registry.add(big_path, "Lecture")

    with pytest.raises(ValidationError):
        registry.rename(task_id, "   ")
    await registry.close()


@pytest.mark.asyncio
async def test_retry_failed_task(portal, registry, big_path):
    portal.chunk_failures[1] = 5
    task_id = registry.add(big_path, "Lecture")
    await registry.wait_all()
    assert registry.get(task_id).status == TaskStatus.ERROR

    new_id = registry.retry(task_id)
    task = await registry.wait(new_id)

    assert new_id != task_id
    assert task_id not in registry
    assert task.status == TaskStatus.COMPLETE
    assert task.display_name == "Lecture"
    assert portal.count(PortalClient.ACTION_INITIATE) == 2


@pytest.mark.asyncio
async def test_retry_complete_task_is_rejected(registry, big_path):
    task_id = registry.add(big_path)
    await registry.wait_all()

    with pytest.raises(UploadStateError):
        registry.retry(task_id)


@pytest.mark.asyncio
async def test_close_cancels_unfinished_tasks(portal, make_client, context, big_path):
    registry = UploadRegistry(make_client(), context, fast_config())
    task_id = registry.add(big_path)
    task = registry.get(task_id)

    await registry.close()

    assert task.status == TaskStatus.CANCELLED
    assert len(registry) == 0
    assert portal.calls == []
