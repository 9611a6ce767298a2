import asyncio
import io
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import API_URL, FakePortal, fast_config
from portal_uploads import __version__
from portal_uploads.core.api import PortalUploadAPI
from portal_uploads.core.client import PortalClient
from portal_uploads.core.exceptions import UploadStateError
from portal_uploads.core.models import RetrySettings, UploadContext
from portal_uploads.core.registry import UploadRegistry
from portal_uploads.server.main import create_app
from portal_uploads.server.session import UploadSession

CHUNK = 1024
THRESHOLD = 4 * CHUNK


@pytest.fixture
def small_portal():
    return FakePortal(chunk_size=CHUNK)


def build_client(portal, **config_overrides):
    config = fast_config(chunk_size=CHUNK, large_file_threshold=THRESHOLD, **config_overrides)
    http = httpx.AsyncClient(transport=httpx.MockTransport(portal.handler))
    api = PortalUploadAPI(
        config=config,
        client=PortalClient(API_URL, "student@example.edu", http=http),
    )
    context = UploadContext(
        assignment_id="ASG-1",
        student_email="student@example.edu",
        student_name="Asha Rao",
        allowed_file_types="mp4,pdf,bin",
    )
    return TestClient(create_app(api=api, context=context))


@pytest.fixture
def client(small_portal):
    with build_client(small_portal) as c:
        yield c


def post_file(client, name="lecture.mp4", size=10 * CHUNK, display_name="Lecture"):
    return client.post(
        "/api/v1/uploads",
        files={"file": (name, io.BytesIO(b"x" * size), "video/mp4")},
        data={"display_name": display_name},
    )


def wait_terminal(client, task_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/v1/uploads/{task_id}").json()
        if body["status"] in ("complete", "error", "cancelled"):
            return body
        time.sleep(0.01)
    raise AssertionError(f"upload {task_id} did not finish")


def test_health_and_root(client):
    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["version"] == __version__

    assert client.get("/").json()["name"] == "Portal Uploads API"


def test_upload_completes(client, small_portal):
    response = post_file(client)

    assert response.status_code == 201
    created = response.json()
    assert created["file_name"] == "lecture.mp4"
    assert created["size"] == 10 * CHUNK

    done = wait_terminal(client, created["id"])
    assert done["status"] == "complete"
    assert done["progress_percent"] == 100
    assert done["reference"]["file_id"] == "file-finalized"
    assert small_portal.count("put") == 10
    assert client.app.state.session._spools == {}


def test_small_file_is_rejected(client, small_portal):
    response = post_file(client, size=THRESHOLD - 1)

    assert response.status_code == 422
    assert "threshold" in response.json()["detail"]
    assert small_portal.calls == []


def test_disallowed_type_is_rejected(client):
    response = post_file(client, name="virus.exe")

    assert response.status_code == 422
    assert "Invalid file type" in response.json()["detail"]


def test_list_and_submission(client):
    first = post_file(client, display_name="Lecture").json()["id"]
    second = post_file(client, name="notes.pdf", display_name="Notes").json()["id"]
    wait_terminal(client, first)
    wait_terminal(client, second)

    listing = client.get("/api/v1/uploads").json()
    assert listing["total_count"] == 2
    assert listing["submittable"] is True

    submission = client.get("/api/v1/submission").json()
    assert submission["assignment_id"] == "ASG-1"
    assert [f["display_name"] for f in submission["files"]] == ["Lecture", "Notes"]
    assert submission["unverified_count"] == 0


def test_rename(client):
    task_id = post_file(client).json()["id"]
    wait_terminal(client, task_id)

    response = client.patch(f"/api/v1/uploads/{task_id}", json={"display_name": " Final cut "})

    assert response.status_code == 200
    assert response.json()["display_name"] == "Final cut"


def test_rename_blank_is_rejected(client):
    task_id = post_file(client).json()["id"]

    response = client.patch(f"/api/v1/uploads/{task_id}", json={"display_name": "  "})

    assert response.status_code == 422


def test_unknown_task_is_404(client):
    assert client.get("/api/v1/uploads/nope").status_code == 404
    assert client.delete("/api/v1/uploads/nope").status_code == 404
    assert client.post("/api/v1/uploads/nope/retry").status_code == 404


def test_failed_upload_can_be_retried(client, small_portal):
    small_portal.chunk_failures[0] = 5
    task_id = post_file(client).json()["id"]

    failed = wait_terminal(client, task_id)
    assert failed["status"] == "error"
    assert failed["status_text"].startswith("error: ")
    assert task_id in client.app.state.session._spools

    response = client.post(f"/api/v1/uploads/{task_id}/retry")
    assert response.status_code == 201
    new_id = response.json()["id"]

    assert wait_terminal(client, new_id)["status"] == "complete"
    assert client.get(f"/api/v1/uploads/{task_id}").status_code == 404


def test_retry_of_complete_upload_conflicts(client):
    task_id = post_file(client).json()["id"]
    wait_terminal(client, task_id)

    assert client.post(f"/api/v1/uploads/{task_id}/retry").status_code == 409


def test_submission_conflicts_while_uploading_and_delete_cancels(small_portal):
    small_portal.chunk_failures[0] = 5
    slow_retry = RetrySettings(max_attempts=5, base_delay=30)

    with build_client(small_portal, chunk_retry=slow_retry) as client:
        task_id = post_file(client).json()["id"]

        deadline = time.monotonic() + 5
        while small_portal.put_attempts[0] == 0 and time.monotonic() < deadline:
            time.sleep(0.01)

        assert client.get("/api/v1/uploads").json()["submittable"] is False
        assert client.get("/api/v1/submission").status_code == 409

        response = client.delete(f"/api/v1/uploads/{task_id}")
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert client.get("/api/v1/uploads").json()["total_count"] == 0
        assert client.app.state.session._spools == {}

    assert small_portal.put_attempts[0] == 1


@pytest.mark.asyncio
async def test_rejected_retry_keeps_spool_owned(small_portal, context):
    small_portal.chunk_failures[0] = 5
    config = fast_config(
        chunk_size=CHUNK,
        large_file_threshold=THRESHOLD,
        chunk_retry=RetrySettings(max_attempts=5, base_delay=30),
    )
    http = httpx.AsyncClient(transport=httpx.MockTransport(small_portal.handler))
    registry = UploadRegistry(PortalClient(API_URL, http=http), context, config)
    session = UploadSession(registry)

    task_id = session.add_upload(io.BytesIO(b"x" * 10 * CHUNK), "lecture.mp4", "Lecture")
    spool = session._spools[task_id]

    async def first_put():
        while small_portal.put_attempts[0] == 0:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(first_put(), timeout=5)

    with pytest.raises(UploadStateError):
        session.retry(task_id)
    assert session._spools[task_id] == spool

    await session.close()

    assert not spool.exists()
    assert session._spools == {}
