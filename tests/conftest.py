"""Shared fixtures: a scripted fake of the portal endpoint and upload session."""

import json
from collections import Counter
from pathlib import Path
from typing import Dict, List, Tuple
from urllib.parse import parse_qs

import httpx
import pytest

from portal_uploads.core.client import PortalClient
from portal_uploads.core.models import (
    MIB,
    RetrySettings,
    UploadContext,
    UploaderConfig,
)

API_URL = "https://portal.test/macros/exec"
SESSION_URL = "https://upload.test/resumable/session-1"


class FakePortal:
    """In-memory stand-in for the scripting endpoint and the session URL.

    Failures are scripted up front:
      * ``chunk_failures[index]`` - how many times chunk ``index`` fails
      * ``chunk_status[index]`` - HTTP status returned instead of failing
      * ``initiate_error`` - error message returned by initiate
      * ``finalize_failures`` - how many finalize calls fail before one works
      * ``recover_result`` - "ok", "missing" or "error"
      * ``before_put`` - callback run with the chunk index as each PUT arrives
    """

    def __init__(self, chunk_size: int) -> None:
        self.chunk_size = chunk_size
        self.calls: List[str] = []
        self.ranges: List[Tuple[int, int, int]] = []
        self.put_attempts: Counter = Counter()
        self.requests: List[Dict] = []

        self.chunk_failures: Dict[int, int] = {}
        self.chunk_status: Dict[int, int] = {}
        self.initiate_error = None
        self.finalize_failures = 0
        self.recover_result = "ok"
        self.before_put = None

    def count(self, call: str) -> int:
        return self.calls.count(call)

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "PUT":
            return self._put(request)
        return self._post(request)

    def _put(self, request: httpx.Request) -> httpx.Response:
        unit, _, spec = request.headers["Content-Range"].partition(" ")
        assert unit == "bytes"
        byte_range, _, total = spec.partition("/")
        start, _, end = byte_range.partition("-")
        start, end, total = int(start), int(end), int(total)
        index = start // self.chunk_size

        if self.before_put is not None:
            self.before_put(index)
        self.calls.append("put")
        self.put_attempts[index] += 1
        assert len(request.content) == end - start + 1

        if self.chunk_failures.get(index, 0) > 0:
            self.chunk_failures[index] -= 1
            raise httpx.ConnectError("connection reset by peer", request=request)
        if index in self.chunk_status:
            return httpx.Response(self.chunk_status[index], text="session expired")

        self.ranges.append((start, end, total))
        if end + 1 == total:
            return httpx.Response(200, json={"id": "drive-object"})
        return httpx.Response(308)

    def _post(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        action = form["action"]
        params = json.loads(form["params"])
        self.calls.append(action)
        self.requests.append({"action": action, "email": form.get("studentEmail"), **params})

        if action == PortalClient.ACTION_INITIATE:
            if self.initiate_error:
                return httpx.Response(200, json={"success": False, "error": self.initiate_error})
            return httpx.Response(200, json={"success": True, "data": {"uploadUrl": SESSION_URL}})

        if action == PortalClient.ACTION_FINALIZE:
            if self.finalize_failures > 0:
                self.finalize_failures -= 1
                return httpx.Response(502, text="Bad gateway")
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {
                        "fileId": "file-finalized",
                        "fileUrl": "https://drive.test/file-finalized",
                        "fileName": "finalized.bin",
                        "mimeType": "application/octet-stream",
                    },
                },
            )

        if action == PortalClient.ACTION_RECOVER:
            if self.recover_result == "error":
                return httpx.Response(503, text="Service unavailable")
            if self.recover_result == "missing":
                return httpx.Response(200, json={"success": False, "error": "File not found"})
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {
                        "fileId": "file-recovered",
                        "fileUrl": "https://drive.test/file-recovered",
                        "fileName": params["fileName"],
                        "mimeType": "application/octet-stream",
                    },
                },
            )

        return httpx.Response(200, json={"success": False, "error": f"Unknown action {action}"})


def fast_config(**overrides) -> UploaderConfig:
    """Default sizes with zero-delay retries."""
    values = dict(
        chunk_retry=RetrySettings(max_attempts=5, base_delay=0),
        finalize_retry=RetrySettings(max_attempts=3, base_delay=0),
    )
    values.update(overrides)
    return UploaderConfig(**values)


def make_file(directory: Path, name: str, size: int) -> Path:
    """Create a sparse file of ``size`` bytes."""
    path = directory / name
    with open(path, "wb") as f:
        f.truncate(size)
    return path


@pytest.fixture
def portal():
    return FakePortal(chunk_size=5 * MIB)


@pytest.fixture
def make_client(portal):
    """Factory for a client wired to the fake portal."""

    def _make() -> PortalClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(portal.handler))
        return PortalClient(API_URL, "student@example.edu", http=http)

    return _make


@pytest.fixture
def context():
    return UploadContext(
        assignment_id="ASG-1",
        student_email="student@example.edu",
        student_name="Asha Rao",
    )


@pytest.fixture
def config():
    return fast_config()
