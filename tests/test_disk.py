from types import SimpleNamespace

import httpx
import pytest

from reportbot.disk import YandexDisk
from reportbot.errors import AuthenticationMissingError, DiskError, DiskUnavailableError
from reportbot.events import EventManager
from reportbot.state import StateManager

UPLOAD_HREF = "https://uploader.test/upload/abc"


def token_source(token="test-token"):
    return SimpleNamespace(get_token=lambda user_id: token)


def make_disk(handler, token="test-token"):
    return YandexDisk(token_source(token), timeout=5, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_list_files_keeps_only_files_and_sends_token():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"_embedded": {"items": [
            {"name": "1-1.jpg", "type": "file"},
            {"name": "sub", "type": "dir"},
            {"name": "1-2.jpg", "type": "file"},
        ]}})

    disk = make_disk(handler)
    assert await disk.list_files(1, "/Base/week/МП") == ["1-1.jpg", "1-2.jpg"]
    assert seen["auth"] == "OAuth test-token"
    assert seen["params"] == {"path": "/Base/week/МП", "limit": "1000"}


@pytest.mark.asyncio
async def test_list_files_of_missing_folder_is_empty():
    disk = make_disk(lambda request: httpx.Response(404, json={"error": "DiskNotFoundError"}))
    assert await disk.list_files(1, "/nope") == []


@pytest.mark.asyncio
async def test_list_files_server_error_raises():
    disk = make_disk(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(DiskError) as excinfo:
        await disk.list_files(1, "/Base")
    assert excinfo.value.status == 500


@pytest.mark.asyncio
async def test_missing_token_raises_before_any_request():
    calls = []
    disk = make_disk(lambda request: calls.append(request) or httpx.Response(200, json={}), token=None)
    with pytest.raises(AuthenticationMissingError):
        await disk.list_files(1, "/Base")
    assert calls == []


@pytest.mark.asyncio
async def test_timeout_is_retried_once():
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, json={"_embedded": {"items": []}})

    disk = make_disk(handler)
    assert await disk.list_files(1, "/Base") == []
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_second_timeout_means_unavailable():
    def handler(request):
        raise httpx.ConnectTimeout("slow", request=request)

    disk = make_disk(handler)
    with pytest.raises(DiskUnavailableError):
        await disk.list_files(1, "/Base")


@pytest.mark.asyncio
async def test_ensure_path_creates_each_segment_and_accepts_conflict():
    created = []

    def handler(request):
        path = request.url.params["path"]
        created.append(path)
        if path == "/Base":
            return httpx.Response(409, json={"error": "DiskPathPointsToExistentDirectoryError"})
        return httpx.Response(201, json={"href": "x"})

    disk = make_disk(handler)
    await disk.ensure_path(1, "/Base/week/МП")
    assert created == ["/Base", "/Base/week", "/Base/week/МП"]


@pytest.mark.asyncio
async def test_upload_file_puts_bytes_to_upload_link(tmp_path):
    local = tmp_path / "photo.jpg"
    local.write_bytes(b"jpeg-bytes")
    uploaded = {}

    def handler(request):
        if str(request.url).startswith(UPLOAD_HREF):
            uploaded["body"] = request.content
            return httpx.Response(201)
        if request.url.path.endswith("/resources/upload"):
            assert request.url.params["overwrite"] == "true"
            uploaded["path"] = request.url.params["path"]
            return httpx.Response(200, json={"href": UPLOAD_HREF, "method": "PUT"})
        return httpx.Response(201, json={})

    disk = make_disk(handler)
    assert await disk.upload_file(1, str(local), "/Base/week/МП/3-1.jpg") is True
    assert uploaded == {"path": "/Base/week/МП/3-1.jpg", "body": b"jpeg-bytes"}


@pytest.mark.asyncio
async def test_upload_failure_returns_false(tmp_path):
    local = tmp_path / "photo.jpg"
    local.write_bytes(b"x")

    def handler(request):
        if str(request.url).startswith(UPLOAD_HREF):
            return httpx.Response(507, text="Insufficient Storage")
        if request.url.path.endswith("/resources/upload"):
            return httpx.Response(200, json={"href": UPLOAD_HREF})
        return httpx.Response(201, json={})

    disk = make_disk(handler)
    assert await disk.upload_file(1, str(local), "/Base/3-1.jpg") is False


@pytest.mark.asyncio
async def test_upload_without_token_raises(tmp_path):
    disk = make_disk(lambda request: httpx.Response(201, json={}), token=None)
    with pytest.raises(AuthenticationMissingError):
        await disk.upload_file(1, str(tmp_path / "photo.jpg"), "/Base/3-1.jpg")


@pytest.mark.asyncio
async def test_check_connection_reports_free_space():
    gb = 1024 ** 3

    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json={"total_space": 10 * gb, "used_space": 3 * gb})
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(201, json={})

    disk = make_disk(handler)
    assert await disk.check_connection(1, "/Base") == 7
    await disk.close()


@pytest.mark.asyncio
async def test_non_json_reply_is_unavailable():
    disk = make_disk(lambda request: httpx.Response(200, text="<html>proxy</html>"))
    with pytest.raises(DiskUnavailableError):
        await disk.list_files(1, "/Base")


@pytest.mark.asyncio
async def test_request_errors_are_unavailable():
    def handler(request):
        raise httpx.DecodingError("bad gzip", request=request)

    disk = make_disk(handler)
    with pytest.raises(DiskUnavailableError):
        await disk.list_files(1, "/Base")


@pytest.mark.asyncio
async def test_start_falls_back_to_counter_behind_html_proxy():
    disk = make_disk(lambda request: httpx.Response(200, text="<html>proxy</html>"))
    events = EventManager(disk, StateManager())
    assert await events.assign_number_for_start(1, "mp", "/Base/week/МП") == 1
    assert await events.assign_number_for_start(1, "mp", "/Base/week/МП") == 2
