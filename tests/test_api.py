"""Tests for the HTTP API."""

import io
import zipfile
from uuid import UUID, uuid4

from fastapi.testclient import TestClient
from httpx import Response

from dataset_stager.api.app import create_app
from dataset_stager.containers import AppContainer
from dataset_stager.domain.captions import CaptionRunStatus
from dataset_stager.domain.errors import CaptioningError
from dataset_stager.services.sessions import SessionManager
from dataset_stager.services.staging import StagingStore
from tests.conftest import (
    RecordingStagingStore,
    ScriptedCaptionClient,
    failing,
    make_image_bytes,
)


def _client(container: AppContainer) -> TestClient:
    return TestClient(create_app(container))


def _open_session(client: TestClient) -> str:
    response = client.post("/sessions")
    assert response.status_code == 201
    return response.json()["session_id"]


def _upload(
    client: TestClient, session_id: str, *sizes: tuple[int, int]
) -> Response:
    files = [
        ("files", (f"photo_{i}.png", make_image_bytes(w, h), "image/png"))
        for i, (w, h) in enumerate(sizes)
    ]
    return client.post(f"/sessions/{session_id}/images", files=files)


def test_health(container: AppContainer) -> None:
    response = _client(container).get("/health")

    assert response.json() == {"status": "ok"}


def test_full_flow_produces_archive(
    container: AppContainer, caption_client: ScriptedCaptionClient
) -> None:
    client = _client(container)
    session_id = _open_session(client)
    client.put(
        f"/sessions/{session_id}/metadata",
        json={"product_name": "Red Mug #1!", "trigger_word": "TOK"},
    )

    upload = _upload(client, session_id, (1000, 1000), (950, 900), (500, 500))
    assert upload.status_code == 200
    body = upload.json()
    assert body["image_count"] == 3
    assert [image["is_valid"] for image in body["added"]] == [True, True, False]
    assert [warning["name"] for warning in body["warnings"]] == ["photo_2.png"]

    caption_client.script = ["caption one", *failing(3), "caption three"]
    run = client.post(f"/sessions/{session_id}/captions").json()
    assert run["status"] == "COMPLETE"
    assert run["message"] == "2 of 3 images captioned successfully"

    captions = client.get(f"/sessions/{session_id}/captions").json()["captions"]
    override = client.put(
        f"/sessions/{session_id}/captions/{captions[2]['image_id']}",
        json={"text": "edited three"},
    )
    assert override.status_code == 200

    export = client.get(f"/sessions/{session_id}/export")
    assert export.status_code == 200
    assert export.headers["content-type"] == "application/zip"
    assert 'filename="red_mug_1__dataset.zip"' in export.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(export.content)) as archive:
        names = sorted(archive.namelist())
        assert archive.read("IMG_03.txt") == b"edited three"
    assert names == [
        "IMG_01.png",
        "IMG_01.txt",
        "IMG_02.png",
        "IMG_03.png",
        "IMG_03.txt",
    ]


def test_caption_view_reports_overrides_and_failures(
    container: AppContainer, caption_client: ScriptedCaptionClient
) -> None:
    client = _client(container)
    session_id = _open_session(client)
    _upload(client, session_id, (20, 20), (20, 20))
    caption_client.script = [*failing(3), "second"]
    client.post(f"/sessions/{session_id}/captions")
    before = client.get(f"/sessions/{session_id}/captions").json()
    ids = [item["image_id"] for item in before["captions"]]

    response = client.put(
        f"/sessions/{session_id}/captions", json={"captions": {ids[0]: "manual"}}
    )

    items = response.json()["captions"]
    assert before["status"] == "COMPLETE"
    assert before["captions"][0]["failed"] is True
    assert before["captions"][0]["caption"] is None
    assert items[0]["caption"] == "manual"
    assert items[0]["overridden"] is True
    assert items[1]["caption"] == "second"


def test_unknown_override_target_is_404(container: AppContainer) -> None:
    client = _client(container)
    session_id = _open_session(client)
    _upload(client, session_id, (20, 20))

    single = client.put(
        f"/sessions/{session_id}/captions/{uuid4()}", json={"text": "x"}
    )
    bulk = client.put(
        f"/sessions/{session_id}/captions", json={"captions": {str(uuid4()): "x"}}
    )

    assert single.status_code == 404
    assert bulk.status_code == 404


def test_delete_image_reindexes(container: AppContainer) -> None:
    client = _client(container)
    session_id = _open_session(client)
    added = _upload(client, session_id, (20, 20), (30, 30), (40, 40)).json()["added"]

    response = client.delete(f"/sessions/{session_id}/images/0")
    missing = client.delete(f"/sessions/{session_id}/images/9")

    images = response.json()["images"]
    assert [image["id"] for image in images] == [added[1]["id"], added[2]["id"]]
    assert [image["index"] for image in images] == [0, 1]
    assert missing.status_code == 404


def test_get_image_returns_png(container: AppContainer) -> None:
    client = _client(container)
    session_id = _open_session(client)
    _upload(client, session_id, (20, 20))

    response = client.get(f"/sessions/{session_id}/images/0")
    missing = client.get(f"/sessions/{session_id}/images/1")

    assert response.headers["content-type"] == "image/png"
    assert response.content.startswith(b"\x89PNG")
    assert missing.status_code == 404


def test_undecodable_upload_is_reported(container: AppContainer) -> None:
    client = _client(container)
    session_id = _open_session(client)

    response = client.post(
        f"/sessions/{session_id}/images",
        files=[("files", ("notes.txt", b"plain text", "text/plain"))],
    )

    body = response.json()
    assert body["added"] == []
    assert [failure["name"] for failure in body["failures"]] == ["notes.txt"]
    assert body["image_count"] == 0


def test_export_with_finish_closes_session(
    container: AppContainer, stores: list[StagingStore]
) -> None:
    client = _client(container)
    session_id = _open_session(client)
    _upload(client, session_id, (20, 20))

    export = client.get(f"/sessions/{session_id}/export", params={"finish": True})
    after = client.get(f"/sessions/{session_id}/batch")

    assert export.status_code == 200
    assert after.status_code == 404
    store = stores[0]
    assert isinstance(store, RecordingStagingStore)
    assert store.get_all() == {}


def test_close_session(container: AppContainer) -> None:
    client = _client(container)
    session_id = _open_session(client)

    first = client.delete(f"/sessions/{session_id}")
    second = client.delete(f"/sessions/{session_id}")

    assert first.status_code == 204
    assert second.status_code == 404


def test_caption_run_conflict(
    container: AppContainer, session_manager: SessionManager
) -> None:
    client = _client(container)
    session_id = _open_session(client)
    session = session_manager.get(UUID(session_id))
    session.caption_status = CaptionRunStatus.RUNNING

    response = client.post(f"/sessions/{session_id}/captions")

    assert response.status_code == 409


def test_mutations_conflict_while_caption_run_active(
    container: AppContainer, session_manager: SessionManager
) -> None:
    client = _client(container)
    session_id = _open_session(client)
    _upload(client, session_id, (20, 20), (20, 20))
    session = session_manager.get(UUID(session_id))
    session.caption_status = CaptionRunStatus.RUNNING

    responses = [
        client.delete(f"/sessions/{session_id}/images/0"),
        _upload(client, session_id, (20, 20)),
        client.put(
            f"/sessions/{session_id}/metadata",
            json={"product_name": "Lamp", "trigger_word": "TOK"},
        ),
        client.delete(f"/sessions/{session_id}"),
    ]

    assert [response.status_code for response in responses] == [409] * 4
    assert session.staging.load_batch().image_count == 2
    assert session.staging.load_batch().product_name == ""
    assert session_manager.get(UUID(session_id)) is session


def test_storage_failure_is_503(
    container: AppContainer, stores: list[StagingStore]
) -> None:
    client = _client(container)
    session_id = _open_session(client)
    client.get(f"/sessions/{session_id}/batch")
    store = stores[0]
    assert isinstance(store, RecordingStagingStore)
    store.fail_on_get.add("imageCount")

    response = client.get(f"/sessions/{session_id}/batch")

    assert response.status_code == 503
    assert response.json()["detail"].startswith("Staging store unavailable")


def test_caption_endpoint_success(
    container: AppContainer, caption_client: ScriptedCaptionClient
) -> None:
    caption_client.script = ["TOK on a marble counter"]

    response = _client(container).post(
        "/api/caption",
        json={"image": "ZmFrZQ==", "productName": "Mug", "triggerWord": "TOK"},
    )

    request = caption_client.requests[0]
    assert response.status_code == 200
    assert response.json() == {"result": "TOK on a marble counter"}
    assert request.image_data_url == "data:image/png;base64,ZmFrZQ=="
    assert '"TOK"' in request.prompt


def test_caption_endpoint_failure(
    container: AppContainer, caption_client: ScriptedCaptionClient
) -> None:
    caption_client.script = [CaptioningError("upstream rejected the image")]

    response = _client(container).post(
        "/api/caption",
        json={"image": "data:image/png;base64,ZmFrZQ==", "prompt": "Describe"},
    )

    assert response.status_code == 500
    assert response.json() == {"error": "upstream rejected the image"}
    assert caption_client.requests[0].prompt == "Describe"
