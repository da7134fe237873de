from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from photo_ingest.api.v1 import photos as photos_api
from photo_ingest.core.storage import get_storage
from photo_ingest.main import app
from photo_ingest.modules.photos.tiers import MB, Rendition

from conftest import FakeStorage, make_image_bytes


@pytest_asyncio.fixture
async def client(fake_storage) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_storage] = lambda: fake_storage
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def read_files(monkeypatch):
    read = []
    original = photos_api._to_photo_file

    async def tracking(upload, last_modified=None):
        read.append(upload.filename)
        return await original(upload, last_modified)

    monkeypatch.setattr(photos_api, "_to_photo_file", tracking)
    return read


def _form(account_type: str, **extra) -> dict:
    return {"account_type": account_type, "user_id": "u1", **extra}


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_upload_artist_photo(client, fake_storage, buckets):
    response = await client.post(
        "/api/v1/photos",
        data=_form("artist", album_id="tour"),
        files={"file": ("stage.jpg", make_image_bytes(1200, 800), "image/jpeg")}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["full_res_url"] != data["preview_url"]
    assert data["watermarked_url"] is None
    assert data["metadata"]["width"] == 1200
    assert "/u1/tour/" in data["thumbnail_url"]
    assert fake_storage.put_buckets() == [
        buckets[Rendition.THUMBNAIL], buckets[Rendition.FULL_RES], buckets[Rendition.PREVIEW]
    ]


@pytest.mark.asyncio
async def test_upload_photographer_with_watermark(client):
    response = await client.post(
        "/api/v1/photos",
        data=_form(
            "photographer",
            add_watermark="true",
            watermark_text="© Studio",
            watermark_position="top-left"
        ),
        files={"file": ("shoot.png", make_image_bytes(800, 600, fmt="PNG"), "image/png")}
    )

    assert response.status_code == 200
    assert response.json()["watermarked_url"].endswith("_watermarked.webp")


@pytest.mark.asyncio
async def test_oversized_general_upload_is_413(client, fake_storage):
    response = await client.post(
        "/api/v1/photos",
        data=_form("general"),
        files={"file": ("huge.jpg", b"\0" * (6 * MB), "image/jpeg")}
    )

    assert response.status_code == 413
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "File size must be less than 5MB for general accounts"
    assert fake_storage.put_calls == []


@pytest.mark.asyncio
async def test_non_image_upload_is_400(client):
    response = await client.post(
        "/api/v1/photos",
        data=_form("venue"),
        files={"file": ("notes.txt", b"hello", "text/plain")}
    )

    assert response.status_code == 400
    assert response.json()["error"] == "File must be an image"


@pytest.mark.asyncio
async def test_unknown_tier_is_rejected(client):
    response = await client.post(
        "/api/v1/photos",
        data=_form("superuser"),
        files={"file": ("a.jpg", make_image_bytes(), "image/jpeg")}
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_storage_failure_is_502(buckets):
    failing = FakeStorage(fail_buckets={buckets[Rendition.THUMBNAIL]})
    app.dependency_overrides[get_storage] = lambda: failing
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.post(
                "/api/v1/photos",
                data=_form("organizer"),
                files={"file": ("a.jpg", make_image_bytes(), "image/jpeg")}
            )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 502
    assert response.json()["error"] == "Thumbnail upload failed: bucket unavailable"


@pytest.mark.asyncio
async def test_batch_upload(client):
    response = await client.post(
        "/api/v1/photos/batch",
        data=_form("general"),
        files=[
            ("files", ("a.jpg", make_image_bytes(), "image/jpeg")),
            ("files", ("b.txt", b"not an image", "text/plain")),
            ("files", ("c.png", make_image_bytes(fmt="PNG"), "image/png")),
        ]
    )

    assert response.status_code == 200
    results = response.json()
    assert [r["success"] for r in results] == [True, False, True]
    assert results[1]["error"] == "File must be an image"
    assert results[0]["full_res_url"] == results[0]["preview_url"]


@pytest.mark.asyncio
async def test_delete_photo(client, fake_storage):
    upload = await client.post(
        "/api/v1/photos",
        data=_form("venue"),
        files={"file": ("a.jpg", make_image_bytes(), "image/jpeg")}
    )
    urls = {k: upload.json()[k] for k in ("full_res_url", "preview_url", "thumbnail_url")}
    assert len(fake_storage.objects) == 3

    response = await client.request("DELETE", "/api/v1/photos", json=urls)

    assert response.status_code == 200
    assert response.json() == {"deleted": True}
    assert fake_storage.objects == {}


@pytest.mark.asyncio
async def test_list_tiers(client):
    response = await client.get("/api/v1/photos/tiers")

    assert response.status_code == 200
    tiers = response.json()
    assert set(tiers) == {"general", "artist", "venue", "organizer", "photographer"}
    assert tiers["general"]["max_size_bytes"] == 5 * MB
    assert tiers["photographer"]["enable_watermark"] is True
    assert tiers["venue"]["max_dimensions"] == {"width": 4096, "height": 4096}


@pytest.mark.asyncio
async def test_metrics_endpoint(client):
    await client.get("/health")
    response = await client.get("/api/v1/metrics")

    assert response.status_code == 200
    assert "photo_uploads_total" in response.text
    assert "http_requests_total" in response.text


@pytest.mark.asyncio
async def test_oversized_upload_is_rejected_before_reading(client, read_files):
    response = await client.post(
        "/api/v1/photos",
        data=_form("general"),
        files={"file": ("huge.jpg", b"\0" * (6 * MB), "image/jpeg")}
    )

    assert response.status_code == 413
    assert read_files == []


@pytest.mark.asyncio
async def test_batch_reads_only_files_within_the_ceiling(client, read_files):
    response = await client.post(
        "/api/v1/photos/batch",
        data=_form("general"),
        files=[
            ("files", ("a.jpg", make_image_bytes(), "image/jpeg")),
            ("files", ("huge.jpg", b"\0" * (6 * MB), "image/jpeg")),
            ("files", ("notes.txt", b"hello", "text/plain")),
            ("files", ("c.jpg", make_image_bytes(320, 240), "image/jpeg")),
        ]
    )

    assert response.status_code == 200
    results = response.json()
    assert [r["success"] for r in results] == [True, False, False, True]
    assert results[1]["error_code"] == 413
    assert results[2]["error_code"] == 400
    assert read_files == ["a.jpg", "c.jpg"]


@pytest.mark.asyncio
async def test_http_metrics_are_labelled_by_route_template(client):
    await client.get("/api/v1/photos/tiers")
    await client.get("/storage/v1/object/public/photos-preview/u1/standalone/17_abc123_preview.webp")
    await client.get("/no/such/page-7f3a")

    text = (await client.get("/api/v1/metrics")).text

    assert 'endpoint="/api/v1/photos/tiers"' in text
    assert 'endpoint="/storage/v1/object/public"' in text
    assert 'endpoint="unmatched"' in text
    assert "17_abc123_preview" not in text
    assert "page-7f3a" not in text
