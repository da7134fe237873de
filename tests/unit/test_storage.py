import json

import httpx
import pytest

from photo_ingest.core import storage as storage_module
from photo_ingest.core.exceptions import StorageError
from photo_ingest.core.storage import LocalStorage, StorageFactory, SupabaseStorage


class TestLocalStorage:

    @pytest.fixture
    def local(self, tmp_path):
        return LocalStorage(base_path=str(tmp_path), public_base_url="http://localhost:8000/")

    @pytest.mark.asyncio
    async def test_put_writes_under_bucket(self, local, tmp_path):
        result = await local.put("photos-preview", "u1/standalone/1_abc_preview.webp", b"data")

        assert result.ok is True
        assert (tmp_path / "photos-preview" / "u1/standalone/1_abc_preview.webp").read_bytes() == b"data"
        assert await local.exists("photos-preview", "u1/standalone/1_abc_preview.webp")

    @pytest.mark.asyncio
    async def test_put_never_overwrites(self, local, tmp_path):
        await local.put("photos-thumbnail", "a/b.webp", b"first")

        result = await local.put("photos-thumbnail", "a/b.webp", b"second")

        assert result.ok is False
        assert result.error == "The resource already exists"
        assert (tmp_path / "photos-thumbnail" / "a/b.webp").read_bytes() == b"first"

    @pytest.mark.asyncio
    async def test_traversal_is_rejected(self, local):
        result = await local.put("photos-preview", "../../etc/passwd", b"x")

        assert result.ok is False
        assert "Invalid storage path" in result.error

    @pytest.mark.asyncio
    async def test_remove_ignores_missing_objects(self, local):
        await local.put("photos-preview", "a/one.webp", b"1")

        result = await local.remove("photos-preview", ["a/one.webp", "a/never-written.webp"])

        assert result.ok is True
        assert not await local.exists("photos-preview", "a/one.webp")

    def test_public_url_layout(self, local):
        url = local.get_public_url("photos-preview", "u1/album 1/x_preview.webp")
        assert url == "http://localhost:8000/storage/v1/object/public/photos-preview/u1/album%201/x_preview.webp"

    def test_path_from_public_url_round_trips(self, local):
        url = local.get_public_url("photos-preview", "u1/album 1/x_preview.webp")

        assert local.path_from_public_url("photos-preview", url) == "u1/album 1/x_preview.webp"
        assert local.path_from_public_url("photos-thumbnail", url) is None
        assert local.path_from_public_url("photos-preview", "https://elsewhere.example/x.webp") is None


class TestSupabaseStorage:

    def _storage(self, handler) -> SupabaseStorage:
        return SupabaseStorage(
            url="https://proj.supabase.co/",
            service_key="service-key",
            transport=httpx.MockTransport(handler)
        )

    @pytest.mark.asyncio
    async def test_put_posts_object_without_upsert(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Key": "photos-preview/u1/a.webp"})

        storage = self._storage(handler)
        result = await storage.put("photos-preview", "u1/a.webp", b"bytes", "image/webp")
        await storage.aclose()

        assert result.ok is True
        (request,) = seen
        assert request.method == "POST"
        assert request.url.path == "/storage/v1/object/photos-preview/u1/a.webp"
        assert request.headers["x-upsert"] == "false"
        assert request.headers["cache-control"] == "max-age=3600"
        assert request.headers["content-type"] == "image/webp"
        assert request.headers["authorization"] == "Bearer service-key"
        assert request.content == b"bytes"

    @pytest.mark.asyncio
    async def test_put_reports_provider_message(self):
        storage = self._storage(
            lambda request: httpx.Response(400, json={"statusCode": "409", "message": "The resource already exists"})
        )

        result = await storage.put("photos-preview", "u1/a.webp", b"bytes")
        await storage.aclose()

        assert result.ok is False
        assert result.error == "The resource already exists"

    @pytest.mark.asyncio
    async def test_put_translates_transport_errors(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        storage = self._storage(handler)
        result = await storage.put("photos-preview", "u1/a.webp", b"bytes")
        await storage.aclose()

        assert result.ok is False
        assert result.error == "connection refused"

    @pytest.mark.asyncio
    async def test_remove_sends_prefixes(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        storage = self._storage(handler)
        result = await storage.remove("photos-thumbnail", ["u1/a_thumb.webp"])
        await storage.aclose()

        assert result.ok is True
        (request,) = seen
        assert request.method == "DELETE"
        assert request.url.path == "/storage/v1/object/photos-thumbnail"
        assert json.loads(request.content) == {"prefixes": ["u1/a_thumb.webp"]}

    @pytest.mark.asyncio
    async def test_remove_rejection_is_reported(self):
        storage = self._storage(lambda request: httpx.Response(403, json={"error": "Unauthorized"}))

        result = await storage.remove("photos-thumbnail", ["u1/a_thumb.webp"])
        await storage.aclose()

        assert result.ok is False
        assert result.error == "Unauthorized"

    def test_public_url(self):
        storage = self._storage(lambda request: httpx.Response(200))
        url = storage.get_public_url("photos-full-res", "u1/standalone/1_abc_full.jpg")

        assert url == "https://proj.supabase.co/storage/v1/object/public/photos-full-res/u1/standalone/1_abc_full.jpg"
        assert storage.path_from_public_url("photos-full-res", url) == "u1/standalone/1_abc_full.jpg"


class TestStorageFactory:

    @pytest.fixture(autouse=True)
    def fresh_factory(self):
        StorageFactory.reset()
        yield
        StorageFactory.reset()

    def test_local_backend_by_default(self, monkeypatch, tmp_path):
        monkeypatch.setattr(storage_module.settings, "STORAGE_BACKEND", "local")
        monkeypatch.setattr(storage_module.settings, "LOCAL_STORAGE_PATH", str(tmp_path))

        storage = StorageFactory.get_storage()

        assert isinstance(storage, LocalStorage)
        assert StorageFactory.get_storage() is storage

    def test_supabase_requires_credentials(self, monkeypatch):
        monkeypatch.setattr(storage_module.settings, "STORAGE_BACKEND", "supabase")
        monkeypatch.setattr(storage_module.settings, "SUPABASE_URL", None)
        monkeypatch.setattr(storage_module.settings, "SUPABASE_SERVICE_KEY", None)

        with pytest.raises(StorageError):
            StorageFactory.get_storage()

    def test_supabase_backend(self, monkeypatch):
        monkeypatch.setattr(storage_module.settings, "STORAGE_BACKEND", "supabase")
        monkeypatch.setattr(storage_module.settings, "SUPABASE_URL", "https://proj.supabase.co")
        monkeypatch.setattr(storage_module.settings, "SUPABASE_SERVICE_KEY", "key")

        assert isinstance(StorageFactory.get_storage(), SupabaseStorage)
