"""Tests for the Supabase storage gateway.

The Supabase client is replaced by a MagicMock and downloads go through an
httpx MockTransport, so no credentials or network are needed.
"""

import re
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest

from flowbundle.core.config import Settings
from flowbundle.core.errors import DeleteFailed, FetchFailed, SigningFailed, UploadFailed
from flowbundle.storage import gateway
from flowbundle.storage.gateway import (
    StorageGateway,
    SupabaseStorage,
    _validate_path,
    build_storage_key,
    get_storage,
    unique_name,
)

SUPABASE_URL = "https://xyz.supabase.co"


def _storage() -> tuple[SupabaseStorage, MagicMock]:
    bucket = MagicMock()
    client = MagicMock()
    client.storage.from_.return_value = bucket
    return SupabaseStorage(SUPABASE_URL, "service-key", "fluxos", client=client), bucket


class TestValidatePath:
    def test_rejects_dotdot_traversal(self) -> None:
        with pytest.raises(ValueError, match="traversal"):
            _validate_path("../etc/passwd")

    def test_rejects_embedded_dotdot(self) -> None:
        with pytest.raises(ValueError, match="traversal"):
            _validate_path("fluxos/../../secrets")

    def test_rejects_null_byte(self) -> None:
        with pytest.raises(ValueError, match="null byte"):
            _validate_path("fluxos/abc\x00.html")

    def test_rejects_empty_path(self) -> None:
        with pytest.raises(ValueError, match="empty"):
            _validate_path("")

    def test_accepts_dots_inside_names(self) -> None:
        _validate_path("fluxos/RH-001/app..min_1a2b3c4d.js")
        _validate_path("fluxos/RH-001/result.v2_1a2b3c4d.json")


class TestKeys:
    def test_unique_name_keeps_extension(self) -> None:
        assert re.fullmatch(r"app_[0-9a-f]{8}\.css", unique_name("libs/css/app.css"))

    def test_unique_name_without_extension(self) -> None:
        assert re.fullmatch(r"LICENSE_[0-9a-f]{8}", unique_name("LICENSE"))

    def test_unique_name_of_dotfile(self) -> None:
        assert re.fullmatch(r"\.htaccess_[0-9a-f]{8}", unique_name(".htaccess"))

    def test_unique_names_differ(self) -> None:
        assert unique_name("a.png") != unique_name("a.png")

    def test_build_storage_key_uses_base_name_only(self) -> None:
        key = build_storage_key("fluxos-arquivos/fluxos/", "RH-001", "../../etc/page.html")
        assert re.fullmatch(r"fluxos-arquivos/fluxos/RH-001/page_[0-9a-f]{8}\.html", key)


class TestUpload:
    def test_uploads_with_content_type(self) -> None:
        storage, bucket = _storage()

        key = storage.upload(b"body", "fluxos/RH-001/a_1a2b3c4d.css", "text/css")

        assert key == "fluxos/RH-001/a_1a2b3c4d.css"
        bucket.upload.assert_called_once_with(
            "fluxos/RH-001/a_1a2b3c4d.css",
            b"body",
            file_options={"content-type": "text/css", "upsert": "false"},
        )

    def test_client_error_becomes_upload_failed(self) -> None:
        storage, bucket = _storage()
        bucket.upload.side_effect = RuntimeError("409 Duplicate")

        with pytest.raises(UploadFailed) as excinfo:
            storage.upload(b"x", "fluxos/a.css", "text/css")
        assert excinfo.value.key == "fluxos/a.css"
        assert isinstance(excinfo.value.cause, RuntimeError)

    def test_traversal_is_rejected_before_any_call(self) -> None:
        storage, bucket = _storage()
        with pytest.raises(ValueError):
            storage.upload(b"x", "../a.css", "text/css")
        bucket.upload.assert_not_called()


class TestSign:
    def test_dict_response_with_absolute_url(self) -> None:
        storage, bucket = _storage()
        bucket.create_signed_url.return_value = {
            "signedURL": f"{SUPABASE_URL}/storage/v1/object/sign/fluxos/a.css?token=tok"
        }

        assert storage.sign("a.css", 600) == f"{SUPABASE_URL}/storage/v1/object/sign/fluxos/a.css?token=tok"
        bucket.create_signed_url.assert_called_once_with("a.css", 600)

    def test_relative_signed_path_is_made_absolute(self) -> None:
        storage, bucket = _storage()
        bucket.create_signed_url.return_value = {"signedUrl": "/object/sign/fluxos/a.css?token=tok"}

        assert storage.sign("a.css") == f"{SUPABASE_URL}/storage/v1/object/sign/fluxos/a.css?token=tok"

    def test_object_response(self) -> None:
        storage, bucket = _storage()
        bucket.create_signed_url.return_value = SimpleNamespace(
            signed_url="https://cdn.test/a.css?token=tok"
        )

        assert storage.sign("a.css") == "https://cdn.test/a.css?token=tok"

    def test_missing_url_raises(self) -> None:
        storage, bucket = _storage()
        bucket.create_signed_url.return_value = {"error": "boom"}

        with pytest.raises(SigningFailed):
            storage.sign("a.css")

    def test_client_error_becomes_signing_failed(self) -> None:
        storage, bucket = _storage()
        bucket.create_signed_url.side_effect = RuntimeError("Connection refused")

        with pytest.raises(SigningFailed):
            storage.sign("a.css")


class TestDelete:
    def test_removes_object(self) -> None:
        storage, bucket = _storage()
        bucket.remove.return_value = [{"name": "a.css"}]

        storage.delete("fluxos/a.css")

        bucket.remove.assert_called_once_with(["fluxos/a.css"])

    def test_missing_object_is_success(self) -> None:
        storage, bucket = _storage()
        bucket.remove.return_value = []
        storage.delete("fluxos/a.css")

    def test_not_found_error_is_success(self) -> None:
        storage, bucket = _storage()
        error = RuntimeError("Object not found")
        bucket.remove.side_effect = error
        storage.delete("fluxos/a.css")

    def test_other_errors_raise(self) -> None:
        storage, bucket = _storage()
        bucket.remove.side_effect = RuntimeError("403 Forbidden")

        with pytest.raises(DeleteFailed):
            storage.delete("fluxos/a.css")


class TestFetch:
    @pytest.fixture
    def transport(self, monkeypatch):
        """Route the gateway's httpx.Client through a MockTransport."""
        responses: dict[str, httpx.Response] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.get(str(request.url), httpx.Response(404, text="missing"))

        real_client = httpx.Client
        monkeypatch.setattr(
            gateway.httpx,
            "Client",
            lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
        )
        return responses

    def test_returns_body(self, transport) -> None:
        url = "https://cdn.test/a.css?token=tok"
        transport[url] = httpx.Response(200, content=b"body{}")
        storage, _ = _storage()

        assert storage.fetch(url) == b"body{}"

    def test_error_status_raises(self, transport) -> None:
        storage, _ = _storage()
        with pytest.raises(FetchFailed) as excinfo:
            storage.fetch("https://cdn.test/gone.css?token=tok")
        assert excinfo.value.key == "https://cdn.test/gone.css"


class TestDependency:
    def test_get_storage_builds_supabase_gateway(self) -> None:
        settings = Settings(
            supabase_url="https://abc.supabase.co/",
            supabase_service_key="k",
            storage_bucket="bundles",
            storage_timeout_seconds=5,
        )
        storage = get_storage(settings)

        assert isinstance(storage, SupabaseStorage)
        assert isinstance(storage, StorageGateway)
        assert storage.supabase_url == "https://abc.supabase.co"
        assert storage.bucket == "bundles"
        assert storage.timeout == 5
