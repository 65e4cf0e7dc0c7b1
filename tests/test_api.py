"""Tests for the ClassifyKit HTTP API."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING
from unittest.mock import patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

import httpx
import pytest
from conftest import FakeSession, png_bytes
from fastapi import FastAPI, status

from classifykit.config import get_settings
from classifykit.main import create_app
from classifykit.ml.inference import ClassifierWorker
from classifykit.ml.model_manager import OnnxModelManager


def _init_app_state(app: FastAPI, models_dir: Path, **env_overrides: str) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan)."""
    env = {"CLASSIFYKIT_MODELS_DIR": str(models_dir), "CLASSIFYKIT_MODEL": "quantized_hotdog", **env_overrides}
    with patch.dict(os.environ, env):
        settings = get_settings()
    app.state.settings = settings
    app.state.classifier_worker = ClassifierWorker(
        settings.model_config_for(),
        OnnxModelManager(settings),
        max_results=settings.max_results,
    )


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    worker: ClassifierWorker = app.state.classifier_worker
    worker.shutdown()


@pytest.fixture()
def app(models_dir: Path, fake_session: FakeSession) -> FastAPI:
    """Create a fresh app instance with default settings."""
    application = create_app()
    _init_app_state(application, models_dir)
    return application


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client for testing the app."""
    async for ac in _make_client(app):
        yield ac


def _upload(data: bytes) -> dict[str, tuple[str, bytes, str]]:
    return {"file": ("test.png", data, "image/png")}


class TestHealthEndpoint:
    async def test_health_returns_ok(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "ok"
        assert data["device"] == "cpu"
        assert data["model"] == "quantized_hotdog"
        assert data["model_loaded"] is False
        assert isinstance(data["concurrent_requests"], int)
        assert isinstance(data["queue_depth"], int)

    async def test_health_reports_loaded_after_classify(self, client: httpx.AsyncClient) -> None:
        await client.post("/api/v1/classify-image", files=_upload(png_bytes(224, 224)))
        response = await client.get("/api/v1/health")
        assert response.json()["model_loaded"] is True


class TestClassifyImageEndpoint:
    async def test_black_image_returns_three_ranked_results(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/classify-image", files=_upload(png_bytes(224, 224)))

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["model"] == "quantized_hotdog"
        recognitions = data["recognitions"]
        assert len(recognitions) == 3
        assert [r["title"] for r in recognitions] == ["taco", "hotdog", "pizza"]
        assert [r["id"] for r in recognitions] == ["taco", "hotdog", "pizza"]
        confidences = [r["confidence"] for r in recognitions]
        assert confidences == sorted(confidences, reverse=True)
        assert all(0.0 <= c <= 1.0 for c in confidences)
        assert recognitions[0]["location"] is None

    async def test_rotation_form_field(self, client: httpx.AsyncClient, fake_session: FakeSession) -> None:
        response = await client.post(
            "/api/v1/classify-image",
            files=_upload(png_bytes(320, 240)),
            data={"rotation": "180"},
        )
        assert response.status_code == status.HTTP_200_OK
        assert len(fake_session.feeds) == 1

    async def test_bad_rotation_returns_400(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/classify-image",
            files=_upload(png_bytes(10, 10)),
            data={"rotation": "45"},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_undecodable_image_returns_400(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/classify-image", files=_upload(b"fake image data"))
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "decode" in response.json()["detail"].lower()

    async def test_truncated_image_returns_400(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/classify-image", files=_upload(png_bytes(64, 64, (200, 10, 10))[:45]))
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "decode" in response.json()["detail"].lower()

    async def test_gpu_with_quantized_model_returns_409(self, models_dir: Path, fake_session: FakeSession) -> None:
        gpu_app = create_app()
        _init_app_state(gpu_app, models_dir, CLASSIFYKIT_DEVICE="gpu")
        async for ac in _make_client(gpu_app):
            response = await ac.post("/api/v1/classify-image", files=_upload(png_bytes(224, 224)))
            assert response.status_code == status.HTTP_409_CONFLICT
            assert "GPU" in response.json()["detail"]
        assert fake_session.feeds == []

    async def test_missing_model_returns_503(self, tmp_path: Path, fake_session: FakeSession) -> None:
        empty_app = create_app()
        _init_app_state(empty_app, tmp_path / "empty")
        with patch("classifykit.ml.model_manager.hf_hub_download", side_effect=OSError("offline")):
            async for ac in _make_client(empty_app):
                response = await ac.post("/api/v1/classify-image", files=_upload(png_bytes(224, 224)))
                assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE

    async def test_engine_failure_returns_500(self, client: httpx.AsyncClient, fake_session: FakeSession) -> None:
        fake_session.error = RuntimeError("kernel crashed")
        response = await client.post("/api/v1/classify-image", files=_upload(png_bytes(224, 224)))
        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR


class TestModelsEndpoint:
    async def test_models_returns_every_variant(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/models")
        assert response.status_code == status.HTTP_200_OK
        models = response.json()["models"]
        assert len(models) == 5

    async def test_configured_model_is_active(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/models")
        models = response.json()["models"]
        active_names = {m["name"] for m in models if m["status"] == "active"}
        assert active_names == {"quantized_hotdog"}

    async def test_quantized_models_unsupported_on_gpu(self, models_dir: Path, fake_session: FakeSession) -> None:
        app = create_app()
        _init_app_state(app, models_dir, CLASSIFYKIT_DEVICE="gpu", CLASSIFYKIT_MODEL="float_mobilenet")
        async for ac in _make_client(app):
            response = await ac.get("/api/v1/models")
            models = {m["name"]: m for m in response.json()["models"]}
            assert models["float_mobilenet"]["status"] == "active"
            assert models["float_efficientnet"]["status"] == "available"
            assert models["quantized_mobilenet"]["status"] == "unsupported"
            assert models["quantized_mobilenet"]["quantized"] is True


class TestAuthentication:
    async def test_no_auth_required_by_default(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK

    async def test_auth_required_when_api_key_set(self, models_dir: Path, fake_session: FakeSession) -> None:
        app = create_app()
        _init_app_state(app, models_dir, CLASSIFYKIT_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get("/api/v1/health")
            assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_auth_passes_with_bearer_token(self, models_dir: Path, fake_session: FakeSession) -> None:
        app = create_app()
        _init_app_state(app, models_dir, CLASSIFYKIT_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get(
                "/api/v1/health",
                headers={"Authorization": "Bearer test-secret-key"},
            )
            assert response.status_code == status.HTTP_200_OK

    async def test_auth_passes_with_api_key_header(self, models_dir: Path, fake_session: FakeSession) -> None:
        app = create_app()
        _init_app_state(app, models_dir, CLASSIFYKIT_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get("/api/v1/health", headers={"X-API-Key": "test-secret-key"})
            assert response.status_code == status.HTTP_200_OK

    async def test_auth_fails_with_wrong_key(self, models_dir: Path, fake_session: FakeSession) -> None:
        app = create_app()
        _init_app_state(app, models_dir, CLASSIFYKIT_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get(
                "/api/v1/health",
                headers={"Authorization": "Bearer wrong-key"},
            )
            assert response.status_code == status.HTTP_401_UNAUTHORIZED
