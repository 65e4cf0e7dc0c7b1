"""Shared fixtures: a fake ONNX session and on-disk model resources."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from unittest.mock import patch

import numpy as np
import pytest
from PIL import Image

from classifykit.config import Settings
from classifykit.ml.registry import ModelVariant, get_spec

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

LABELS = ["background", "hotdog", "pizza", "taco", "burrito"]


@dataclass
class FakeNode:
    name: str
    shape: list[Any]
    type: str


@dataclass
class FakeSession:
    """Stands in for onnxruntime.InferenceSession."""

    input_shape: list[Any] = field(default_factory=lambda: [1, 224, 224, 3])
    input_type: str = "tensor(uint8)"
    output: np.ndarray = field(default_factory=lambda: np.array([[10, 200, 50, 255, 0]], dtype=np.uint8))
    error: Exception | None = None
    feeds: list[np.ndarray] = field(default_factory=list)

    def get_inputs(self) -> list[FakeNode]:
        return [FakeNode("input", self.input_shape, self.input_type)]

    def get_outputs(self) -> list[FakeNode]:
        return [FakeNode("output", list(self.output.shape), "tensor(uint8)")]

    def get_providers(self) -> list[str]:
        return ["CPUExecutionProvider"]

    def run(self, output_names: list[str] | None, feeds: dict[str, np.ndarray]) -> list[np.ndarray]:
        if self.error is not None:
            raise self.error
        self.feeds.append(feeds["input"].copy())
        return [self.output.copy()]


def write_resources(models_dir: Path, variant: ModelVariant, labels: list[str] = LABELS) -> None:
    spec = get_spec(variant)
    models_dir.mkdir(parents=True, exist_ok=True)
    (models_dir / spec.model_filename).write_bytes(b"fake-onnx-model")
    (models_dir / spec.label_filename).write_text("\n".join(labels) + "\n", encoding="utf-8")


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "model": ModelVariant.QUANTIZED_HOTDOG,
        "device": "cpu",
        "num_threads": 1,
        "max_results": 3,
        "models_dir": "/tmp/classifykit_test_models",
        "model_repo_id": "classifykit/test-models",
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def png_bytes(width: int, height: int, color: tuple[int, int, int] = (0, 0, 0)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture()
def models_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "models"
    for variant in ModelVariant:
        write_resources(directory, variant)
    return directory


@pytest.fixture()
def fake_session() -> Iterator[FakeSession]:
    session = FakeSession()
    with patch("classifykit.ml.model_manager.InferenceSession", return_value=session) as session_cls:
        session.session_cls = session_cls  # type: ignore[attr-defined]
        yield session
