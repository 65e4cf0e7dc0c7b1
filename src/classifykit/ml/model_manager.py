"""Model manager: locate, download, and open classification models.

Resolves model and label files from the local models directory, falling
back to a HuggingFace download, and builds ONNX Runtime sessions with the
execution providers that match the requested device.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from huggingface_hub.errors import HfHubHTTPError
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from classifykit.ml.errors import ResourceLoadError
from classifykit.ml.registry import Device, ModelConfig

if TYPE_CHECKING:
    from classifykit.config import Settings

logger = logging.getLogger(__name__)

Provider = str | tuple[str, dict[str, object]]


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model resource management."""

    def ensure_downloaded(self, filename: str) -> Path:
        """Ensure a resource file is available locally and return its path."""
        ...

    def load_model_bytes(self, config: ModelConfig) -> bytes:
        """Return the serialized model for ``config``."""
        ...

    def load_labels(self, config: ModelConfig) -> list[str]:
        """Return the ordered label list for ``config``."""
        ...

    def build_providers(self, device: Device) -> list[Provider]:
        """Return the execution providers for ``device``."""
        ...

    def create_session(self, model_bytes: bytes, providers: list[Provider], num_threads: int) -> InferenceSession:
        """Create an inference session over ``model_bytes``."""
        ...


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Resolves model resources and creates ONNX inference sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, filename: str) -> Path:
        """Return the local path of ``filename``, downloading it if missing.

        Raises:
            ResourceLoadError: If the file is absent and cannot be downloaded.
        """
        local = self._models_dir / filename
        if local.is_file():
            return local

        try:
            self._models_dir.mkdir(parents=True, exist_ok=True)
            downloaded = Path(
                hf_hub_download(
                    repo_id=self._settings.model_repo_id,
                    filename=filename,
                    local_dir=str(self._models_dir),
                )
            )
        except (HfHubHTTPError, OSError) as exc:
            raise ResourceLoadError(f"Cannot load resource '{filename}': {exc}") from exc

        logger.info("Downloaded %s to %s", filename, downloaded)
        return downloaded

    def load_model_bytes(self, config: ModelConfig) -> bytes:
        """Read the serialized model for ``config``."""
        path = self.ensure_downloaded(config.spec.model_filename)
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise ResourceLoadError(f"Cannot read model '{path}': {exc}") from exc
        if not data:
            raise ResourceLoadError(f"Model file '{path}' is empty")
        return data

    def load_labels(self, config: ModelConfig) -> list[str]:
        """Read the newline-delimited label file for ``config``.

        Blank lines are skipped; the remaining order matches the model's
        output class index.
        """
        path = self.ensure_downloaded(config.spec.label_filename)
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ResourceLoadError(f"Cannot read labels '{path}': {exc}") from exc

        labels = [line.strip() for line in text.splitlines() if line.strip()]
        if not labels:
            raise ResourceLoadError(f"Label file '{path}' is empty")
        return labels

    def build_providers(self, device: Device) -> list[Provider]:
        if device == Device.GPU:
            return [
                ("CUDAExecutionProvider", {"device_id": 0}),
                "CPUExecutionProvider",
            ]
        if device == Device.NNAPI:
            return [
                ("NnapiExecutionProvider", {}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def create_session(self, model_bytes: bytes, providers: list[Provider], num_threads: int) -> InferenceSession:
        """Create a session; malformed model bytes surface as ResourceLoadError."""
        try:
            session = InferenceSession(
                model_bytes,
                sess_options=self._build_session_options(num_threads),
                providers=providers,
            )
        except Exception as exc:  # onnxruntime raises its own pybind exception types
            raise ResourceLoadError(f"Cannot load model: {exc}") from exc

        logger.info("Created session (providers=%s, threads=%s)", session.get_providers(), num_threads)
        return session

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _build_session_options(num_threads: int) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = num_threads
        opts.inter_op_num_threads = 1
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True
        return opts
