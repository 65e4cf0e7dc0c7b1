"""Image classification pipeline.

An ``ImageClassifier`` owns one ONNX Runtime session together with its
execution providers, the serialized model, the label list, and the input
and output tensor buffers, which are reused across calls. It is not
thread-safe; callers must serialize access (see ``ClassifierWorker``).
"""

from __future__ import annotations

import logging
import time
import traceback
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from classifykit.ml.errors import EngineError, NotReadyError, ResourceLoadError
from classifykit.ml.postprocessing import MAX_RESULTS, dequantize, top_k
from classifykit.ml.preprocessing import ImagePreprocessor

if TYPE_CHECKING:
    from types import TracebackType

    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from classifykit.ml.model_manager import ModelManager, Provider
    from classifykit.ml.registry import ModelConfig

logger = logging.getLogger(__name__)

_ONNX_DTYPES: dict[str, type[np.generic]] = {
    "tensor(uint8)": np.uint8,
    "tensor(float)": np.float32,
    "tensor(float16)": np.float16,
}


@dataclass(frozen=True)
class BoundingBox:
    """Location of a recognized object in source image pixels."""

    left: float
    top: float
    right: float
    bottom: float

    def __str__(self) -> str:
        return f"BoundingBox({self.left}, {self.top}, {self.right}, {self.bottom})"


@dataclass(frozen=True)
class Recognition:
    """An immutable classification result.

    ``id`` is the class label, so it identifies the class, not the instance.
    ``confidence`` is in [0, 1], higher is better.
    """

    id: str
    title: str
    confidence: float
    location: BoundingBox | None = None

    def __str__(self) -> str:
        parts = [f"[{self.id}]", self.title, f"({self.confidence * 100:.1f}%)"]
        if self.location is not None:
            parts.append(str(self.location))
        return " ".join(parts)

    def formatted(self) -> str:
        """Return the display string, e.g. ``Tabby - (87.5%)``."""
        return f"{self.title[:1].upper()}{self.title[1:]} - ({self.confidence * 100:.1f}%)"


class ImageClassifier:
    """Classifies images with a single ONNX model.

    Build instances with :meth:`create`; release them with :meth:`close` or
    by using the classifier as a context manager.
    """

    def __init__(
        self,
        config: ModelConfig,
        session: InferenceSession,
        providers: list[Provider],
        model_bytes: bytes,
        labels: list[str],
        max_results: int = MAX_RESULTS,
    ) -> None:
        self._config = config
        self._session: InferenceSession | None = session
        self._providers: list[Provider] | None = providers
        self._model_bytes: bytes | None = model_bytes
        self._labels = labels
        self._max_results = max_results

        model_input = session.get_inputs()[0]
        model_output = session.get_outputs()[0]
        self._input_name: str = model_input.name

        # Input is {1, height, width, 3}, output is {1, num_classes}.
        input_shape = _static_shape(model_input.shape, "input")
        output_shape = _static_shape(model_output.shape, "output")
        if len(input_shape) != 4 or input_shape[3] != 3:
            raise ResourceLoadError(f"Unsupported input shape {input_shape}, expected (1, H, W, 3)")
        self.image_size_y = input_shape[1]
        self.image_size_x = input_shape[2]

        num_classes = int(np.prod(output_shape[1:]))
        if num_classes != len(labels):
            raise ResourceLoadError(f"Model has {num_classes} classes but {len(labels)} labels were loaded")

        input_dtype = _ONNX_DTYPES.get(model_input.type)
        if input_dtype is None:
            raise ResourceLoadError(f"Unsupported input type {model_input.type}")

        self._input_buffer: NDArray[Any] = np.zeros((1, self.image_size_y, self.image_size_x, 3), dtype=input_dtype)
        self._output_buffer: NDArray[np.float32] = np.zeros((1, num_classes), dtype=np.float32)

        spec = config.spec
        self._preprocessor = ImagePreprocessor(
            self.image_size_x,
            self.image_size_y,
            mean=spec.input_mean,
            std=spec.input_std,
        )

    @classmethod
    def create(cls, config: ModelConfig, manager: ModelManager, max_results: int = MAX_RESULTS) -> ImageClassifier:
        """Build a classifier for ``config``.

        Raises:
            ConfigurationError: If ``config`` is invalid. Nothing is loaded.
            ResourceLoadError: If the model or labels cannot be loaded.
        """
        config.validate()

        logger.debug(
            "Creating classifier (model=%s, device=%s, num_threads=%s)",
            config.variant,
            config.device,
            config.num_threads,
        )
        model_bytes = manager.load_model_bytes(config)
        labels = manager.load_labels(config)
        providers = manager.build_providers(config.device)
        session = manager.create_session(model_bytes, providers, config.num_threads)

        try:
            classifier = cls(config, session, providers, model_bytes, labels, max_results=max_results)
        except BaseException as exc:
            # The traceback keeps __init__'s frame alive, and with it the session.
            traceback.clear_frames(exc.__traceback__)
            del session, providers, model_bytes
            raise

        logger.info(
            "Created image classifier (model=%s, device=%s, input=%dx%d, classes=%d)",
            config.variant,
            config.device,
            classifier.image_size_x,
            classifier.image_size_y,
            len(labels),
        )
        return classifier

    @property
    def config(self) -> ModelConfig:
        return self._config

    @property
    def labels(self) -> list[str]:
        return list(self._labels)

    @property
    def is_closed(self) -> bool:
        return self._session is None

    def recognize_image(self, image: NDArray[np.uint8], rotation: int = 0) -> list[Recognition]:
        """Classify an image and return the top results.

        Args:
            image: HxWx3 RGB uint8 array.
            rotation: Sensor rotation in degrees, a multiple of 90.

        Returns:
            Up to ``max_results`` recognitions, highest confidence first.

        Raises:
            NotReadyError: If the classifier has been closed.
            EngineError: If the inference engine fails.
        """
        session = self._session
        if session is None:
            raise NotReadyError("Classifier is closed")

        start = time.perf_counter()
        self._preprocessor.process(image, rotation, out=self._input_buffer)
        logger.debug("Time to load the image: %.1f ms", (time.perf_counter() - start) * 1000)

        start = time.perf_counter()
        try:
            outputs = session.run(None, {self._input_name: self._input_buffer})
            np.copyto(self._output_buffer, np.reshape(outputs[0], self._output_buffer.shape), casting="unsafe")
        except Exception as exc:  # onnxruntime raises its own pybind exception types
            raise EngineError(f"Inference failed: {exc}") from exc
        logger.debug("Time to run model inference: %.1f ms", (time.perf_counter() - start) * 1000)

        spec = self._config.spec
        scores = np.clip(dequantize(self._output_buffer, spec.output_mean, spec.output_std), 0.0, 1.0)
        results = [
            Recognition(id=label, title=label, confidence=float(score))
            for _, label, score in top_k(self._labels, scores.tolist(), self._max_results)
        ]
        logger.debug("Result ready: %s", results)
        return results

    def close(self) -> None:
        """Release the session, the execution providers, then the model bytes.

        Safe to call more than once.
        """
        if self._session is None:
            return
        self._session = None
        self._providers = None
        self._model_bytes = None
        logger.info("Closed image classifier (model=%s)", self._config.variant)

    def __enter__(self) -> ImageClassifier:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def _static_shape(shape: list[Any], kind: str) -> list[int]:
    dims = [1 if index == 0 and not isinstance(dim, int) else dim for index, dim in enumerate(shape)]
    if not all(isinstance(dim, int) and dim > 0 for dim in dims):
        raise ResourceLoadError(f"Model {kind} shape {shape} has dynamic dimensions")
    return dims

