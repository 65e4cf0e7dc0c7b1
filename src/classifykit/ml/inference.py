"""Inference orchestration layer.

Architecture:
    FastAPI (async) -> ClassifierWorker.run -> ThreadPoolExecutor(1) -> ImageClassifier

All classifier construction and inference for one worker happens on a single
dedicated thread, so calls against the classifier's shared tensor buffers are
strictly serialized. Results come back through a future that ``run`` awaits,
resuming on the caller's event loop. There is no timeout and no cancellation
of work that has started.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING

from classifykit.ml.errors import NotReadyError
from classifykit.ml.image_classifier import ImageClassifier
from classifykit.ml.postprocessing import MAX_RESULTS

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from classifykit.ml.image_classifier import Recognition
    from classifykit.ml.model_manager import ModelManager
    from classifykit.ml.registry import ModelConfig

logger = logging.getLogger(__name__)


class ClassifierWorker:
    """Owns one classifier and the single thread that drives it."""

    def __init__(self, config: ModelConfig, manager: ModelManager, max_results: int = MAX_RESULTS) -> None:
        self._config = config
        self._manager = manager
        self._max_results = max_results
        self._classifier: ImageClassifier | None = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="classifier")
        self._closed = False
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    @property
    def config(self) -> ModelConfig:
        return self._config

    def submit(self, image: NDArray[np.uint8], rotation: int = 0) -> Future[list[Recognition]]:
        """Queue one classification on the worker thread.

        The classifier is created on first use. Construction errors
        (``ConfigurationError``, ``ResourceLoadError``) and inference errors
        are delivered through the returned future.

        Raises:
            NotReadyError: If the worker has been shut down.
        """
        with self._counter_lock:
            if self._closed:
                raise NotReadyError("Classifier worker is shut down")
            self._queue_depth += 1
            future = self._executor.submit(self._classify, image, rotation)
        # Registered outside the lock: an already-done future runs it inline.
        future.add_done_callback(self._on_done)
        return future

    async def run(self, image: NDArray[np.uint8], rotation: int = 0) -> list[Recognition]:
        """Classify on the worker thread and await the result on the running loop."""
        return await asyncio.wrap_future(self.submit(image, rotation))

    @property
    def active_count(self) -> int:
        """Number of classifications currently running (0 or 1)."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of classifications waiting for the worker thread."""
        with self._counter_lock:
            return self._queue_depth

    @property
    def is_loaded(self) -> bool:
        return self._classifier is not None

    def shutdown(self) -> None:
        """Finish queued work, then close the classifier. Idempotent."""
        with self._counter_lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=True)
        if self._classifier is not None:
            self._classifier.close()
            self._classifier = None
        logger.info("Classifier worker shut down")

    def _on_done(self, future: Future[list[Recognition]]) -> None:
        # A cancelled future never started, so _classify did not dequeue it.
        if future.cancelled():
            with self._counter_lock:
                self._queue_depth -= 1

    # -- Worker thread ------------------------------------------------------

    def _classify(self, image: NDArray[np.uint8], rotation: int) -> list[Recognition]:
        with self._counter_lock:
            self._queue_depth -= 1
            self._active_count += 1
        try:
            classifier = self._ensure_classifier()
            return classifier.recognize_image(image, rotation)
        finally:
            with self._counter_lock:
                self._active_count -= 1

    def _ensure_classifier(self) -> ImageClassifier:
        if self._classifier is None:
            try:
                self._classifier = ImageClassifier.create(self._config, self._manager, self._max_results)
            except Exception:
                logger.exception("Failed to create classifier (model=%s)", self._config.variant)
                raise
        return self._classifier
