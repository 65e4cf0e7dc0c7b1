"""Exceptions raised by the classification pipeline."""

from __future__ import annotations


class ClassifierError(Exception):
    """Base class for classification pipeline errors."""


class ConfigurationError(ClassifierError, ValueError):
    """The requested model/device combination cannot be built."""


class ResourceLoadError(ClassifierError, OSError):
    """A model or label resource is missing, unreadable, or inconsistent."""


class NotReadyError(ClassifierError, RuntimeError):
    """Inference was requested while no classifier is available."""


class EngineError(ClassifierError, RuntimeError):
    """The inference engine failed while running the model."""
