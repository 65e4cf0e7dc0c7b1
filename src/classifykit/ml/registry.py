"""Model registry: per-variant resources and normalization constants."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from classifykit.ml.errors import ConfigurationError


class ModelVariant(StrEnum):
    QUANTIZED_EFFICIENTNET = "quantized_efficientnet"
    QUANTIZED_MOBILENET = "quantized_mobilenet"
    QUANTIZED_HOTDOG = "quantized_hotdog"
    FLOAT_EFFICIENTNET = "float_efficientnet"
    FLOAT_MOBILENET = "float_mobilenet"


class Device(StrEnum):
    CPU = "cpu"
    GPU = "gpu"
    NNAPI = "nnapi"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single classification model.

    ``input_mean``/``input_std`` normalize pixels before inference and
    ``output_mean``/``output_std`` dequantize the output probabilities.
    Float models use 0/1 on the output side so the transform is a no-op.
    """

    variant: ModelVariant
    model_filename: str
    label_filename: str
    input_mean: float
    input_std: float
    output_mean: float
    output_std: float
    quantized: bool


MODEL_REGISTRY: dict[ModelVariant, ModelSpec] = {
    ModelVariant.QUANTIZED_EFFICIENTNET: ModelSpec(
        variant=ModelVariant.QUANTIZED_EFFICIENTNET,
        model_filename="efficientnet-lite0-int8.onnx",
        label_filename="labels_without_background.txt",
        input_mean=0.0,
        input_std=1.0,
        output_mean=0.0,
        output_std=255.0,
        quantized=True,
    ),
    ModelVariant.QUANTIZED_MOBILENET: ModelSpec(
        variant=ModelVariant.QUANTIZED_MOBILENET,
        model_filename="mobilenet_v1_1.0_224_quant.onnx",
        label_filename="labels.txt",
        input_mean=0.0,
        input_std=1.0,
        output_mean=0.0,
        output_std=255.0,
        quantized=True,
    ),
    ModelVariant.QUANTIZED_HOTDOG: ModelSpec(
        variant=ModelVariant.QUANTIZED_HOTDOG,
        model_filename="hotdog_quant.onnx",
        label_filename="hotdog_label.txt",
        input_mean=0.0,
        input_std=1.0,
        output_mean=0.0,
        output_std=255.0,
        quantized=True,
    ),
    ModelVariant.FLOAT_EFFICIENTNET: ModelSpec(
        variant=ModelVariant.FLOAT_EFFICIENTNET,
        model_filename="efficientnet-lite0-fp32.onnx",
        label_filename="labels_without_background.txt",
        input_mean=127.0,
        input_std=128.0,
        output_mean=0.0,
        output_std=1.0,
        quantized=False,
    ),
    ModelVariant.FLOAT_MOBILENET: ModelSpec(
        variant=ModelVariant.FLOAT_MOBILENET,
        model_filename="mobilenet_v1_1.0_224.onnx",
        label_filename="labels.txt",
        input_mean=127.5,
        input_std=127.5,
        output_mean=0.0,
        output_std=1.0,
        quantized=False,
    ),
}


@dataclass(frozen=True)
class ModelConfig:
    """Immutable description of the classifier to build."""

    variant: ModelVariant
    device: Device = Device.CPU
    num_threads: int = 1

    @property
    def spec(self) -> ModelSpec:
        return get_spec(self.variant)

    def validate(self) -> None:
        """Reject configurations that cannot be built.

        Raises:
            ConfigurationError: If the GPU device is paired with a quantized
                model, or the thread count is not positive.
        """
        if self.num_threads < 1:
            raise ConfigurationError(f"num_threads must be >= 1, got {self.num_threads}")
        if self.device == Device.GPU and self.spec.quantized:
            raise ConfigurationError(f"GPU device does not support quantized model '{self.variant}'")


def get_spec(variant: ModelVariant | str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[ModelVariant(variant)]
    except (KeyError, ValueError):
        raise KeyError(f"Unknown model: {variant}") from None


def is_supported(variant: ModelVariant, device: Device) -> bool:
    """Return whether ``variant`` can run on ``device``."""
    return not (device == Device.GPU and get_spec(variant).quantized)
