"""Environment-based configuration for ClassifyKit."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from classifykit.ml.registry import Device, ModelConfig, ModelVariant


class Settings(BaseSettings):
    """Application settings loaded from CLASSIFYKIT_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLASSIFYKIT_",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # Classifier
    model: ModelVariant = ModelVariant.QUANTIZED_MOBILENET
    device: Device = Device.CPU
    num_threads: int = Field(default=1, ge=1)
    max_results: int = Field(default=3, ge=1)

    # Model resources
    models_dir: str = "models"
    model_repo_id: str = "classifykit/mobile-classifiers"

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)

    def model_config_for(self) -> ModelConfig:
        """Return the pipeline configuration selected by these settings."""
        return ModelConfig(variant=self.model, device=self.device, num_threads=self.num_threads)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
