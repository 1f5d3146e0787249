"""Configuration and prompt templates."""

from .settings import PipelineConfig, Settings, get_settings

__all__ = ["PipelineConfig", "Settings", "get_settings"]
