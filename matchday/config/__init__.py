"""Configuration for Matchday."""

from matchday.config.logs import configure_logging
from matchday.config.pipeline import PipelineConfig, get_pipeline_config
from matchday.config.settings import Settings, get_settings

__all__ = [
    "PipelineConfig",
    "Settings",
    "configure_logging",
    "get_pipeline_config",
    "get_settings",
]
