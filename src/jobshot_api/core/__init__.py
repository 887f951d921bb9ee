"""Core modules for configuration and telemetry."""

from jobshot_api.core.config import Settings, get_settings
from jobshot_api.core.telemetry import cluster_span, get_tracer, setup_telemetry

__all__ = ["Settings", "cluster_span", "get_settings", "get_tracer", "setup_telemetry"]
