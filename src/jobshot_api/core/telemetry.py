"""OpenTelemetry tracing for submissions and preflight checks.

Cluster-facing work is traced with ``cluster_span``, which names spans and
sets the namespace, credential mode and job attributes consistently so the
preflight and its submission can be correlated in a trace backend.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from jobshot_api import __version__
from jobshot_api.core.config import Settings

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Span names
SPAN_PREFLIGHT = "preflight.probe"
SPAN_RUN_JOB = "jobs.run"

# Span attributes
ATTR_NAMESPACE = "k8s.namespace"
ATTR_CREDENTIAL_MODE = "k8s.credential_mode"
ATTR_JOB_NAME = "jobshot.job_name"
ATTR_PREFLIGHT_OK = "preflight.ok"
ATTR_PREFLIGHT_METHOD = "preflight.method"

# Kubernetes probes poll these; tracing them only adds noise
UNTRACED_URLS = "health,ready,startup"


def build_resource(settings: Settings) -> Resource:
    """Resource describing this service and its cluster access policy."""
    return Resource.create(
        {
            "service.name": settings.otel_service_name,
            "service.version": __version__,
            "deployment.environment": settings.environment,
            "jobshot.namespace_policy": settings.namespace_policy,
            "jobshot.endpoint_order": settings.endpoint_order,
            "jobshot.min_kubernetes_version": settings.min_kubernetes_version or "",
        }
    )


def setup_telemetry(app: "FastAPI", settings: Settings) -> None:
    """Configure OpenTelemetry tracing for the application.

    Args:
        app: FastAPI application instance
        settings: Application settings
    """
    if not settings.otel_enabled:
        logger.info("OpenTelemetry disabled")
        return

    provider = TracerProvider(resource=build_resource(settings))

    if settings.environment == "development":
        if settings.debug:
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    else:
        try:
            otlp_exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_endpoint)
            provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        except Exception as e:
            logger.warning(f"Failed to configure OTLP exporter: {e}")

    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app, excluded_urls=UNTRACED_URLS)

    logger.info(
        f"OpenTelemetry configured: service={settings.otel_service_name}, "
        f"environment={settings.environment}"
    )


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer for the given module name."""
    return trace.get_tracer(name)


@contextmanager
def cluster_span(
    name: str,
    namespace: str,
    attributes: dict[str, Any] | None = None,
    tracer: trace.Tracer | None = None,
) -> Iterator[trace.Span]:
    """Open a span for work against one namespace of the cluster.

    Args:
        name: Span name, one of the ``SPAN_*`` constants
        namespace: Target namespace, recorded as ``k8s.namespace``
        attributes: Extra span attributes; None values are skipped
        tracer: Tracer to use (defaults to this package's tracer)
    """
    active = tracer or get_tracer("jobshot_api")
    with active.start_as_current_span(name) as span:
        span.set_attribute(ATTR_NAMESPACE, namespace)
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span
