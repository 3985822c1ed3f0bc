import os
from typing import Dict, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

DEFAULT_OTLP_ENDPOINT = "localhost:4317"


def _parse_resource_attrs(raw: Optional[str]) -> Dict[str, str]:
    attrs = {}
    for pair in (raw or "").split(","):
        pair = pair.strip()
        if pair and "=" in pair:
            k, v = pair.split("=", 1)
            attrs[k.strip()] = v.strip()
    return attrs


def build_tracer_provider(service_name: str, exporter: Optional[SpanExporter] = None) -> TracerProvider:
    """
    Tracer provider for the `expiring_map.sweep` spans. Without an explicit
    exporter the spans go to the OTLP gRPC endpoint from the environment.
    """
    resource_attrs = _parse_resource_attrs(os.getenv("OTEL_RESOURCE_ATTRIBUTES", ""))
    resource = Resource.create({"service.name": service_name, **resource_attrs})
    provider = TracerProvider(resource=resource)

    if exporter is None:
        endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", DEFAULT_OTLP_ENDPOINT)
        insecure = os.getenv("OTEL_EXPORTER_OTLP_INSECURE", "true").lower() == "true"
        exporter = OTLPSpanExporter(endpoint=endpoint, insecure=insecure)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def setup_tracing(default_service_name: str = "expiringmap", exporter: Optional[SpanExporter] = None):
    """
    Installs the global tracer provider once. Maps trace through the global
    provider, so this is optional: with no provider installed every sweep
    span is a no-op.
    """
    service_name = os.getenv("OTEL_SERVICE_NAME", default_service_name)
    trace.set_tracer_provider(build_tracer_provider(service_name, exporter))
    return trace.get_tracer(service_name)
