"""OpenTelemetry instrumentation for labelwatch."""

import subprocess
from typing import Any

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from src.logger import get_logger

logger = get_logger(__name__)


def get_git_version() -> str:
    """Get the current git commit SHA (short).

    Returns:
        Short commit SHA (e.g., '352de11')
        Returns 'unknown' if git is not available or not in a repo.
    """
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True,
            text=True,
            check=True,
            timeout=5,
        )
        return result.stdout.strip()
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError):
        return "unknown"


_initialized = False
_tracer: trace.Tracer | None = None
_meter: metrics.Meter | None = None
_transition_counter: metrics.Counter | None = None
_poll_counter: metrics.Counter | None = None


def _setup_tracing(resource: Resource, endpoint: str) -> trace.Tracer:
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces")
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def _setup_metrics(resource: Resource, endpoint: str) -> metrics.Meter:
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=f"{endpoint}/v1/metrics"), export_interval_millis=10000
    )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))
    return metrics.get_meter(__name__)


def init_telemetry(
    endpoint: str,
    service_name: str,
    service_version: str | None = None,
) -> None:
    """Initialize OpenTelemetry tracing and metrics.

    Exports over OTLP/HTTP to {endpoint}/v1/traces and {endpoint}/v1/metrics.
    Does nothing when endpoint is empty or telemetry is already initialized.

    Args:
        endpoint: OTLP endpoint URL (e.g., http://otel-collector:4318)
        service_name: Service name for telemetry (e.g., "labelwatch")
        service_version: Optional service version, usually the git SHA
    """
    global _initialized, _tracer, _meter
    global _transition_counter, _poll_counter

    if _initialized or not endpoint:
        return

    resource_attrs = {"service.name": service_name}
    if service_version:
        resource_attrs["service.version"] = service_version
    resource = Resource.create(resource_attrs)

    _tracer = _setup_tracing(resource, endpoint)
    _meter = _setup_metrics(resource, endpoint)
    _transition_counter = _meter.create_counter(
        "label.transitions",
        unit="transitions",
        description="Attempted label transitions by repo, transition and outcome",
    )
    _poll_counter = _meter.create_counter(
        "watcher.polls",
        unit="polls",
        description="Issue poll cycles by repo and outcome",
    )

    _initialized = True
    logger.info(
        f"OpenTelemetry initialized: endpoint={endpoint}, service={service_name}, "
        f"version={service_version or 'unset'}"
    )


def _outcome(success: bool) -> str:
    return "success" if success else "failure"


def get_tracer() -> trace.Tracer:
    """Get the global tracer, or a no-op tracer if not initialized."""
    return _tracer or trace.get_tracer(__name__)


def record_transition(
    repo: str,
    transition: str,
    success: bool,
    reason: str | None = None,
) -> None:
    """Record one attempted label transition to OTel.

    Args:
        repo: Repository in 'hostname/owner/repo' format
        transition: Transition descriptor, '<from>-><to>'
        success: Whether the transition was applied
        reason: Failure reason tag (failures only)
    """
    if not _initialized or _transition_counter is None:
        return

    attributes: dict[str, Any] = {
        "repo": repo,
        "transition": transition,
        "outcome": _outcome(success),
    }
    if reason:
        attributes["reason"] = reason
    _transition_counter.add(1, attributes)


def record_poll(repo: str, success: bool) -> None:
    """Record one poll cycle to OTel."""
    if not _initialized or _poll_counter is None:
        return
    _poll_counter.add(1, {"repo": repo, "outcome": _outcome(success)})


def reset_telemetry() -> None:
    """Reset telemetry module state (for testing only)."""
    global _initialized, _tracer, _meter
    global _transition_counter, _poll_counter
    _initialized = False
    _tracer = None
    _meter = None
    _transition_counter = None
    _poll_counter = None
