"""
Observability helpers for the Access Layer.
Ties logging, metrics, and tracing together for business events.
"""

from typing import Optional

from .logging import get_logger, set_request_id, set_wallet_context
from .metrics import MetricsCollector
from .tracing import add_span_attributes, add_span_event


class ObservabilityManager:
    """Centralized observability manager for services."""

    def __init__(self, service_name: str, metrics: MetricsCollector):
        self.service_name = service_name
        self.metrics = metrics
        self.logger = get_logger(f"{service_name}.observability")

    def trace_request(self, request_id: Optional[str] = None, wallet: Optional[str] = None):
        """Set up request context for tracing."""
        if request_id:
            set_request_id(request_id)
        if wallet:
            set_wallet_context(wallet)

        add_span_attributes(
            request_id=request_id,
            wallet=wallet
        )

    def log_business_event(self, event_type: str, **kwargs):
        """Log business event with full context."""
        self.logger.info(
            "Business event",
            event_type=event_type,
            **kwargs
        )
        self.metrics.record_business_event(event_type)
        add_span_event("business_event", event_type=event_type, **kwargs)


def get_observability_manager(service_name: str, metrics: MetricsCollector) -> ObservabilityManager:
    """Get an observability manager for a service."""
    return ObservabilityManager(service_name, metrics)
