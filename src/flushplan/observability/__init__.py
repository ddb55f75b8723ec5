"""
flushplan.observability

Observability package.

Responsibilities:
- Structured logging configuration.
- Batch-scoped context propagation for consistent log enrichment.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Metrics/tracing exporters can be added here without touching the persistence pipeline.
