"""
flushplan.metadata

Static entity descriptor model (columns, relations, embeds, junction tables).

Responsibilities:
- Provide immutable metadata values built explicitly at startup.
- Resolve and validate them through `MetadataRegistry`.
"""

# Package marker; import from `metadata.model` and `metadata.registry` directly.
