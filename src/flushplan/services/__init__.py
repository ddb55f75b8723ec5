"""
flushplan.services

Service layer.

Responsibilities:
- Own connection scope and wire the persistence pipeline for callers.
"""

# Package marker; import `EntityManager` from `services.entity_manager` or the package root.
