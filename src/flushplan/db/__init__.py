"""
flushplan.db

SQLAlchemy-backed collaborators for the persistence pipeline.

Responsibilities:
- Engine creation, schema building and dev/test table creation.
- The async Core query runner and the snapshot loader built on it.
"""

# Package marker; import from submodules directly.


# --- Module Notes -----------------------------------------------------------
# Nothing in `flushplan.persistence` imports this package; it only talks to the protocols.
