"""
flushplan.persistence

Unit-of-work pipeline: build Subjects, compute changes, order them, execute them.

Responsibilities:
- Keep the planning stages free of any database driver.
- Expose the collaborator protocols the SQLAlchemy layer implements.
"""

# Package marker; import from submodules directly.
