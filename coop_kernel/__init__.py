"""
Coop Kernel - shared infrastructure for the import pipeline.

Provides:
- Declarative ORM base and engine/session management
- Structured JSON logging with request/job scoped context
- Typed exception hierarchy with machine-readable codes
- Injectable clock
- Entity store models (users, loans, contributions) targeted by imports
"""

__version__ = "0.1.0"
