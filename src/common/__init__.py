"""
Common utilities for tavern-save.

Modules:
- log: logging setup (JSON or plain text)
"""

__all__ = [
    "log",
]
