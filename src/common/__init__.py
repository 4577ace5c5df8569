"""
Common utilities shared by the state store backends.

Modules:
- config: environment variable names and fallbacks for explicit options
- secret: `Secret` wrapper for sensitive values
"""

__all__ = [
    "config",
    "secret",
]
