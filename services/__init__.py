# services/__init__.py
"""Service packages. Explicit exports only; importing has no runtime side effects."""

__all__ = ["forum"]
