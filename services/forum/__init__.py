# services/forum/__init__.py
"""forum service package: posts, replies, votes and live updates."""
