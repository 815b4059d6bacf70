"""Personal fitness log: pushups, walks and AI form checks."""

__version__ = '0.1.0'
