"""
progressor: weight progression engine with a durable job pipeline.

Decides the next working weight per (user, exercise) from logged sessions
and applies each completed session exactly once.
"""

__version__ = "0.1.0"
