"""LiqLearns progression and rewards service."""

__version__ = "0.1.0"
