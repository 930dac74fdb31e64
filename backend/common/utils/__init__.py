"""Common utility functions."""

from .geo import calculate_distance

__all__ = [
    "calculate_distance",
]
