"""Barbell path tracking, rep detection and rep quality scoring."""

__version__ = "1.0.0"
