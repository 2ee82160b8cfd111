"""Foresight: local edit-prediction engine."""

__version__ = "0.1.0"
