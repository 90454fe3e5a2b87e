"""Utility helpers shared across pipeline stages."""
