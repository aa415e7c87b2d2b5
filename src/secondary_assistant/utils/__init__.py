"""Logging, file and text transform helpers."""
