"""Shared helpers: text normalization and storage retries."""
