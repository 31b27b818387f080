"""Folio: proposal review workflow for collaborative academic projects."""

__version__ = "0.1.0"
