from __future__ import annotations


class ScannerError(Exception):
    """Base for every error raised inside the scanner."""


class NetworkError(ScannerError):
    """Timeout, connection failure or non-2xx status from a remote source."""


class DecryptError(ScannerError):
    """Encrypted measurement envelope could not be turned back into text."""


class ConfigurationError(ScannerError):
    """Fatal: the run cannot start (no targets, unreadable parameter file)."""
