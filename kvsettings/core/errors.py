from __future__ import annotations


class SettingsError(Exception):
    """Base exception for settings failures, with an optional remediation hint."""

    def __init__(self, message: str, *, remediation: str | None = None) -> None:
        super().__init__(message)
        self.remediation = remediation or ""


class InvalidIdentifierError(SettingsError, ValueError):
    pass


class SettingsLoadError(SettingsError):
    pass


class CorruptValueError(SettingsError, ValueError):
    pass


class UnsupportedDialectError(SettingsError):
    pass


class UnsupportedValueTypeError(SettingsError, TypeError):
    pass


__all__ = [
    "SettingsError",
    "InvalidIdentifierError",
    "SettingsLoadError",
    "CorruptValueError",
    "UnsupportedDialectError",
    "UnsupportedValueTypeError",
]
