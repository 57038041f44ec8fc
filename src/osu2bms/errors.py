from __future__ import annotations


class ConversionError(Exception):
    """Base class for everything the converter raises on purpose."""


class UnsupportedInput(ConversionError):
    """Chart is readable but cannot be converted (mode, key count, no timing / no notes)."""


class MalformedRecord(ConversionError):
    """A single event / timing point / hit object failed to parse. Skipped, never fatal."""


class FatalDecodeError(ConversionError):
    """The source could not be read, decoded or digested at all."""
