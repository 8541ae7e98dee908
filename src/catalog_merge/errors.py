"""Fatal merge conditions.

All errors derive from :class:`ValueError` so callers that already treat bad
input as ``ValueError`` keep working.
"""

from __future__ import annotations


class MergeError(ValueError):
    """Base class for conditions that abort a whole merge run."""


class MissingTable(MergeError):
    def __init__(self, sheet: str) -> None:
        self.sheet = sheet
        super().__init__(f"Sheet not found in workbook: {sheet!r}")


class LinkingKeyNotFound(MergeError):
    def __init__(self, side: str, column: str) -> None:
        self.side = side
        self.column = column
        super().__init__(f"Linking key column {column!r} not found in {side} sheet header")


class MappingError(MergeError):
    """Malformed or incomplete field mapping."""


class WizardStateError(MergeError):
    """A wizard transition was invoked from the wrong step."""
