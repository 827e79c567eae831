"""exceptions.py – errors raised at the I/O and settings boundary.

The reconciliation engine itself never raises for malformed pole data; it
returns empty results or status values instead.
"""


class SpidaQCError(Exception):
    """Base class for errors surfaced to the command line."""


class InputFileError(SpidaQCError):
    """An input file is missing, unreadable, or not valid JSON."""


class SettingsError(SpidaQCError):
    """A settings file is malformed or names an unknown setting."""
