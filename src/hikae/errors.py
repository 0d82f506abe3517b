"""Exception base shared by the hard (process-fatal) failure paths."""


class HikaeError(Exception):
    """Base class for errors that abort a backup before any output is written."""
