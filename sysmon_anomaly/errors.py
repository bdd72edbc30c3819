"""Exception types raised outside the detection core."""


class SysmonAnomalyError(Exception):
    pass


class SchemaError(SysmonAnomalyError, ValueError):
    """A raw record cannot be turned into a typed event."""


class SourceError(SysmonAnomalyError, OSError):
    """An event source cannot be opened or read."""
