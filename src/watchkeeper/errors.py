class WatchkeeperError(Exception):
    """
    Base class for all errors raised by watchkeeper.
    """


class NotFoundError(WatchkeeperError, LookupError):
    """
    Raised when an entity id is unknown.
    """
    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} '{entity_id}' not found")
        self.kind = kind
        self.entity_id = entity_id


class ValidationError(WatchkeeperError, ValueError):
    """
    Raised when an entity or interval is rejected before scheduling.
    """


class BackupError(WatchkeeperError, IOError):
    """
    Raised when a backup cannot be produced (missing source, write failure).
    """


class ProbeFailure(WatchkeeperError):
    """
    Raised inside the probe engine for network errors and timeouts.
    Always converted to a "down" result before leaving the engine.
    """
