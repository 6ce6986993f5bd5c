class RoomsError(Exception):
    """Base class for room tracking failures."""


class ConfigurationError(RoomsError):
    """A collaborator is missing or malformed. Raised at construction or start."""


class StoreOperationError(RoomsError):
    """A Redis command failed. Never retried."""


class PartialBatchError(StoreOperationError):
    """One or more commands in a pipeline failed.

    Commands that succeeded in the same pipeline stay applied.
    """

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__(", ".join(str(e) for e in self.errors))


class ScanInterrupted(StoreOperationError):
    """A SCAN/SSCAN call failed part way; the partial result was dropped."""

    def __init__(self, target: str, cause: Exception):
        self.target = target
        super().__init__(f"Scan of {target} interrupted: {cause}")
