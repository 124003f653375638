"""Usage anomaly service exceptions."""


class UsageAnomalyError(Exception):
    """Base class for all service errors."""


class DetectionAlreadyRunning(UsageAnomalyError):
    """Raised when a detection run overlaps another run in this process."""

    def __init__(self) -> None:
        super().__init__("A detection run is already in progress")


class StoreError(UsageAnomalyError):
    """Raised when the persistent store fails to read or write."""
