class SyncError(Exception):
    """Base class for sync engine failures."""


class FetchError(SyncError):
    """A platform call kept failing after all retries (network, timeout, 5xx, 429)."""


class SystemicSyncError(SyncError):
    """The integration itself is broken. Jobs abort immediately."""


class AuthenticationError(SystemicSyncError):
    pass


class MalformedResponseError(SystemicSyncError):
    pass


class IntegrationNotFound(SystemicSyncError):
    pass


class InvalidJobTransition(SyncError):
    def __init__(self, job_id, current, requested):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(f"Job {job_id} cannot go from {current} to {requested}.")


class ErrorThresholdExceeded(SyncError):
    """A job accumulated more errors of one kind than it may tolerate."""
