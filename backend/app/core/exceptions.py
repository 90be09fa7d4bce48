class BandHubError(Exception):
    """Base exception for the BandHub sync backend."""

    pass


class QuotaRefusedError(BandHubError):
    """Raised when an approval or availability check refuses work."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Quota not available: {reason}")


class ExternalCallFailedError(BandHubError):
    """Raised when the YouTube Data API returns an error or is unreachable."""

    def __init__(self, operation: str, message: str, status_code: int | None = None):
        self.operation = operation
        self.status_code = status_code
        super().__init__(f"{operation} failed: {message}")


class UpsertFailedError(BandHubError):
    """Raised when a single ingested video cannot be persisted."""

    def __init__(self, youtube_id: str, message: str):
        self.youtube_id = youtube_id
        super().__init__(f"Failed to upsert video {youtube_id}: {message}")


class LedgerUnavailableError(BandHubError):
    """Raised when the shared quota counter store cannot be reached.

    Quota is unknown in that case and must never be treated as available.
    """

    pass


class EntityNotFoundError(BandHubError):
    """Raised when a band, creator, sync job or alert does not exist."""

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} with ID {entity_id} not found")


class SyncJobStateError(BandHubError):
    """Raised when a sync job is not in a state that allows the request."""

    def __init__(self, job_id: str, status: str, message: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Sync job {job_id} is {status}: {message}")
