from typing import Optional


class RosterSyncError(Exception):
    pass


class ConfigError(RosterSyncError):
    pass


class CredentialError(RosterSyncError):
    """
    The bearer token could not be obtained or refreshed. Nothing can proceed after this.
    """
    pass


class FetchError(RosterSyncError):
    """
    A read against the directory failed. Fatal to the enclosing application's roster build only.
    """

    def __init__(self, endpoint: str, cause: object, status_code: Optional[int] = None) -> None:
        self.endpoint = endpoint
        self.cause = cause
        self.status_code = status_code
        super().__init__(f"Failed to fetch {endpoint}: {cause}")


class DecodeError(FetchError):
    pass


class ResolutionError(RosterSyncError):
    pass


class DestinationLookupError(RosterSyncError):
    pass


class WriteChunkError(RosterSyncError):
    def __init__(
        self, workspace: str, classification: str, chunk_index: int, size: int, cause: object,
    ) -> None:
        self.workspace = workspace
        self.classification = classification
        self.chunk_index = chunk_index
        self.size = size
        self.cause = cause
        super().__init__(
            f"Failed to {classification} chunk {chunk_index} ({size} accounts) in [{workspace}]: {cause}",
        )


class SyncError(RosterSyncError):
    pass
