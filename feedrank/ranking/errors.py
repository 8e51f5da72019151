"""Error taxonomy of the ranking pipeline."""


class FeedRankError(Exception):
    pass


class NotFoundError(FeedRankError):
    """The requested user (or other identity record) does not exist."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} {key} not found")
        self.kind = kind
        self.key = key


class UpstreamUnavailable(FeedRankError):
    """Every candidate source failed for one request."""

    def __init__(self, failed_sources: list[str]) -> None:
        super().__init__(f"all candidate sources failed: {', '.join(failed_sources)}")
        self.failed_sources = failed_sources


class PreferenceConflict(FeedRankError):
    """A versioned preference write lost the race against another writer."""
