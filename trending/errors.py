"""
Error taxonomy for the ranking core.

Fetch errors never reach readers: the affected token stays stale and is retried on the
next cycle. Store errors degrade reads to the last good ranking and drop writes for the
current cycle. Missing credentials fail at startup through Settings validation.
"""


class TrendingError(Exception):
    pass


class FetchError(TrendingError):
    """Transient failure talking to an external collaborator."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class TokenNotFoundError(FetchError):
    """The collaborator has no data for the token (delisted or unknown)."""

    def __init__(self, source: str, address: str):
        super().__init__(source, f"no data for {address}")
        self.address = address


class StoreUnavailableError(TrendingError):
    pass


class RecordNotFoundError(TrendingError):
    def __init__(self, address: str):
        super().__init__(f"no score record for {address}")
        self.address = address
