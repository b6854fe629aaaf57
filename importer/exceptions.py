class ImporterError(Exception):
    """
    Base class for errors raised by the importer.
    """


class TransientApiError(ImporterError):
    """
    Raised when a request to the remote API fails in a way that may succeed
    later: network errors, 5xx responses and any other unexpected non-2xx
    status. Item tasks recover from it by retrying with backoff.
    """


class RateLimitExceeded(TransientApiError):
    """
    Raised when a call keeps receiving 429 responses after the coordinated
    sleeps allowed for a single call. Locally predicted limits never raise;
    they sleep instead.
    """

    def __init__(self, message, retry_after=None):
        super().__init__(message)
        self.retry_after = retry_after


class PermanentTaskFailure(ImporterError):
    """
    Recorded when an item task has used its whole attempt budget. The item is
    terminal but the run carries on.
    """


class StoreUnavailable(ImporterError):
    """
    Raised when the shared rate-limit store cannot be reached. Coordination
    fails closed: the attempt is aborted rather than sent unthrottled.
    """
