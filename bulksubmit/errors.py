class BulkSubmitError(RuntimeError):
    pass


class ConfigurationError(BulkSubmitError):
    pass


class InvalidArgument(BulkSubmitError):
    pass


class AlreadyProcessing(BulkSubmitError):
    pass


class SetupFailure(BulkSubmitError):
    pass


class TransportFailure(BulkSubmitError):
    def __init__(self, message: str, *, status_code: int | None = None, details: object = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class StoppedOnError(BulkSubmitError):
    """Raised when a run configured with continue_on_error=False hits its first failure.

    The partial summary of everything recorded up to and including the failing unit
    is available as ``summary``.
    """

    def __init__(self, message: str, summary) -> None:
        super().__init__(message)
        self.summary = summary
