"""Error kinds raised by the proxy pipeline and the ingestion endpoint."""


class AnalyzerError(Exception):
    status_code = 500


class MissingTarget(AnalyzerError):
    """No ``url`` parameter was supplied to the proxy."""

    status_code = 400

    def __init__(self, message="Missing ?url="):
        super().__init__(message)


class UpstreamFailure(AnalyzerError):
    """The target origin could not be reached (network, DNS, TLS, timeout)."""


class BodyDecodeFailure(AnalyzerError):
    """A text-like response body could not be read or decoded."""


class UnparseableBody(AnalyzerError):
    """A request body could not be parsed for redaction."""


class IngestionFailure(AnalyzerError):
    """A client report could not be accepted."""
