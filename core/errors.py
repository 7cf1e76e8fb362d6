EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_NEGATIVE = 3
EXIT_NOT_AUTHORIZED = 4
EXIT_NOT_FOUND = 5
EXIT_PROTOCOL = 6
EXIT_INTERRUPTED = 130


class KonduktoError(Exception):
    """Base class for every failure surfaced by the client."""

    exit_code = EXIT_ERROR

    def wrap(self, message: str) -> "KonduktoError":
        """Prefix the error message with context, keeping the error type."""
        self.args = (f"{message}: {self}",)
        return self


class ConfigError(KonduktoError):
    pass


class NetworkError(KonduktoError):
    """The HTTP exchange could not be completed."""

    exit_code = EXIT_NOT_AUTHORIZED


class EncodingError(KonduktoError):
    pass


class DecodingError(KonduktoError):
    pass


class UpstreamError(KonduktoError):
    """The server answered with an unexpected status or reported a failure."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class NotFound(KonduktoError):
    """A project, scan, scanner or scanparams record does not exist."""

    exit_code = EXIT_NOT_FOUND


class ProtocolViolation(KonduktoError):
    """The server returned a value outside the documented enumeration."""

    exit_code = EXIT_PROTOCOL


class ScanFailed(KonduktoError):
    pass


class ThresholdError(KonduktoError):
    pass


class ReleaseCriteriaError(KonduktoError):
    pass


class InvalidParams(KonduktoError):
    """Scan flags conflict, or custom parameters do not fit the scanner's schema."""


class CertificateError(NetworkError):
    """TLS verification of the server certificate failed."""
