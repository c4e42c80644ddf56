"""Error taxonomy shared by the provider gateway and the pipeline stages."""


class SearchSynthError(Exception):
    """Base exception for pipeline errors."""

    pass


class ConfigurationError(SearchSynthError):
    """Raised when a required credential or setting is missing."""

    pass


class TransportError(SearchSynthError):
    """Raised when a network call fails before a usable response arrives."""

    pass


class ProviderError(SearchSynthError):
    """Raised on non-2xx responses, malformed payloads or provider timeouts."""

    pass


class CancellationError(SearchSynthError):
    """Raised when the turn's cancellation token has been set.

    Never swallowed and never triggers a fallback provider.
    """

    def __init__(self, message: str = "Generation cancelled"):
        super().__init__(message)


# Errors after which a designated fallback provider is attempted.
FALLBACK_ERRORS = (TransportError, ProviderError)
