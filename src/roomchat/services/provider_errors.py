from __future__ import annotations


class ProviderError(Exception):
    """Failure in the provider layer. ``message`` is safe to show to users."""

    message = "The assistant could not generate a response"

    def __init__(self, details: str = "") -> None:
        super().__init__(details or self.message)
        self.details = details or self.message

    @property
    def code(self) -> str:
        return type(self).__name__


class ProviderCredentialMissing(ProviderError):
    message = "The assistant is not configured for this room's model"


class ProviderEmptyResponse(ProviderError):
    message = "The assistant returned an empty response"


class ProviderMalformedResponse(ProviderError):
    message = "The assistant returned a response that could not be read"


class ProviderNetworkFailure(ProviderError):
    message = "The assistant service could not be reached"
