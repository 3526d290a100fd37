class ConfigurationError(Exception):
    """Provider credentials or other required settings are missing."""


class ProviderError(Exception):
    """Allpay answered with an error status or an unusable body."""

    def __init__(self, message: str, status_code: int = 502, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class InvalidPayloadError(ValueError):
    pass
