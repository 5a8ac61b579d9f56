class ConfigurationError(Exception):
    """Raised at startup when the server cannot be configured as requested."""


class AssetNotFound(Exception):
    """The requested asset does not exist below the web root."""


class AssetReadError(Exception):
    """The asset exists but could not be read."""


class HeaderTranslationError(Exception):
    """A header received from the live server is not valid HTTP field syntax."""

    def __init__(self, name: bytes, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid upstream header {name!r}: {reason}")
