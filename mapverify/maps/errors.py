"""Source map error taxonomy."""


class MapError(Exception):
    """Base class for source map processing errors."""
    pass


class FormatError(MapError):
    """Malformed map document or version mismatch."""
    pass


class EncodingError(MapError):
    """Bad base64, percent-escape or VLQ digit."""
    pass


class MissingContentError(MapError):
    """Original source text could not be resolved through any channel."""

    def __init__(self, source: str):
        super().__init__(f"No content available for source {source!r}")
        self.source = source


class BrokenChainError(MapError):
    """A required inner map is absent or cannot be decoded."""
    pass


class CycleError(MapError):
    """A source transitively resolves to itself."""

    def __init__(self, chain):
        self.chain = list(chain)
        super().__init__("Source map chain cycle: " + " -> ".join(self.chain))
