"""Exception types raised by the simplification pipeline."""


class ScoreSimplifierError(Exception):
    """Base class for all Score Simplifier errors."""


class FormatError(ScoreSimplifierError):
    """The input could not be read as a MusicXML score.

    Raised when the container cannot be decompressed, no score document is
    found inside it, or the document is not well-formed XML.
    """


class UnsupportedStructureError(ScoreSimplifierError):
    """A structural element was missing and a default was substituted.

    The parser never raises this past its own boundary; it is built so the
    recovery can be logged with a consistent message.
    """

    def __init__(self, element: str, default: object):
        self.element = element
        self.default = default
        super().__init__(f"no {element} found, using default {default!r}")


class OracleUnavailable(ScoreSimplifierError):
    """The embedding oracle timed out or failed."""
