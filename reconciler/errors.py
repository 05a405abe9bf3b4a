class ParseError(ValueError):
    """Uploaded bytes could not be decoded as the declared file kind."""


class UnsupportedFileTypeError(ValueError):
    pass


class StoreUnavailableError(RuntimeError):
    """A booking lookup or write failed against the booking store."""


class ReportNotFoundError(LookupError):
    pass


class ReportStateError(RuntimeError):
    """The report is not in a state that allows the requested transition."""
