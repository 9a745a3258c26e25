class BasePeerdropError(Exception):
    pass


class ValidationError(BasePeerdropError):
    """Raised when something does not pass a validation check."""


class ParseError(BasePeerdropError):
    pass
