from peerdrop.exceptions import (
    BasePeerdropError,
)


class RelayError(BasePeerdropError):
    """Base exception for relay errors."""


class RegistryError(RelayError):
    """The client registry invariants were violated."""
