"""
Configuration for the drop client.
"""

from dataclasses import (
    dataclass,
    field,
)

from peerdrop.exceptions import (
    ValidationError,
)
from peerdrop.negotiation.config import (
    NegotiationConfig,
)
from peerdrop.transfer.config import (
    TransferConfig,
)

DEFAULT_RELAY_URL = "ws://127.0.0.1:3000"


@dataclass
class ClientConfig:
    relay_url: str = DEFAULT_RELAY_URL
    negotiation: NegotiationConfig = field(default_factory=NegotiationConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)

    def validate(self) -> None:
        if not self.relay_url.startswith(("ws://", "wss://")):
            raise ValidationError(
                f"relay_url must be a ws:// or wss:// URL, got {self.relay_url!r}"
            )
        self.negotiation.validate()
        self.transfer.validate()
