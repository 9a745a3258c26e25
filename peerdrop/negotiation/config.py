"""
Configuration for connection negotiation.
"""

from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
)

from peerdrop.exceptions import (
    ValidationError,
)

DEFAULT_NEGOTIATION_TIMEOUT = 30.0  # seconds
DEFAULT_CONSENT_TIMEOUT = 60.0  # seconds
DEFAULT_CHANNEL_LABEL = "file-transfer"

# A single public STUN server; no TURN relaying
DEFAULT_ICE_SERVERS: tuple[dict[str, Any], ...] = (
    {"urls": "stun:stun.l.google.com:19302"},
)


@dataclass
class NegotiationConfig:
    """Configuration for offer/answer negotiation."""

    # Time allowed from acceptance until the channel opens. The initiator
    # counts from its offer and also allows for consent_timeout
    timeout: float = DEFAULT_NEGOTIATION_TIMEOUT
    # Time the UI has to accept an offer; None waits forever
    consent_timeout: float | None = DEFAULT_CONSENT_TIMEOUT
    channel_label: str = DEFAULT_CHANNEL_LABEL
    ice_servers: tuple[dict[str, Any], ...] = field(default=DEFAULT_ICE_SERVERS)

    def validate(self) -> None:
        if self.timeout <= 0:
            raise ValidationError(f"timeout must be positive, got {self.timeout}")
        if self.consent_timeout is not None and self.consent_timeout <= 0:
            raise ValidationError("consent_timeout must be positive or None")
        if not self.channel_label:
            raise ValidationError("channel_label must not be empty")
