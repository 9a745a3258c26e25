from .config import (
    NegotiationConfig,
)
from .manager import (
    NegotiationManager,
)
from .session import (
    IncomingTransferRequest,
    NegotiationFailure,
    NegotiationSession,
    Role,
)
from .state_machine import (
    NegotiationState,
    NegotiationStateMachine,
)

__all__ = [
    "IncomingTransferRequest",
    "NegotiationConfig",
    "NegotiationFailure",
    "NegotiationManager",
    "NegotiationSession",
    "NegotiationState",
    "NegotiationStateMachine",
    "Role",
]
