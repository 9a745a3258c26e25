"""
Session description and ICE candidate value types.

Both travel inside signaling envelopes in the JSON shape browsers produce
for ``RTCSessionDescription`` and ``RTCIceCandidate``.
"""

from collections.abc import (
    Mapping,
)
from dataclasses import (
    dataclass,
)
from typing import (
    Any,
)

from peerdrop.exceptions import (
    ValidationError,
)

SDP_TYPES = ("offer", "answer", "pranswer", "rollback")


@dataclass(frozen=True)
class SessionDescription:
    type: str
    sdp: str

    def __post_init__(self) -> None:
        if self.type not in SDP_TYPES:
            raise ValidationError(f"Unknown session description type: {self.type!r}")
        if not isinstance(self.sdp, str):
            raise ValidationError("Session description sdp must be a string")

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "sdp": self.sdp}

    @classmethod
    def from_dict(cls, data: Any) -> "SessionDescription":
        if not isinstance(data, Mapping):
            raise ValidationError(
                f"Session description must be an object, got {type(data).__name__}"
            )
        try:
            return cls(type=data["type"], sdp=data["sdp"])
        except KeyError as e:
            raise ValidationError(f"Session description missing field {e}") from e


@dataclass(frozen=True)
class IceCandidate:
    candidate: str
    sdp_mid: str | None = None
    sdp_mline_index: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidate": self.candidate,
            "sdpMid": self.sdp_mid,
            "sdpMLineIndex": self.sdp_mline_index,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "IceCandidate":
        if not isinstance(data, Mapping):
            raise ValidationError(
                f"ICE candidate must be an object, got {type(data).__name__}"
            )
        candidate = data.get("candidate")
        if not isinstance(candidate, str):
            raise ValidationError("ICE candidate is missing the candidate string")
        sdp_mline_index = data.get("sdpMLineIndex")
        if sdp_mline_index is not None and not isinstance(sdp_mline_index, int):
            raise ValidationError("sdpMLineIndex must be an integer")
        return cls(
            candidate=candidate,
            sdp_mid=data.get("sdpMid"),
            sdp_mline_index=sdp_mline_index,
        )
