"""
Transfer manifests.

A manifest lists the files of one batch, in send order, before any bytes
flow. Names and mime types come from the remote peer and are only fit for
display; ``sanitize_filename`` must be applied before touching a filesystem.
"""

from collections.abc import (
    Iterable,
    Iterator,
    Mapping,
    Sequence,
)
from dataclasses import (
    dataclass,
)
import mimetypes
from pathlib import (
    PurePath,
)
from typing import (
    Any,
)
import unicodedata

from .config import (
    START_MESSAGE_TYPE,
)
from .exceptions import (
    ManifestError,
)

MAX_FILENAME_LENGTH = 255
DEFAULT_FILENAME = "unnamed"

_RESERVED_CHARS = frozenset('<>:"|?*')
_WINDOWS_RESERVED_NAMES = frozenset(
    {"CON", "PRN", "AUX", "NUL"}
    | {f"COM{i}" for i in range(1, 10)}
    | {f"LPT{i}" for i in range(1, 10)}
)


def sanitize_filename(name: str, default: str = DEFAULT_FILENAME) -> str:
    """
    Turn a peer-supplied file name into a safe single path component.

    Directory parts (either separator) are dropped, control and reserved
    characters removed, leading dots stripped and the result truncated to
    ``MAX_FILENAME_LENGTH`` characters keeping the extension.

    Example:
        >>> sanitize_filename("../../etc/passwd")
        'passwd'
        >>> sanitize_filename("..")
        'unnamed'

    """
    base = name.replace("\\", "/").split("/")[-1]
    cleaned = "".join(
        ch
        for ch in base
        if ch not in _RESERVED_CHARS and unicodedata.category(ch)[0] != "C"
    )
    cleaned = cleaned.strip().lstrip(".").rstrip(". ")
    if not cleaned:
        return default

    stem, dot, suffix = cleaned.rpartition(".")
    if not dot:
        stem, suffix = cleaned, ""
    if stem.upper() in _WINDOWS_RESERVED_NAMES:
        cleaned = f"_{cleaned}"

    if len(cleaned) > MAX_FILENAME_LENGTH:
        extension = f".{suffix}" if dot and len(suffix) < 16 else ""
        cleaned = cleaned[: MAX_FILENAME_LENGTH - len(extension)] + extension
    return cleaned


@dataclass(frozen=True)
class FileEntry:
    name: str
    size: int
    mime_type: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.name, str):
            raise ManifestError(f"File name must be a string, got {self.name!r}")
        # bool is an int subclass; reject it explicitly
        if (
            not isinstance(self.size, int)
            or isinstance(self.size, bool)
            or self.size < 0
        ):
            raise ManifestError(
                f"File size must be a non-negative integer, got {self.size!r}"
            )
        if not isinstance(self.mime_type, str):
            raise ManifestError(f"Mime type must be a string, got {self.mime_type!r}")

    @property
    def safe_name(self) -> str:
        return sanitize_filename(self.name)

    def to_dict(self, include_type: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "size": self.size}
        if include_type:
            data["type"] = self.mime_type
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "FileEntry":
        if not isinstance(data, Mapping):
            raise ManifestError(
                f"Manifest entry must be an object, got {type(data).__name__}"
            )
        if "name" not in data or "size" not in data:
            raise ManifestError("Manifest entry needs both name and size")
        mime_type = data.get("type") or ""
        return cls(name=data["name"], size=data["size"], mime_type=mime_type)

    @classmethod
    def for_path(cls, path: str | PurePath, size: int) -> "FileEntry":
        path = PurePath(path)
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(name=path.name, size=size, mime_type=mime_type or "")


class TransferManifest(Sequence[FileEntry]):
    """Ordered, immutable list of the files in one batch."""

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[FileEntry]) -> None:
        self._entries = tuple(entries)

    def __getitem__(self, index: Any) -> Any:
        return self._entries[index]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[FileEntry]:
        return iter(self._entries)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, TransferManifest) and self._entries == other._entries

    def __hash__(self) -> int:
        return hash(self._entries)

    def __repr__(self) -> str:
        return f"TransferManifest({list(self._entries)!r})"

    @property
    def entries(self) -> tuple[FileEntry, ...]:
        return self._entries

    @property
    def total_size(self) -> int:
        return sum(entry.size for entry in self._entries)

    def to_offer_files(self) -> list[dict[str, Any]]:
        """Advisory ``files`` list carried by the signaling offer."""
        return [entry.to_dict(include_type=True) for entry in self._entries]

    def to_start_message(self) -> dict[str, Any]:
        """The ``start`` control message that opens a batch on the channel."""
        return {
            "type": START_MESSAGE_TYPE,
            "files": [entry.to_dict(include_type=False) for entry in self._entries],
        }

    @classmethod
    def from_files_list(cls, files: Any) -> "TransferManifest":
        """
        Build a manifest from a wire ``files`` list.

        :raises ManifestError: if ``files`` is not a list of valid entries
        """
        if not isinstance(files, list):
            raise ManifestError(
                f"Manifest files must be a list, got {type(files).__name__}"
            )
        return cls(FileEntry.from_dict(item) for item in files)
