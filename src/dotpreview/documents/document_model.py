"""Read-only document values handed to the preview core by the host editor."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

DOT_LANGUAGE_ID = "dot"
DOT_FILE_EXTENSIONS: tuple[str, ...] = (".dot", ".gv")


def _hash_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class Document:
    """Snapshot of an editor document: identity, language and text."""

    uri: str
    text: str = ""
    language_id: str = DOT_LANGUAGE_ID
    path: Optional[Path] = None
    version: int = 1
    content_hash: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not self.content_hash:
            object.__setattr__(self, "content_hash", _hash_text(self.text))

    @classmethod
    def from_path(cls, path: Path | str, *, language_id: str | None = None) -> "Document":
        """Load a document from disk, using the file URI as its identity."""

        resolved = Path(path).expanduser().resolve()
        text = resolved.read_text(encoding="utf-8")
        language = language_id or (DOT_LANGUAGE_ID if _has_dot_suffix(resolved.name) else "plaintext")
        return cls(uri=resolved.as_uri(), text=text, language_id=language, path=resolved)

    @property
    def file_name(self) -> str:
        if self.path is not None:
            return str(self.path)
        return self.uri

    @property
    def display_name(self) -> str:
        if self.path is not None:
            return self.path.name
        return self.uri.rsplit("/", 1)[-1] or self.uri

    def is_dot_source(self) -> bool:
        """Return True for DOT documents by language id or file extension."""

        return self.language_id == DOT_LANGUAGE_ID or _has_dot_suffix(self.file_name)

    def with_text(self, text: str) -> "Document":
        """Return the next version of this document carrying *text*."""

        return replace(self, text=text, version=self.version + 1, content_hash="")

    def snapshot(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "uri": self.uri,
            "language_id": self.language_id,
            "version": self.version,
            "content_hash": self.content_hash,
        }
        if self.path is not None:
            payload["path"] = str(self.path)
        return payload


def _has_dot_suffix(name: str) -> bool:
    return name.strip().lower().endswith(DOT_FILE_EXTENSIONS)
