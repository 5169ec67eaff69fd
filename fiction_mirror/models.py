"""Data model for the fiction archive."""
import enum
import hashlib
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

MANIFEST_VERSION = 1


class Presence(str, enum.Enum):
    """Whether a manifest entry is still listed on the remote TOC."""
    PRESENT = "present"
    ORPHANED = "orphaned"


class FailureKind(str, enum.Enum):
    """Per-chapter failure categories."""
    NETWORK = "network"
    EXTRACT = "extract"


def fingerprint(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class Fiction(BaseModel):
    """Fiction identity as read from its TOC page."""
    title: str
    author: str = ""
    url: str


class ChapterRef(BaseModel):
    """
    A chapter as listed on the TOC.

    ``chapter_id`` is derived from the chapter URL and never changes when the
    title or position does. ``order`` is the position at parse time.
    """
    chapter_id: str
    title: str
    url: str
    order: int

    model_config = ConfigDict(frozen=True)


class ChapterContent(BaseModel):
    """Extracted body of one chapter."""
    chapter_id: str
    title: str
    content: str
    fingerprint: str
    fetched_at: datetime

    @classmethod
    def from_content(
        cls,
        chapter_id: str,
        title: str,
        content: str,
        fetched_at: Optional[datetime] = None,
    ) -> "ChapterContent":
        return cls(
            chapter_id=chapter_id,
            title=title,
            content=content,
            fingerprint=fingerprint(content),
            fetched_at=fetched_at or datetime.now(timezone.utc),
        )


class ManifestEntry(BaseModel):
    """
    One chapter ever seen for the fiction.

    ``ref.title`` is the title last listed on the TOC; ``title`` is the one
    shown to readers, taken from the chapter page when it was fetched.
    """
    ref: ChapterRef
    title: str
    fingerprint: str
    filename: str
    fetched_at: datetime
    presence: Presence = Presence.PRESENT

    @property
    def chapter_id(self) -> str:
        return self.ref.chapter_id


class ArchiveManifest(BaseModel):
    """Persisted state of a fiction archive, carried between runs."""
    version: int = MANIFEST_VERSION
    fiction: Optional[Fiction] = None
    entries: List[ManifestEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_ids(self) -> "ArchiveManifest":
        seen = set()
        for entry in self.entries:
            if entry.chapter_id in seen:
                raise ValueError(f"duplicate chapter id in manifest: {entry.chapter_id}")
            seen.add(entry.chapter_id)
        return self

    def by_id(self) -> Dict[str, ManifestEntry]:
        return {entry.chapter_id: entry for entry in self.entries}

    def get(self, chapter_id: str) -> Optional[ManifestEntry]:
        return self.by_id().get(chapter_id)


class ChapterFailure(BaseModel):
    """A planned chapter that could not be mirrored this run."""
    ref: ChapterRef
    kind: FailureKind
    reason: str


class SyncReport(BaseModel):
    """Outcome of one mirror run."""
    fiction: Fiction
    output_dir: str
    planned: List[str] = Field(default_factory=list)
    fetched: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    renamed: List[str] = Field(default_factory=list)
    orphaned: List[str] = Field(default_factory=list)
    failures: List[ChapterFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1
