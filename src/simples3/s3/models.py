from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Tuple


@dataclass(frozen=True)
class TransferResult:
    key: str
    bytes_transferred: int
    last_modified: datetime | None = None
    etag: str | None = None
    path: str | None = None


@dataclass(frozen=True)
class ListingEntry:
    key: str
    size_bytes: int
    last_modified: datetime
    etag: str | None = None


@dataclass(frozen=True)
class ListingPage:
    entries: Tuple[ListingEntry, ...]
    cursor: str | None = None

    def __iter__(self):
        return iter(self.entries)

    def __len__(self):
        return len(self.entries)

    @property
    def has_more(self) -> bool:
        return self.cursor is not None


@dataclass(frozen=True)
class ObjectHead:
    key: str
    size_bytes: int
    etag: str | None = None
    last_modified: datetime | None = None
    content_type: str | None = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class S3Object:
    key: str
    last_modified: datetime
    etag: str
    size: int
    storage_class: str | None = None


@dataclass
class S3ListObjectsRes:
    objects: list[S3Object]
    is_truncated: bool = False
    next_marker: str | None = None


@dataclass
class S3CopyObjectRes:
    etag: str | None
    last_modified: datetime | None
