# shelfboard/models/staged_file.py
import mimetypes
import uuid
from enum import Enum
from pathlib import Path
from typing import Optional

import aiofiles
from pydantic import BaseModel, Field

from .asset import AssetKind


class SelectedFile(BaseModel):
    """A file picked by the user, not yet read"""
    name: str
    size: int
    last_modified: int  # epoch milliseconds
    content_type: Optional[str] = None
    path: Optional[Path] = None
    data: Optional[bytes] = None

    @classmethod
    def from_path(cls, path, content_type: Optional[str] = None) -> "SelectedFile":
        """Build a selection from a file on disk"""
        path = Path(path)
        stat = path.stat()
        return cls(
            name=path.name,
            size=stat.st_size,
            last_modified=int(stat.st_mtime * 1000),
            content_type=content_type or mimetypes.guess_type(path.name)[0],
            path=path
        )

    @classmethod
    def from_bytes(cls, name: str, data: bytes, last_modified: int = 0,
                   content_type: Optional[str] = None) -> "SelectedFile":
        return cls(
            name=name,
            size=len(data),
            last_modified=last_modified,
            content_type=content_type or mimetypes.guess_type(name)[0],
            data=data
        )

    @property
    def kind(self) -> AssetKind:
        return AssetKind.from_content_type(self.content_type or "")

    @property
    def fingerprint(self) -> str:
        """Identity proxy built from name, size and mtime; not a content hash"""
        return f"{self.name}-{self.size}-{self.last_modified}"

    async def read(self) -> bytes:
        """Read the file contents"""
        if self.data is not None:
            return self.data
        if self.path is None:
            raise OSError(f"No content for {self.name}")
        async with aiofiles.open(self.path, 'rb') as f:
            return await f.read()


class StagedFileState(str, Enum):
    PENDING = "pending"
    LOADED = "loaded"
    ERRORED = "errored"


class StagedFile(BaseModel):
    """A selection held by a staging session until submit or close"""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    source: Optional[SelectedFile] = None
    fingerprint: str
    kind: AssetKind = AssetKind.IMAGE
    state: StagedFileState = StagedFileState.PENDING
    is_duplicate: bool = False
    preview: Optional[str] = None
    preview_path: Optional[Path] = None
    error: Optional[str] = None
    asset_id: Optional[str] = None

    @property
    def is_persisted(self) -> bool:
        """Backed by an existing asset (edit mode) rather than a new upload"""
        return self.asset_id is not None

    @property
    def is_eligible(self) -> bool:
        return (
            not self.is_persisted
            and self.source is not None
            and self.state == StagedFileState.LOADED
        )
