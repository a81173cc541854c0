# shelfboard/models/asset.py
from enum import Enum
from .base import TimeStampedModel

class AssetKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"

    @classmethod
    def from_content_type(cls, content_type: str) -> "AssetKind":
        if content_type and content_type.startswith("video/"):
            return cls.VIDEO
        return cls.IMAGE

class Asset(TimeStampedModel):
    """Persisted media object belonging to a board"""
    id: str
    board_id: str
    locator: str
    kind: AssetKind = AssetKind.IMAGE
    filename: str
    size: int = 0
