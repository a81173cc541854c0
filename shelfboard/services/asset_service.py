# shelfboard/services/asset_service.py
import logging
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import aiofiles
import magic

from ..config import Config
from ..exceptions import StorageError, ValidationError
from ..models.asset import Asset, AssetKind
from ..models.staged_file import SelectedFile

SAFE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def validate_board_id(board_id: str) -> str:
    """Board ids become directory names, so only a safe alphabet is allowed"""
    if not board_id or not SAFE_ID_PATTERN.match(board_id):
        raise ValidationError(f"Invalid board id: {board_id!r}")
    return board_id


def sniff_content_type(content: bytes) -> str:
    """Detect the MIME type from the file header"""
    return magic.from_buffer(content[:2048], mime=True)


class AssetStore:
    """Media store: one directory per board, one file per asset"""

    ALLOWED_EXTENSIONS = {
        # images
        'image/jpeg': '.jpg',
        'image/png': '.png',
        'image/gif': '.gif',
        'image/webp': '.webp',
        'image/heic': '.heic',
        'image/bmp': '.bmp',

        # video
        'video/mp4': '.mp4',
        'video/quicktime': '.mov',
        'video/webm': '.webm',
        'video/x-matroska': '.mkv',
    }

    EXTENSION_KINDS = {
        extension: AssetKind.from_content_type(content_type)
        for content_type, extension in ALLOWED_EXTENSIONS.items()
    }

    def __init__(self, upload_path: Optional[Path] = None,
                 max_file_size: Optional[int] = None):
        self.upload_path = Path(upload_path or Config.UPLOAD_DIR)
        self.max_file_size = max_file_size or Config.MAX_FILE_SIZE
        self.logger = logging.getLogger(__name__)
        self.ensure_directories()

    def ensure_directories(self):
        """Make sure the boards directory exists"""
        (self.upload_path / 'boards').mkdir(parents=True, exist_ok=True)

    def board_path(self, board_id: str) -> Path:
        return self.upload_path / 'boards' / validate_board_id(board_id)

    async def add_asset(self, board_id: str, file: SelectedFile) -> Asset:
        """Persist a file for the board and return the new asset"""
        board_path = self.board_path(board_id)

        try:
            content = await file.read()
        except OSError as e:
            raise StorageError(f"Could not read {file.name}: {e}") from e

        if not content:
            raise StorageError(f"{file.name} is empty")
        if len(content) > self.max_file_size:
            raise StorageError(f"{file.name} exceeds the maximum file size")

        content_type = file.content_type or sniff_content_type(content)
        extension = self.ALLOWED_EXTENSIONS.get(content_type)
        if extension is None:
            raise StorageError(f"File type not allowed: {content_type}")

        asset_id = uuid.uuid4().hex
        save_path = board_path / f"{asset_id}{extension}"

        try:
            board_path.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(save_path, 'wb') as f:
                await f.write(content)
        except OSError as e:
            self.logger.error(f"Failed to save {file.name} for board {board_id}: {e}")
            raise StorageError(f"Failed to save {file.name}") from e

        self.logger.info(f"Stored asset {asset_id} ({file.name}) for board {board_id}")
        return self._asset_from_path(board_id, save_path)

    async def get_assets(self, board_id: str) -> List[Asset]:
        """All assets of a board, oldest first"""
        board_path = self.board_path(board_id)
        if not board_path.is_dir():
            return []

        assets = [
            self._asset_from_path(board_id, path)
            for path in board_path.iterdir()
            if path.is_file() and path.suffix in self.EXTENSION_KINDS
        ]
        return sorted(assets, key=lambda asset: (asset.created_at, asset.id))

    async def get_asset(self, board_id: str, asset_id: str) -> Optional[Asset]:
        path = self._find(board_id, asset_id)
        return self._asset_from_path(board_id, path) if path else None

    async def delete_asset(self, board_id: str, asset_id: str) -> bool:
        """Remove an asset file; False when it does not exist"""
        path = self._find(board_id, asset_id)
        if path is None:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete asset {asset_id}") from e

        self.logger.info(f"Deleted asset {asset_id} from board {board_id}")
        return True

    def _find(self, board_id: str, asset_id: str) -> Optional[Path]:
        board_path = self.board_path(board_id)
        if not SAFE_ID_PATTERN.match(asset_id or "") or not board_path.is_dir():
            return None
        for path in board_path.glob(f"{asset_id}.*"):
            if path.stem == asset_id and path.suffix in self.EXTENSION_KINDS:
                return path
        return None

    def _asset_from_path(self, board_id: str, path: Path) -> Asset:
        stat = path.stat()
        return Asset(
            id=path.stem,
            board_id=board_id,
            locator=path.resolve().as_uri(),
            kind=self.EXTENSION_KINDS[path.suffix],
            filename=path.name,
            size=stat.st_size,
            created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        )
