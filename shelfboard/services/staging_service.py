# shelfboard/services/staging_service.py
import asyncio
import logging
import uuid
from collections import Counter
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import aiofiles
import magic

from ..config import Config
from ..exceptions import MaterializationError, NotFoundError, ValidationError
from ..models.asset import Asset
from ..models.item import InventoryItem
from ..models.staged_file import SelectedFile, StagedFile, StagedFileState
from .asset_service import AssetStore, sniff_content_type


class StagingSession:
    """Files picked in one item form, held until submit or close.

    Each added file is fingerprinted, flagged when another staged file
    shares its fingerprint, and read into a preview copy by its own task.
    Preview copies of new files are deleted when they leave the session;
    entries pre-loaded from existing assets are never touched.
    """

    def __init__(self, board_id: str, temp_dir: Optional[Path] = None,
                 max_file_size: Optional[int] = None,
                 on_change: Optional[Callable[["StagingSession"], None]] = None):
        self.board_id = board_id
        self.temp_dir = Path(temp_dir or Config.TEMP_DIR)
        self.max_file_size = max_file_size or Config.MAX_FILE_SIZE
        self.on_change = on_change
        self.closed = False
        self.logger = logging.getLogger(__name__)
        self._files: List[StagedFile] = []
        self._tasks: Dict[str, asyncio.Task] = {}
        self._pending_removal: Optional[StagedFile] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def files(self) -> List[StagedFile]:
        return list(self._files)

    @property
    def pending_removal(self) -> Optional[StagedFile]:
        return self._pending_removal

    def progress(self) -> Dict[str, int]:
        """Counts per state, for rendering partial progress"""
        counts = Counter(f.state.value for f in self._files)
        return {
            "total": len(self._files),
            "pending": counts[StagedFileState.PENDING.value],
            "loaded": counts[StagedFileState.LOADED.value],
            "errored": counts[StagedFileState.ERRORED.value],
            "duplicates": sum(1 for f in self._files if f.is_duplicate),
        }

    def load_existing(self, item: InventoryItem, assets: Iterable[Asset]):
        """Show an item's current media when editing it"""
        self._ensure_open()
        by_id = {asset.id: asset for asset in assets if asset.board_id == item.board_id}
        for image_id in item.image_ids:
            asset = by_id.get(image_id)
            if asset is None:
                self.logger.warning(f"Item {item.id} references missing asset {image_id}")
                continue
            self._files.append(StagedFile(
                fingerprint=uuid.uuid4().hex,
                kind=asset.kind,
                state=StagedFileState.LOADED,
                preview=asset.locator,
                asset_id=asset.id
            ))
        self._notify()

    def add_files(self, files: Iterable[SelectedFile]) -> List[StagedFile]:
        """Stage new selections and start loading them; needs a running loop"""
        self._ensure_open()
        added = []
        for file in files:
            staged = StagedFile(source=file, fingerprint=file.fingerprint, kind=file.kind)
            self._files.append(staged)
            added.append(staged)

        self._flag_duplicates()
        for staged in added:
            self._tasks[staged.id] = asyncio.create_task(self._materialize(staged))

        self._notify()
        return added

    async def wait_loaded(self):
        """Wait until every staged file has loaded or errored"""
        while self._tasks:
            tasks = list(self._tasks.items())
            await asyncio.gather(*(task for _, task in tasks), return_exceptions=True)
            for file_id, task in tasks:
                if task.done():
                    self._tasks.pop(file_id, None)

    def eligible_files(self) -> List[StagedFile]:
        """New files that loaded successfully"""
        return [f for f in self._files if f.is_eligible]

    async def finalize(self) -> List[StagedFile]:
        """Files to upload on submit"""
        await self.wait_loaded()
        return self.eligible_files()

    def remove_duplicates(self) -> List[StagedFile]:
        """Drop every flagged file, all copies included"""
        removed = [f for f in self._files if f.is_duplicate]
        for staged in removed:
            self._discard(staged)
        if removed:
            self._flag_duplicates()
            self._notify()
            self.logger.info(f"Removed {len(removed)} duplicate files from staging")
        return removed

    def request_removal(self, file_id: str) -> StagedFile:
        """Mark a file for removal; nothing is released until confirmed"""
        staged = self._get(file_id)
        self._pending_removal = staged
        self._notify()
        return staged

    def cancel_removal(self):
        self._pending_removal = None
        self._notify()

    def confirm_removal(self) -> Optional[StagedFile]:
        """Remove the file marked by request_removal"""
        staged = self._pending_removal
        if staged is None:
            return None
        self._discard(staged)
        self._flag_duplicates()
        self._notify()
        return staged

    async def close(self):
        """End the session and release previews of files that were never uploaded"""
        if self.closed:
            return
        self.closed = True

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        for staged in self._files:
            self._release(staged)
        self._files = []
        self._pending_removal = None
        self._notify()

    async def _materialize(self, staged: StagedFile):
        source = staged.source
        preview_path = self.temp_dir / f"{staged.id}{Path(source.name).suffix.lower()}"
        try:
            content = await source.read()
            if len(content) > self.max_file_size:
                raise MaterializationError(f"{source.name} exceeds the maximum file size")
            content_type = source.content_type or sniff_content_type(content)
            if content_type not in AssetStore.ALLOWED_EXTENSIONS:
                raise MaterializationError(f"File type not allowed: {content_type}")

            self.temp_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(preview_path, 'wb') as f:
                await f.write(content)
        except asyncio.CancelledError:
            self._unlink(preview_path)
            raise
        except (OSError, MaterializationError, magic.MagicException) as e:
            self.logger.warning(f"Failed to load {source.name}: {e}")
            self._unlink(preview_path)
            staged.state = StagedFileState.ERRORED
            staged.error = f"Failed to load file: {e}"
        else:
            if not self._contains(staged):
                # Removed while loading
                self._unlink(preview_path)
                return
            staged.preview_path = preview_path
            staged.preview = preview_path.resolve().as_uri()
            staged.state = StagedFileState.LOADED
        finally:
            self._tasks.pop(staged.id, None)
            if not self.closed:
                self._notify()

    def _flag_duplicates(self):
        counts = Counter(f.fingerprint for f in self._files)
        for staged in self._files:
            staged.is_duplicate = counts[staged.fingerprint] > 1

    def _discard(self, staged: StagedFile):
        task = self._tasks.pop(staged.id, None)
        if task is not None:
            task.cancel()
        self._files = [f for f in self._files if f is not staged]
        if self._pending_removal is staged:
            self._pending_removal = None
        self._release(staged)

    def _release(self, staged: StagedFile):
        # Pre-loaded entries point at asset store files
        if staged.is_persisted:
            return
        if staged.preview_path is not None:
            self._unlink(staged.preview_path)
        staged.preview_path = None
        staged.preview = None

    def _get(self, file_id: str) -> StagedFile:
        for staged in self._files:
            if staged.id == file_id:
                return staged
        raise NotFoundError(f"Staged file {file_id} not found")

    def _contains(self, staged: StagedFile) -> bool:
        return any(f is staged for f in self._files)

    def _ensure_open(self):
        if self.closed:
            raise ValidationError("Staging session is closed")

    def _notify(self):
        if self.on_change is not None:
            self.on_change(self)

    def _unlink(self, path: Path):
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning(f"Could not remove preview {path}: {e}")
