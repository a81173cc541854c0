import asyncio
import tempfile
import unittest
from pathlib import Path

from shelfboard.exceptions import StorageError, ValidationError
from shelfboard.models.staged_file import SelectedFile
from shelfboard.services.asset_service import AssetStore
from shelfboard.services.board_service import BoardView
from shelfboard.services.item_service import MemoryItemStore
from shelfboard.services.staging_service import StagingSession
from shelfboard.services.sync_service import InventorySyncController


def selection(name, data=b"data", last_modified=1000):
    return SelectedFile.from_bytes(name, data, last_modified=last_modified)


class RecordingAssetStore(AssetStore):
    """Asset store that counts uploads and fails for chosen file names"""

    def __init__(self, *args, fail_names=(), crash_names=(), **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_names = set(fail_names)
        self.crash_names = set(crash_names)
        self.uploads = 0

    async def add_asset(self, board_id, file):
        self.uploads += 1
        await asyncio.sleep(0)
        if file.name in self.fail_names:
            raise StorageError(f"disk full while writing {file.name}")
        if file.name in self.crash_names:
            raise RuntimeError(f"decoder crashed on {file.name}")
        return await super().add_asset(board_id, file)


class RecordingItemStore(MemoryItemStore):
    def __init__(self):
        super().__init__()
        self.writes = 0
        self.fail_listing = False

    async def get_items(self, board_id):
        if self.fail_listing:
            raise StorageError("item query failed")
        return await super().get_items(board_id)

    async def add_item(self, board_id, data):
        self.writes += 1
        return await super().add_item(board_id, data)

    async def update_item(self, item_id, updates):
        self.writes += 1
        return await super().update_item(item_id, updates)


class SyncControllerTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.asset_store = RecordingAssetStore(self.root)
        self.item_store = RecordingItemStore()
        self.view = BoardView("shop", self.asset_store, self.item_store)
        await self.view.open()
        self.events = []
        self.controller = InventorySyncController(
            self.asset_store, self.item_store, self.view,
            on_created=lambda item: self.events.append(("created", item.id)),
            on_updated=lambda item: self.events.append(("updated", item.id)),
            on_deleted=lambda item_id: self.events.append(("deleted", item_id)),
            on_failed=lambda error: self.events.append(("failed", error.code)),
        )

    async def asyncTearDown(self):
        self.tmp.cleanup()

    def new_session(self):
        return StagingSession("shop", temp_dir=self.root / "temp")

    async def create(self, title, *names):
        session = self.new_session()
        session.add_files([selection(name) for name in names])
        result = await self.controller.submit({"title": title}, session)
        self.assertTrue(result.success, result.error)
        return result.item

    async def test_chair_scenario(self):
        session = self.new_session()
        first, copy, other = session.add_files([
            selection("a.png"),
            selection("a.png"),
            selection("b.png"),
        ])
        await session.wait_loaded()
        self.assertTrue(first.is_duplicate and copy.is_duplicate)
        self.assertFalse(other.is_duplicate)

        session.remove_duplicates()
        self.assertEqual([f.source.name for f in session.files], ["b.png"])

        result = await self.controller.submit({"title": "Chair"}, session)

        self.assertTrue(result.success)
        self.assertEqual(self.asset_store.uploads, 1)
        self.assertEqual(len(result.item.image_ids), 1)
        assets = await self.asset_store.get_assets("shop")
        self.assertEqual([asset.id for asset in assets], result.item.image_ids)
        self.assertEqual(self.view.items, [result.item])
        self.assertEqual(self.view.thumbnail(result.item).id, result.item.image_ids[0])
        self.assertTrue(session.closed)
        self.assertEqual(self.events, [("created", result.item.id)])

    async def test_unremoved_duplicates_upload_separately(self):
        item = await self.create("Chair", "a.png", "a.png")

        self.assertEqual(len(item.image_ids), 2)
        self.assertNotEqual(item.image_ids[0], item.image_ids[1])

    async def test_create_without_media_is_rejected_before_store_calls(self):
        session = self.new_session()
        result = await self.controller.submit({"title": "Chair"}, session)

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "validation")
        self.assertIsInstance(result.exception, ValidationError)
        self.assertEqual(self.asset_store.uploads, 0)
        self.assertEqual(self.item_store.writes, 0)
        self.assertFalse(session.closed)
        self.assertEqual(self.events, [("failed", "validation")])

    async def test_errored_files_are_not_eligible(self):
        session = self.new_session()
        session.add_files([SelectedFile(
            name="gone.png",
            size=4,
            last_modified=1,
            content_type="image/png",
            path=self.root / "gone.png",
        )])
        result = await self.controller.submit({"title": "Chair"}, session)

        self.assertEqual(result.error_code, "validation")
        self.assertEqual(self.asset_store.uploads, 0)

    async def test_disallowed_type_is_left_out_of_the_upload(self):
        session = self.new_session()
        session.add_files([
            selection("a.png"),
            SelectedFile.from_bytes("logo.svg", b"<svg/>", last_modified=1000,
                                    content_type="image/svg+xml"),
        ])

        result = await self.controller.submit({"title": "Chair"}, session)

        self.assertTrue(result.success, result.error)
        self.assertEqual(self.asset_store.uploads, 1)
        assets = await self.asset_store.get_assets("shop")
        self.assertEqual([asset.id for asset in assets], result.item.image_ids)
        self.assertEqual(await self.controller.collect_orphans(), [])

    async def test_missing_title_is_rejected_before_uploads(self):
        session = self.new_session()
        session.add_files([selection("a.png")])
        result = await self.controller.submit({"title": ""}, session)

        self.assertEqual(result.error_code, "validation")
        self.assertEqual(self.asset_store.uploads, 0)
        await session.close()

    async def test_edit_appends_new_media(self):
        item = await self.create("Chair", "a.png", "b.png")
        original_ids = list(item.image_ids)

        session = self.new_session()
        session.load_existing(item, self.view.assets)
        session.add_files([selection("c.png")])
        result = await self.controller.submit({"title": "Oak chair"}, session, edit_item=item)

        self.assertTrue(result.success)
        self.assertEqual(len(result.item.image_ids), 3)
        self.assertEqual(result.item.image_ids[:2], original_ids)
        self.assertNotIn(result.item.image_ids[2], original_ids)
        self.assertEqual(result.item.title, "Oak chair")
        self.assertEqual(self.view.get_item(item.id).image_ids, result.item.image_ids)
        self.assertEqual(len(self.view.assets), 3)
        self.assertEqual(self.events[-1], ("updated", item.id))

    async def test_edit_without_new_media_is_allowed(self):
        item = await self.create("Chair", "a.png")

        result = await self.controller.submit({"label": "sale"}, self.new_session(), edit_item=item)

        self.assertTrue(result.success)
        self.assertEqual(result.item.image_ids, item.image_ids)
        self.assertEqual(result.item.label, "sale")
        self.assertIn("sale", self.view.labels)

    async def test_failed_upload_commits_nothing(self):
        self.asset_store.fail_names = {"bad.png"}
        session = self.new_session()
        session.add_files([selection("a.png"), selection("bad.png"), selection("c.png")])

        result = await self.controller.submit({"title": "Chair"}, session)

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "storage")
        self.assertIsInstance(result.exception, StorageError)
        self.assertEqual(self.asset_store.uploads, 3)
        self.assertEqual(self.item_store.writes, 0)
        self.assertEqual(await self.item_store.get_items("shop"), [])
        self.assertEqual(self.view.items, [])
        self.assertEqual(self.view.assets, [])
        self.assertFalse(session.closed)
        await session.close()

    async def test_failed_upload_leaves_edited_item_unchanged(self):
        item = await self.create("Chair", "a.png")
        self.asset_store.fail_names = {"bad.png"}
        session = self.new_session()
        session.add_files([selection("bad.png")])

        result = await self.controller.submit({"title": "Renamed"}, session, edit_item=item)

        self.assertEqual(result.error_code, "storage")
        stored = await self.item_store.get_item(item.id)
        self.assertEqual(stored.title, "Chair")
        self.assertEqual(stored.updated_at, item.updated_at)
        self.assertEqual(self.view.get_item(item.id), item)
        await session.close()

    async def test_unexpected_upload_error_is_reported_as_storage(self):
        self.asset_store.crash_names = {"bad.png"}
        session = self.new_session()
        session.add_files([selection("a.png"), selection("bad.png")])

        result = await self.controller.submit({"title": "Chair"}, session)

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "storage")
        self.assertIsInstance(result.exception, StorageError)
        self.assertIsInstance(result.exception.__cause__, RuntimeError)
        self.assertEqual(self.item_store.writes, 0)
        self.assertEqual(self.events, [("failed", "storage")])
        await session.close()

    async def test_edit_of_deleted_item_reports_not_found(self):
        item = await self.create("Chair", "a.png")
        await self.item_store.delete_item(item.id)

        result = await self.controller.submit({"title": "Chair"}, self.new_session(), edit_item=item)

        self.assertEqual(result.error_code, "not_found")

    async def test_update_fields(self):
        item = await self.create("Chair", "a.png")

        result = await self.controller.update_fields(item.id, {"sold_at": 500, "purchase_price": 300})

        self.assertTrue(result.success)
        self.assertEqual(self.view.get_item(item.id).profit, 200)
        failed = await self.controller.update_fields("missing", {"title": "x"})
        self.assertEqual(failed.error_code, "not_found")

    async def test_delete_removes_unshared_assets(self):
        item = await self.create("Chair", "a.png", "b.png")
        shared_id = item.image_ids[0]
        other = await self.item_store.add_item("shop", {"title": "Table", "image_ids": [shared_id]})
        self.view.apply_created(other)

        result = await self.controller.delete(item.id)

        self.assertTrue(result.success)
        self.assertIsNone(self.view.get_item(item.id))
        remaining = [asset.id for asset in await self.asset_store.get_assets("shop")]
        self.assertEqual(remaining, [shared_id])
        self.assertEqual([asset.id for asset in self.view.assets], [shared_id])
        self.assertEqual(await self.controller.check_integrity(), {})
        self.assertEqual(self.events[-1], ("deleted", item.id))

    async def test_delete_missing_item(self):
        result = await self.controller.delete("missing")
        self.assertEqual(result.error_code, "not_found")

    async def test_delete_succeeds_when_asset_cleanup_cannot_list_items(self):
        item = await self.create("Chair", "a.png")
        self.item_store.fail_listing = True

        result = await self.controller.delete(item.id)

        self.assertTrue(result.success)
        self.assertIsNone(self.view.get_item(item.id))
        self.assertEqual(self.events[-1], ("deleted", item.id))
        remaining = [asset.id for asset in await self.asset_store.get_assets("shop")]
        self.assertEqual(remaining, item.image_ids)

        self.item_store.fail_listing = False
        self.assertEqual(await self.controller.collect_orphans(), item.image_ids)

    async def test_references_resolve_within_the_board(self):
        item = await self.create("Chair", "a.png", "b.png")

        assets = {asset.id: asset for asset in await self.asset_store.get_assets("shop")}
        for image_id in item.image_ids:
            self.assertEqual(assets[image_id].board_id, item.board_id)
        self.assertEqual(await self.controller.check_integrity(), {})
        self.assertEqual(self.view.dangling_references(), {})

    async def test_integrity_check_reports_missing_assets(self):
        item = await self.create("Chair", "a.png")
        await self.asset_store.delete_asset("shop", item.image_ids[0])

        self.assertEqual(await self.controller.check_integrity(), {item.id: item.image_ids})

    async def test_collect_orphans_after_failed_upload(self):
        self.asset_store.fail_names = {"bad.png"}
        session = self.new_session()
        session.add_files([selection("a.png"), selection("bad.png")])
        await self.controller.submit({"title": "Chair"}, session)
        await session.close()
        self.asset_store.fail_names = set()
        kept = await self.create("Table", "t.png")

        removed = await self.controller.collect_orphans()

        self.assertEqual(len(removed), 1)
        remaining = [asset.id for asset in await self.asset_store.get_assets("shop")]
        self.assertEqual(remaining, kept.image_ids)


class BoardViewTest(unittest.IsolatedAsyncioTestCase):
    async def test_open_and_close(self):
        with tempfile.TemporaryDirectory() as tmp:
            asset_store = AssetStore(Path(tmp))
            item_store = MemoryItemStore()
            asset = await asset_store.add_asset("shop", selection("a.png"))
            await item_store.add_item("shop", {
                "title": "Chair",
                "category": "Furniture",
                "image_ids": [asset.id, "ghost"],
            })

            view = BoardView("shop", asset_store, item_store)
            await view.open()

            self.assertTrue(view.is_open)
            self.assertEqual(len(view.items), 1)
            self.assertEqual(view.categories, ["Furniture"])
            self.assertEqual([a.id for a in view.resolve_images(view.items[0])], [asset.id])
            self.assertEqual(view.dangling_references(), {view.items[0].id: ["ghost"]})

            view.close()
            self.assertFalse(view.is_open)
            self.assertEqual(view.items, [])
            self.assertEqual(view.assets, [])


if __name__ == "__main__":
    unittest.main()
