# main.py
import argparse
import asyncio
import logging
import sys
from decimal import Decimal

from shelfboard.app import InventoryApp
from shelfboard.config import setup_logging
from shelfboard.models.staged_file import SelectedFile
from shelfboard.utils.export import write_csv
from shelfboard.utils.formatters import format_price

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Board inventory with photo and video media.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    add = subparsers.add_parser("add", help="Create an item from media files.")
    add.add_argument("--board", required=True)
    add.add_argument("--title", required=True)
    add.add_argument("--category")
    add.add_argument("--label")
    add.add_argument("--purchase-price", type=Decimal, default=Decimal("0"))
    add.add_argument("--listed-price", type=Decimal, default=Decimal("0"))
    add.add_argument(
        "--keep-duplicates",
        action="store_true",
        help="Upload files with identical name, size and mtime anyway.",
    )
    add.add_argument("files", nargs="+")

    listing = subparsers.add_parser("list", help="List the items of a board.")
    listing.add_argument("--board", required=True)

    export = subparsers.add_parser("export", help="Write the board inventory as CSV.")
    export.add_argument("--board", required=True)
    export.add_argument("--out", required=True)

    check = subparsers.add_parser("check", help="Report items whose media is missing.")
    check.add_argument("--board", required=True)
    check.add_argument(
        "--prune",
        action="store_true",
        help=(
            "Also delete assets no item references. Without DATABASE_URL items "
            "are kept only while one command runs, so every stored asset is pruned."
        ),
    )
    return parser.parse_args(argv)


async def add_item(app, args) -> int:
    view, controller = await app.open_board(args.board)
    async with app.new_session(args.board) as session:
        session.add_files(SelectedFile.from_path(path) for path in args.files)
        await session.wait_loaded()

        for staged in session.files:
            if staged.error:
                print(f"skipped {staged.source.name}: {staged.error}")
        if not args.keep_duplicates:
            for staged in session.remove_duplicates():
                print(f"skipped duplicate {staged.source.name}")

        result = await controller.submit({
            "title": args.title,
            "category": args.category,
            "label": args.label,
            "purchase_price": args.purchase_price,
            "listed_price": args.listed_price,
        }, session)

    if not result.success:
        print(f"error: {result.error}")
        return 1
    print(f"created {result.item.id} with {len(result.item.image_ids)} media")
    return 0


async def list_items(app, args) -> int:
    view, _ = await app.open_board(args.board)
    for item in view.sorted_items():
        thumbnail = view.thumbnail(item)
        print(
            f"{item.id}  {item.title:<30} {item.sale_status.value:<9} "
            f"{format_price(item.listed_price):>12}  "
            f"{thumbnail.locator if thumbnail else '-'}"
        )
    return 0


async def export_items(app, args) -> int:
    view, _ = await app.open_board(args.board)
    path = write_csv(view.sorted_items(), args.out)
    print(f"wrote {len(view.items)} items to {path}")
    return 0


async def check_board(app, args) -> int:
    _, controller = await app.open_board(args.board)
    dangling = await controller.check_integrity()
    for item_id, image_ids in dangling.items():
        print(f"{item_id}: missing {', '.join(image_ids)}")
    if args.prune:
        removed = await controller.collect_orphans()
        print(f"removed {len(removed)} orphaned assets")
    return 1 if dangling else 0


COMMANDS = {
    "add": add_item,
    "list": list_items,
    "export": export_items,
    "check": check_board,
}


async def main(argv=None) -> int:
    # Setup logging
    setup_logging()
    args = parse_args(argv)

    try:
        async with InventoryApp() as app:
            return await COMMANDS[args.command](app, args)
    except Exception as e:
        logger.error(f"Command {args.command} failed: {e}", exc_info=True)
        raise

if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
