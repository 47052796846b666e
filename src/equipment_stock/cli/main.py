from __future__ import annotations

import argparse
import asyncio
import json
import mimetypes
import os
import sys
from typing import Optional, Sequence

from ..config import load_camera, load_db_path, load_recognition
from ..domain.errors import LedgerError, StoreError
from ..domain.models import Candidate, CapturedImage, ItemDraft
from ..inventory.export import write_report
from ..inventory.ledger import InventoryLedger
from ..inventory.store import SqliteKeyValueStore
from ..logging import get_logger, set_level
from ..paths import expand_abs

LOG = get_logger("cli-main")


def _open_ledger(ns: argparse.Namespace) -> InventoryLedger:
    db_path = ns.db or load_db_path(os.getcwd())
    store = SqliteKeyValueStore(expand_abs(db_path) if db_path else None, root_dir=os.getcwd())
    return InventoryLedger(store)


def _print_json(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _ledger_command(fn):
    """Run a ledger subcommand; ledger rejections become exit code 1."""

    def _wrapped(ns: argparse.Namespace) -> int:
        try:
            return fn(ns, _open_ledger(ns))
        except LedgerError as exc:
            LOG.error(f"{type(exc).__name__}: {exc}")
            return 1
        except StoreError as exc:
            LOG.error(f"Storage failure: {exc}")
            return 3

    return _wrapped


def _add_item_args(p: argparse.ArgumentParser, *, name_required: bool) -> None:
    p.add_argument("--name", required=name_required)
    p.add_argument("--quantity", required=name_required, help="Initial stock (whole number >= 0)")
    p.add_argument("--description", default="")
    p.add_argument("--device-type", default="")
    p.add_argument("--serial", default="", help="Serial number (N/S)")
    p.add_argument("--location", default="")


def _add_scan_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--image", help="Analyze this photo instead of opening the camera")
    p.add_argument("--facing", choices=["environment", "user"], default="environment")
    p.add_argument("--delay", type=float, default=2.0, help="Seconds to wait before capturing")


def _draft_from_args(ns: argparse.Namespace) -> ItemDraft:
    return ItemDraft(
        name=ns.name or "",
        description=ns.description,
        device_type=ns.device_type,
        serial_number=ns.serial,
        quantity=ns.quantity if ns.quantity is not None else "",
        location=ns.location,
    )


@_ledger_command
def _add(ns: argparse.Namespace, ledger: InventoryLedger) -> int:
    item = ledger.add_item(_draft_from_args(ns))
    _print_json(item.as_dict())
    return 0


@_ledger_command
def _adjust(ns: argparse.Namespace, ledger: InventoryLedger) -> int:
    item = ledger.adjust_quantity(ns.item_id, ns.delta)
    _print_json(item.as_dict())
    return 0


@_ledger_command
def _decommission(ns: argparse.Namespace, ledger: InventoryLedger) -> int:
    item = ledger.get_item(ns.id) if ns.id else ledger.find_by_serial(ns.serial)
    if item is None:
        LOG.error(f"No item found for {'id ' + ns.id if ns.id else 'serial ' + repr(ns.serial)}")
        return 1
    if not ns.yes:
        answer = input(f"Decommission '{item.name}' ({item.quantity} on hand)? This is permanent. [y/N] ")
        if answer.strip().lower() not in {"y", "yes", "s", "si", "sí"}:
            LOG.info("Decommission cancelled by user.")
            return 0
    tx = ledger.decommission_item(item.id)
    _print_json(tx.as_dict())
    return 0


@_ledger_command
def _search(ns: argparse.Namespace, ledger: InventoryLedger) -> int:
    query = ns.query or ""
    if ns.scan or ns.image:
        from ..scanner import search_query_for

        candidate = asyncio.run(_recognize(ns))
        if candidate is None:
            return 1
        query = search_query_for(candidate)
        LOG.info(f"Searching for scanned label: {query!r}")
    items = ledger.search(query)
    if ns.json:
        _print_json([it.as_dict() for it in items])
        return 0
    for it in items:
        print(f"{it.quantity:>5}  {it.name}  [{it.device_type or '-'}]  N/S {it.serial_number or '-'}  @ {it.location or '-'}  ({it.id})")
    LOG.info(f"{len(items)} item(s) matched")
    return 0


@_ledger_command
def _history(ns: argparse.Namespace, ledger: InventoryLedger) -> int:
    for tx in ledger.transactions[: ns.limit]:
        print(f"{tx.timestamp}  {tx.type:<8} {tx.quantity:>5}  {tx.item_name}  ({tx.item_id})")
    return 0


@_ledger_command
def _export(ns: argparse.Namespace, ledger: InventoryLedger) -> int:
    path = write_report(ledger.search(ns.search or ""), expand_abs(ns.output_dir))
    print(path)
    return 0


def _read_image(path: str) -> CapturedImage:
    mime, _ = mimetypes.guess_type(path)
    with open(path, "rb") as f:
        data = f.read()
    return CapturedImage(data=data, width=0, height=0, mime_type=mime or "image/jpeg")


async def _recognize(ns: argparse.Namespace) -> Optional[Candidate]:
    """Run one label scan (camera or --image); errors are logged and yield None."""
    from ..capture.session import CaptureSession
    from ..recognition.pipeline import RecognitionPipeline
    from ..recognition.service import OpenRouterRecognitionService
    from ..scanner import LabelScanner

    config = load_recognition(os.getcwd())
    if config is None:
        LOG.error("OPENROUTER_API_KEY missing in env/.env; cannot run label recognition")
        return None
    service = OpenRouterRecognitionService(config)
    session = CaptureSession.from_config(load_camera(os.getcwd()), facing=ns.facing)
    scanner = LabelScanner(session, RecognitionPipeline(service))
    try:
        if ns.image:
            outcome = await scanner.scan_image(_read_image(expand_abs(ns.image)))
        else:
            message = await scanner.start()
            if message:
                LOG.error(message)
                return None
            LOG.info(f"Center the device label in front of the camera; capturing in {ns.delay:.1f}s")
            await asyncio.sleep(ns.delay)
            outcome = await scanner.scan()
    finally:
        await scanner.close()
        await service.aclose()

    if outcome.error or outcome.candidate is None:
        LOG.error(outcome.error or "No result")
        return None
    return outcome.candidate


def _scan(ns: argparse.Namespace) -> int:
    from ..scanner import apply_candidate

    candidate = asyncio.run(_recognize(ns))
    if candidate is None:
        return 1
    _print_json(candidate.as_dict())

    if not ns.add:
        return 0
    draft = apply_candidate(_draft_from_args(ns), candidate)
    try:
        item = _open_ledger(ns).add_item(draft)
    except LedgerError as exc:
        LOG.error(f"Recognized device was not added: {exc}")
        return 1
    _print_json(item.as_dict())
    return 0


def _serve(ns: argparse.Namespace) -> int:
    from ..inventory.frontend import create_app
    import uvicorn

    allow_origins = ns.allow_origins
    if allow_origins and "*" in allow_origins:
        allow_origins = ["*"]

    ledger = _open_ledger(ns)
    app = create_app(
        root_dir=os.getcwd(),
        ledger=ledger,
        enable_scan=not ns.no_scan,
        allow_origins=allow_origins,
    )
    uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="equipment-stock",
        description="Track IT equipment stock and identify devices from label photos.",
    )
    parser.add_argument("--db", help="SQLite file (default: STOCK_DB_PATH or var/stockdb/stock.sqlite3)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging for this run")
    subparsers = parser.add_subparsers(dest="command", required=True)

    add = subparsers.add_parser("add", help="Add a new item with its initial stock.")
    _add_item_args(add, name_required=True)
    add.set_defaults(handler=_add)

    adjust = subparsers.add_parser("adjust", help="Add (positive) or remove (negative) stock.")
    adjust.add_argument("item_id")
    adjust.add_argument("delta", type=int)
    adjust.set_defaults(handler=_adjust)

    decom = subparsers.add_parser("decommission", help="Permanently remove an item (recorded as Baja).")
    target = decom.add_mutually_exclusive_group(required=True)
    target.add_argument("--id")
    target.add_argument("--serial")
    decom.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")
    decom.set_defaults(handler=_decommission)

    search = subparsers.add_parser("search", help="List items, optionally filtered.")
    search.add_argument("query", nargs="?", default="")
    search.add_argument("--json", action="store_true")
    search.add_argument("--scan", action="store_true", help="Search by the serial (or name) read from a device label")
    _add_scan_args(search)
    search.set_defaults(handler=_search)

    history = subparsers.add_parser("history", help="Show the transaction log, most recent first.")
    history.add_argument("--limit", type=int, default=50)
    history.set_defaults(handler=_history)

    export = subparsers.add_parser("export", help="Write the CSV stock report.")
    export.add_argument("--output-dir", default=".")
    export.add_argument("--search", default="")
    export.set_defaults(handler=_export)

    scan = subparsers.add_parser("scan", help="Recognize a device label from the camera or an image file.")
    _add_scan_args(scan)
    scan.add_argument("--add", action="store_true", help="Add the recognized device to the inventory")
    _add_item_args(scan, name_required=False)
    scan.set_defaults(handler=_scan)

    serve = subparsers.add_parser("serve", help="Run the stock JSON API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8001)
    serve.add_argument("--log-level", default="info")
    serve.add_argument("--no-scan", action="store_true", help="Disable the /api/scan endpoint")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    serve.set_defaults(handler=_serve)

    args = parser.parse_args(provided)
    if args.verbose:
        set_level("DEBUG")
    code = args.handler(args)
    LOG.debug(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
