from __future__ import annotations

import argparse
import asyncio
import json
import mimetypes
import os
import sys
from dataclasses import replace
from typing import List, Sequence

from ..config import load_config
from ..domain.export import NothingToExportError, build_csv_bytes
from ..domain.models import Provider, ReceiptItem, ReceiptStatus, SourceFile
from ..domain.stats import compute_stats
from ..logging import get_logger
from ..orchestrator.lifecycle import ReceiptManager
from ..paths import expand_abs
from ..preferences import PreferencesError, PreferencesStore

LOG = get_logger("cli-main")

PROVIDER_CHOICES = [p.value.lower() for p in Provider]


def _read_source(path: str) -> SourceFile:
    abs_path = expand_abs(path)
    with open(abs_path, "rb") as f:
        content = f.read()
    media_type, _ = mimetypes.guess_type(abs_path)
    if not media_type and abs_path.lower().endswith((".heic", ".heif")):
        media_type = "image/heic"
    return SourceFile(
        filename=os.path.basename(abs_path),
        content=content,
        media_type=media_type or "application/octet-stream",
    )


def _store() -> PreferencesStore:
    config = load_config(os.getcwd())
    return PreferencesStore.for_project(config, root_dir=os.getcwd())


def _log_progress(items: List[ReceiptItem]) -> None:
    done = sum(1 for i in items if i.status in (ReceiptStatus.COMPLETED, ReceiptStatus.ERROR))
    LOG.debug(f"Progress: {done}/{len(items)} receipt(s) finished")


def _handle_scan(ns: argparse.Namespace) -> int:
    store = _store()

    def _settings():
        settings = store.extraction_settings()
        if ns.provider:
            settings = replace(settings, provider=Provider.parse(ns.provider))
        if ns.api_key:
            settings = replace(settings, api_key=ns.api_key)
        if ns.model:
            settings = replace(settings, model=ns.model)
        return settings

    if not _settings().has_credential:
        LOG.error("No API key configured. Run 'receipt-scanner settings set --api-key ...' or pass --api-key.")
        return 2

    sources: List[SourceFile] = []
    for path in ns.files:
        try:
            sources.append(_read_source(path))
        except OSError as exc:
            LOG.error(f"Cannot read {path}: {exc}")
            return 2

    manager = ReceiptManager(_settings)
    manager.subscribe(_log_progress)
    items = asyncio.run(manager.enqueue(sources))

    out = {
        "items": [i.to_dict() for i in items],
        "stats": compute_stats(items).to_dict(),
    }
    print(json.dumps(out, ensure_ascii=False, indent=2))

    if ns.csv:
        try:
            content = build_csv_bytes(items)
        except NothingToExportError as exc:
            LOG.warning(str(exc))
        else:
            target = expand_abs(ns.csv)
            os.makedirs(os.path.dirname(target) or ".", exist_ok=True)
            with open(target, "wb") as f:
                f.write(content)
            LOG.info(f"Wrote CSV: {target}")

    failed = [i for i in items if i.status is ReceiptStatus.ERROR]
    for item in failed:
        LOG.error(f"{item.source.filename}: {item.error_message}")
    return 1 if failed else 0


def _handle_serve(ns: argparse.Namespace) -> int:
    from ..frontend import create_app
    import uvicorn

    allow_origins = ns.allow_origins
    if allow_origins and "*" in allow_origins:
        allow_origins = ["*"]

    app = create_app(
        root_dir=os.getcwd(),
        static_dir=ns.static_dir,
        allow_origins=allow_origins,
        serve_static=not ns.api_only,
    )
    uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
    return 0


def _handle_settings_show(ns: argparse.Namespace) -> int:
    store = _store()
    prefs = store.load()
    print(json.dumps({"provider": prefs.provider.value, "hasApiKey": prefs.has_api_key, "path": store.path}))
    return 0


def _handle_settings_set(ns: argparse.Namespace) -> int:
    if ns.api_key is None and ns.provider is None:
        LOG.error("Nothing to set. Provide --api-key and/or --provider.")
        return 2
    store = _store()
    try:
        prefs = store.save(
            api_key=ns.api_key,
            provider=Provider.parse(ns.provider) if ns.provider else None,
        )
    except PreferencesError as exc:
        LOG.error(str(exc))
        return 1
    print(json.dumps({"provider": prefs.provider.value, "hasApiKey": prefs.has_api_key}))
    return 0


def _handle_settings_clear(ns: argparse.Namespace) -> int:
    try:
        _store().clear_api_key()
    except PreferencesError as exc:
        LOG.error(str(exc))
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="receipt-scanner",
        description="Extract shop, date, total and moms from Danish receipts with a vision LLM.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Process receipt images once and print the results as JSON.")
    scan.add_argument("files", nargs="+", help="Receipt images (JPG, PNG, HEIC, ...)")
    scan.add_argument("--csv", help="Also write completed receipts to this CSV file")
    scan.add_argument("--provider", choices=PROVIDER_CHOICES, help="Override the stored provider")
    scan.add_argument("--api-key", help="Override the stored API key for this run")
    scan.add_argument("--model", help="Override the provider's default model")
    scan.set_defaults(handler=_handle_scan)

    serve = subparsers.add_parser("serve", help="Run the receipt API and optional frontend server.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8001)
    serve.add_argument("--log-level", default="info")
    serve.add_argument("--static-dir", help="Override static frontend directory relative to project root")
    serve.add_argument("--api-only", action="store_true", help="Serve JSON API without static frontend")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    serve.set_defaults(handler=_handle_serve)

    settings = subparsers.add_parser("settings", help="Show or change the stored API key and provider.")
    settings_sub = settings.add_subparsers(dest="settings_command", required=True)
    show = settings_sub.add_parser("show", help="Print the stored provider and whether a key is set")
    show.set_defaults(handler=_handle_settings_show)
    set_cmd = settings_sub.add_parser("set", help="Store an API key and/or provider")
    set_cmd.add_argument("--api-key")
    set_cmd.add_argument("--provider", choices=PROVIDER_CHOICES)
    set_cmd.set_defaults(handler=_handle_settings_set)
    clear = settings_sub.add_parser("clear", help="Forget the stored API key")
    clear.set_defaults(handler=_handle_settings_clear)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    args = build_parser().parse_args(provided)
    code = args.handler(args)
    LOG.debug(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
