"""
Catalog Console – command-line entry point.

Usage
-----
# Open the discovery view, filter it and print the first page
python main.py --view discovery --search lamp --set sort=trending

# Open a shared link
python main.py --view products --url "/app/products?q=lamp&page=2"

# Reopen the products view where the last session left it
python main.py --view products --resume

# Generate missing SKUs for two drafts and follow the job until it finishes
python main.py --view drafts --generate --targets SPU-1 SPU-2
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from loguru import logger

load_dotenv(override=True)

from config.settings import settings  # noqa: E402 – must be after load_dotenv
from clients.catalog_client import CatalogClient  # noqa: E402
from engine.errors import ConsoleError, ValidationError  # noqa: E402
from engine.list_view import ListView  # noqa: E402
from engine.views import VIEWS, ViewDefinition, get_view  # noqa: E402
from models.fetch import FetchSnapshot  # noqa: E402
from models.query import FieldType  # noqa: E402
from storage.location import NavigationHistory  # noqa: E402
from storage.location_store import LocationStore  # noqa: E402


def _configure_logging() -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="{time:HH:mm:ss} | {level: <8} | {message}",
    )
    if settings.log_file:
        import pathlib

        pathlib.Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB", retention="7 days")


def _parse_assignments(definition: ViewDefinition, assignments: List[str]) -> Dict[str, Any]:
    """Turn ``field=value`` pairs into store changes; list fields use their delimiter."""
    changes: Dict[str, Any] = {}
    for assignment in assignments:
        name, sep, raw = assignment.partition("=")
        name = name.strip()
        if not sep or not name:
            raise ValidationError(assignment, f"Expected field=value, got {assignment!r}")
        if not definition.query.has_field(name):
            raise ValidationError(name, f"Unknown field '{name}' for view '{definition.name}'")
        spec = definition.query.field(name)
        if spec.type is FieldType.LIST:
            changes[name] = [item.strip() for item in raw.split(spec.delimiter) if item.strip()]
        elif raw == "" and spec.nullable:
            changes[name] = None
        else:
            changes[name] = raw
    return changes


def _initial_location(
    definition: ViewDefinition,
    url: Optional[str],
    resume: bool,
    location_store: LocationStore,
) -> NavigationHistory:
    if url:
        if url.startswith("?") or ("/" not in url and "=" in url):
            return NavigationHistory(definition.path, url)
        return NavigationHistory.from_url(url)
    if resume:
        saved = location_store.get(definition.name)
        if saved:
            logger.info(f"Resuming '{definition.name}' at ?{saved}")
            return NavigationHistory(definition.path, saved)
    return NavigationHistory(definition.path)


def _print_page(view: ListView, snapshot: FetchSnapshot) -> None:
    key_fields = view.definition.key_fields
    print(f"{view.href}")
    print(
        f"page {snapshot.page}/{max(snapshot.page_count, 1)} "
        f"· {len(snapshot.items)} of {snapshot.total} rows"
    )
    for row in snapshot.items:
        key = ":".join(str(row.get(name, "")) for name in key_fields)
        title = row.get("title") or row.get("name") or ""
        print(f"  {key}  {title}")
    if snapshot.error:
        print(f"error: {snapshot.error}")


async def _run(args: argparse.Namespace) -> int:
    definition = get_view(args.view)
    location_store = LocationStore()
    location = _initial_location(definition, args.url, args.resume, location_store)

    async with CatalogClient() as client:
        view = ListView(definition, client, location=location, location_store=location_store)
        try:
            await view.open()
            changes = _parse_assignments(definition, args.set or [])
            if args.search is not None:
                if not definition.search_field:
                    raise ValidationError("search", f"View '{definition.name}' has no search field")
                changes[definition.search_field] = args.search
            if changes:
                view.set_filters(**changes)
            if args.page is not None:
                view.set_page(args.page)
            snapshot = await view.settle()
            _print_page(view, snapshot)

            if args.generate:
                await view.generate(args.targets)
                status = await view.job.wait()
                print(f"job: {status.state.value} {status.message or ''}".rstrip())
                if status.ready:
                    print("all targets generated")
                snapshot = await view.settle()
                _print_page(view, snapshot)
        except ValidationError as exc:
            logger.error(f"Invalid input for '{exc.field}': {exc.message}")
            return 2
        except ConsoleError as exc:
            logger.error(f"{exc.__class__.__name__}: {exc}")
            return 1
        finally:
            view.close()
    return 1 if snapshot.error else 0


def main() -> None:
    _configure_logging()

    parser = argparse.ArgumentParser(description="Catalog Console list views")
    parser.add_argument("--view", choices=sorted(VIEWS), default="discovery", help="List view to open.")
    parser.add_argument("--url", type=str, default=None, help="Open the view at this URL or query string.")
    parser.add_argument("--resume", action="store_true", help="Reopen the view with its last saved filters.")
    parser.add_argument("--search", type=str, default=None, help="Free-text search.")
    parser.add_argument(
        "--set",
        action="append",
        metavar="FIELD=VALUE",
        help="Set a filter field; repeat for several. List values use the field's delimiter.",
    )
    parser.add_argument("--page", type=int, default=None, help="Page to show.")
    parser.add_argument("--generate", action="store_true", help="Start the view's background job and follow it.")
    parser.add_argument("--targets", nargs="*", default=None, help="Restrict --generate to these row ids.")
    args = parser.parse_args()
    if args.generate and VIEWS[args.view].job is None:
        parser.error(f"view '{args.view}' has no background job")

    try:
        code = asyncio.run(_run(args))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
