"""
DICOM Share Loader

Resolve a token-scoped DICOM share and progressively load its instances:
the first image of every series is fetched and rendered first, the rest of
the series follows in the background.
"""

import asyncio
import logging
from dataclasses import replace

from .client import ShareClient
from .enumerator import TargetEnumerator
from .errors import ShareResolutionError
from .manifest import build_manifest, get_cache_directory, resolve_output, write_manifest
from .navigation import NavigationContext, parse_share_link
from .session import ShareSession, resolve_base_url


def setup_logging(verbose=False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.WARNING
    format_str = '%(levelname)s: %(message)s' if not verbose else '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    logging.basicConfig(
        level=level,
        format=format_str
    )


def _navigation_from_args(args, logger):
    """Parse the share link and apply --password/--series/--instance overrides."""
    context = parse_share_link(args.link)
    if context is None:
        logger.error(f"No share token found in {args.link!r}")
        return None

    password = getattr(args, "password", None)
    if password is not None:
        context = replace(context, reference=replace(context.reference, passphrase=password))

    extra_series = tuple(uid for uid in (getattr(args, "series", None) or ()) if uid)
    extra_sops = tuple(uid for uid in (getattr(args, "instance", None) or ()) if uid)
    if extra_series or extra_sops:
        context = NavigationContext(
            reference=context.reference,
            base_url=context.base_url,
            series_uids=tuple(dict.fromkeys(context.series_uids + extra_series)),
            sop_uids=tuple(dict.fromkeys(context.sop_uids + extra_sops)),
        )
    return context


def _resolve_manifest_destination(args, logger, attr="output"):
    output_value = getattr(args, attr, None)
    if not output_value:
        if getattr(args, "format", None):
            logger.error("--format requires an output destination")
            return None
        return ("print", None)

    try:
        return resolve_output(output_value, getattr(args, "format", None))
    except ValueError as e:
        logger.error(str(e))
        return None


def _emit_manifest(df, destination, logger, verbose=False):
    target_format, output_path = destination
    if target_format == "print":
        print(df)
        return
    write_manifest(df, output_path, target_format)
    if verbose:
        logger.info(f"Manifest written to {output_path}")


async def _resolve_worklists(context, base_url):
    async with ShareClient(base_url, context.reference) as client:
        descriptor = await client.resolve_share()
        enumerator = TargetEnumerator(
            client,
            filter_series_uids=context.series_uids,
            filter_sop_uids=context.sop_uids,
        )
        worklists = await enumerator.resolve(descriptor)
    return descriptor, worklists


def resolve_command(args, logger):
    """Resolve a share into per-series worklists without fetching pixel data."""
    context = _navigation_from_args(args, logger)
    if context is None:
        return 1

    destination = _resolve_manifest_destination(args, logger)
    if destination is None:
        return 1

    base_url = resolve_base_url(getattr(args, "base_url", None), context.base_url)
    if args.verbose:
        logger.info(f"Resolving share at {base_url}")
        if context.series_uids:
            logger.info(f"Series filter: {', '.join(context.series_uids)}")
        if context.sop_uids:
            logger.info(f"Instance filter: {', '.join(context.sop_uids)}")

    try:
        descriptor, worklists = asyncio.run(_resolve_worklists(context, base_url))
    except ShareResolutionError as e:
        logger.error(f"Failed to resolve share: {e}")
        return 1

    if not worklists:
        logger.warning(f"{descriptor.granularity.value} share resolved to no instances")

    _emit_manifest(build_manifest(worklists), destination, logger, args.verbose)
    return 0


async def _run_load(session):
    async with session:
        descriptor = await session.load()
        await session.drain()
        return descriptor, list(session.worklists), session.progress()


def load_command(args, logger):
    """Progressively load every instance of a share and report per-series progress."""
    context = _navigation_from_args(args, logger)
    if context is None:
        return 1

    destination = None
    if getattr(args, "manifest", None):
        destination = _resolve_manifest_destination(args, logger, attr="manifest")
        if destination is None:
            return 1

    blob_root = getattr(args, "blob_dir", None)
    if blob_root is None and getattr(args, "keep_blobs", False):
        blob_root = str(get_cache_directory(getattr(args, "cache_dir", None)) / "blobs")

    max_tail_fetches = getattr(args, "max_tail_fetches", None)
    if max_tail_fetches is not None and max_tail_fetches < 1:
        logger.error("--max-tail-fetches must be at least 1")
        return 1

    session = ShareSession.from_navigation(
        context,
        base_url=getattr(args, "base_url", None),
        blob_root=blob_root,
        max_tail_fetches=max_tail_fetches,
    )
    if args.verbose:
        logger.info(f"Loading share from {session.client.base_url}")
        if blob_root:
            logger.info(f"Storing instance blobs in {blob_root}")

    descriptor, worklists, progress = asyncio.run(_run_load(session))
    if descriptor is None:
        logger.error(session.viewer.status or "Failed to resolve share")
        return 1

    failed = 0
    for entry in progress:
        failed += entry.failed_count
        line = f"{entry.series_uid}: {entry.loaded_count}/{entry.total_expected}"
        if entry.failed_count:
            line += f" ({entry.failed_count} failed)"
        print(line)

    if failed:
        logger.warning(f"{failed} instances failed to load")

    if destination is not None and destination[0] != "print":
        _emit_manifest(build_manifest(worklists, progress), destination, logger, args.verbose)

    return 0
