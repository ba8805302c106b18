"""Click-based command-line interface for dicom-share-loader."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional
from types import SimpleNamespace

import click

from .cli_core import (
    setup_logging,
    resolve_command,
    load_command,
)
from .manifest import SUPPORTED_MANIFEST_FORMATS


CommandCallable = Callable[[object, logging.Logger], int]


def _invoke_command(func: CommandCallable, **kwargs: Any) -> None:
    """Invoke command helpers and map errors to Click exceptions."""
    args = kwargs
    setup_logging(bool(args.get("verbose", False)))
    logger = logging.getLogger(__name__)
    rc = func(SimpleNamespace(**args), logger)
    if rc != 0:
        raise click.ClickException(f"{func.__name__} failed with exit code {rc}")


def common_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator adding shared server/credential/filter/verbose options."""
    func = click.option(
        "-v",
        "--verbose",
        is_flag=True,
        help="Enable detailed logging",
    )(func)
    func = click.option(
        "--instance",
        "instance",
        multiple=True,
        help="Only load this SOPInstanceUID (repeatable; study and series shares).",
    )(func)
    func = click.option(
        "--series",
        "series",
        multiple=True,
        help="Only load this SeriesInstanceUID (repeatable; study shares only).",
    )(func)
    func = click.option(
        "--password",
        help="Share password (overrides the one in the link).",
    )(func)
    func = click.option(
        "--base-url",
        help="Share server base URL. Defaults to the link origin, then $DICOM_SHARE_LOADER_BASE_URL.",
    )(func)
    return func


@click.group()
def cli() -> None:
    """Progressively load DICOM images from token-scoped share links."""


@cli.command("resolve")
@click.argument("link")
@common_options
@click.option(
    "-o",
    "--output",
    help="Write the worklist manifest here (parquet/json/jsonl, or format:path). Prints when omitted.",
)
@click.option(
    "--format",
    "format",
    type=click.Choice(sorted(SUPPORTED_MANIFEST_FORMATS)),
    help="Manifest format (overrides suffix detection).",
)
def resolve_click(
    *,
    link: str,
    base_url: Optional[str],
    password: Optional[str],
    series: tuple[str, ...],
    instance: tuple[str, ...],
    verbose: bool,
    output: Optional[str],
    format: Optional[str],
) -> None:
    """Resolve a share link into per-series worklists without fetching images."""
    _invoke_command(
        resolve_command,
        link=link,
        base_url=base_url,
        password=password,
        series=series,
        instance=instance,
        verbose=verbose,
        output=output,
        format=format,
    )


@cli.command("load")
@click.argument("link")
@common_options
@click.option(
    "--max-tail-fetches",
    type=int,
    help="Cap concurrent background fetches per session (unbounded by default).",
)
@click.option(
    "--blob-dir",
    type=click.Path(path_type=str),
    help="Keep fetched instance files in this directory instead of memory.",
)
@click.option(
    "--keep-blobs",
    is_flag=True,
    default=False,
    help="Keep fetched instance files under the cache directory.",
)
@click.option(
    "--cache-dir",
    type=click.Path(path_type=str),
    help="Cache directory used by --keep-blobs.",
)
@click.option(
    "--manifest",
    help="Write worklist and progress manifest here (parquet/json/jsonl, or format:path).",
)
@click.option(
    "--format",
    "format",
    type=click.Choice(sorted(SUPPORTED_MANIFEST_FORMATS)),
    help="Manifest format (overrides suffix detection).",
)
def load_click(
    *,
    link: str,
    base_url: Optional[str],
    password: Optional[str],
    series: tuple[str, ...],
    instance: tuple[str, ...],
    verbose: bool,
    max_tail_fetches: Optional[int],
    blob_dir: Optional[str],
    keep_blobs: bool,
    cache_dir: Optional[str],
    manifest: Optional[str],
    format: Optional[str],
) -> None:
    """Load every image of a share, first image of each series first."""
    if blob_dir and keep_blobs:
        raise click.BadOptionUsage(
            option_name="--blob-dir",
            message="--blob-dir cannot be combined with --keep-blobs",
        )
    _invoke_command(
        load_command,
        link=link,
        base_url=base_url,
        password=password,
        series=series,
        instance=instance,
        verbose=verbose,
        max_tail_fetches=max_tail_fetches,
        blob_dir=blob_dir,
        keep_blobs=keep_blobs,
        cache_dir=cache_dir,
        manifest=manifest,
        format=format,
    )
