"""
Tabular export of resolved worklists and load progress.

Manifests are Polars DataFrames with one row per load unit (or per series
for progress) and can be written as parquet, json or jsonl.

Cache directory resolution (in order of precedence):
1. --cache-dir CLI argument
2. DICOM_SHARE_LOADER_CACHE_DIR environment variable
3. Default: {platformdirs.user_cache_dir("dicom-share-loader")}
"""

import logging
import os
from pathlib import Path
from typing import Iterable, Optional

import polars as pl
from platformdirs import user_cache_dir

from .constants import CACHE_APP_NAME, CACHE_DIR_ENV_VAR
from .models import SeriesWorklist
from .progress import SeriesProgress

logger = logging.getLogger(__name__)

SUPPORTED_MANIFEST_FORMATS = {"parquet", "json", "jsonl"}

WORKLIST_SCHEMA = {
    "StudyInstanceUID": pl.Utf8,
    "SeriesInstanceUID": pl.Utf8,
    "SOPInstanceUID": pl.Utf8,
    "InstanceNumber": pl.Float64,
    "LoadOrder": pl.Int32,
    "IsHead": pl.Boolean,
}

PROGRESS_SCHEMA = {
    "SeriesInstanceUID": pl.Utf8,
    "TotalExpected": pl.Int32,
    "LoadedCount": pl.Int32,
    "FailedCount": pl.Int32,
}


def get_cache_directory(cli_arg: Optional[str] = None) -> Path:
    """
    Resolve cache directory with fallback chain.

    Args:
        cli_arg: Optional directory from --cache-dir CLI argument

    Returns:
        Resolved Path to the cache directory
    """
    if cli_arg:
        return Path(cli_arg)

    env_var = os.environ.get(CACHE_DIR_ENV_VAR)
    if env_var:
        return Path(env_var)

    return Path(user_cache_dir(CACHE_APP_NAME))


def worklists_to_dataframe(worklists: Iterable[SeriesWorklist]) -> pl.DataFrame:
    """One row per load unit, in load order within each series."""
    rows = []
    for worklist in worklists:
        for order, unit in enumerate(worklist.units):
            rows.append(
                {
                    "StudyInstanceUID": unit.study_uid,
                    "SeriesInstanceUID": unit.series_uid,
                    "SOPInstanceUID": unit.sop_uid,
                    "InstanceNumber": unit.instance_number,
                    "LoadOrder": order,
                    "IsHead": order == 0,
                }
            )
    return pl.DataFrame(rows, schema=WORKLIST_SCHEMA)


def progress_to_dataframe(progress: Iterable[SeriesProgress]) -> pl.DataFrame:
    rows = [
        {
            "SeriesInstanceUID": entry.series_uid,
            "TotalExpected": entry.total_expected,
            "LoadedCount": entry.loaded_count,
            "FailedCount": entry.failed_count,
        }
        for entry in progress
    ]
    return pl.DataFrame(rows, schema=PROGRESS_SCHEMA)


def build_manifest(
    worklists: Iterable[SeriesWorklist], progress: Optional[Iterable[SeriesProgress]] = None
) -> pl.DataFrame:
    """Worklist rows, joined with per-series progress counts when given."""
    df = worklists_to_dataframe(worklists)
    if progress is None:
        return df
    return df.join(progress_to_dataframe(progress), on="SeriesInstanceUID", how="left")


def _split_format_prefix(output_value: str):
    """Return (format, path) if the value uses format:path syntax."""
    if ":" not in output_value:
        return None, output_value

    prefix, path = output_value.split(":", 1)
    if prefix in SUPPORTED_MANIFEST_FORMATS and path:
        return prefix, path

    return None, output_value


def _infer_format_from_suffix(path: Path):
    suffix = path.suffix.lower()
    if suffix == ".parquet":
        return "parquet"
    if suffix == ".json":
        return "json"
    if suffix in (".jsonl", ".ndjson"):
        return "jsonl"
    return None


def resolve_output(output_value: str, format_arg: Optional[str] = None) -> tuple[str, Path]:
    """
    Determine format and path for a manifest destination.

    Format precedence: explicit ``format_arg``, ``format:path`` prefix,
    file suffix, then parquet.

    Raises:
        ValueError: If the resolved format is not supported
    """
    prefix_format, path_str = _split_format_prefix(output_value)
    output_path = Path(path_str)
    target_format = format_arg or prefix_format or _infer_format_from_suffix(output_path) or "parquet"

    if target_format not in SUPPORTED_MANIFEST_FORMATS:
        raise ValueError(f"Unsupported output format: {target_format}")

    return target_format, output_path


def write_manifest(df: pl.DataFrame, output_path: Path, fmt: str) -> Path:
    """Write ``df`` in the requested format, creating parent directories."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "parquet":
        df.write_parquet(str(output_path))
    elif fmt == "json":
        df.write_json(str(output_path))
    elif fmt == "jsonl":
        df.write_ndjson(str(output_path))
    else:
        raise ValueError(f"Unsupported output format: {fmt}")

    logger.info(f"Wrote {df.height} manifest rows to {output_path}")
    return output_path
