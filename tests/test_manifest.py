from pathlib import Path

import polars as pl
import pytest

from dicom_share_loader.manifest import (
    PROGRESS_SCHEMA,
    WORKLIST_SCHEMA,
    build_manifest,
    get_cache_directory,
    progress_to_dataframe,
    resolve_output,
    worklists_to_dataframe,
    write_manifest,
)
from dicom_share_loader.models import LoadUnit, SeriesWorklist
from dicom_share_loader.progress import SeriesProgress


@pytest.fixture
def worklists():
    return [
        SeriesWorklist.build(
            "st",
            "a",
            [LoadUnit("st", "a", "a2", 2), LoadUnit("st", "a", "a1", 1), LoadUnit("st", "a", "ax")],
        ),
        SeriesWorklist.build("st", "b", [LoadUnit("st", "b", "b1", 1)]),
    ]


def test_worklist_dataframe_rows_follow_load_order(worklists):
    df = worklists_to_dataframe(worklists)

    assert df.schema == pl.Schema(WORKLIST_SCHEMA)
    assert df["SOPInstanceUID"].to_list() == ["a1", "a2", "ax", "b1"]
    assert df["LoadOrder"].to_list() == [0, 1, 2, 0]
    assert df["IsHead"].to_list() == [True, False, False, True]
    assert df["InstanceNumber"].to_list() == [1.0, 2.0, None, 1.0]


def test_empty_worklists_keep_schema():
    df = worklists_to_dataframe([])
    assert df.height == 0
    assert df.columns == list(WORKLIST_SCHEMA)


def test_progress_dataframe():
    df = progress_to_dataframe([SeriesProgress("a", 3, 2, 1)])
    assert df.schema == pl.Schema(PROGRESS_SCHEMA)
    assert df.row(0) == ("a", 3, 2, 1)


def test_build_manifest_joins_progress(worklists):
    df = build_manifest(worklists, [SeriesProgress("a", 3, 3, 1)])

    assert df.height == 4
    assert df.filter(pl.col("SeriesInstanceUID") == "a")["FailedCount"].to_list() == [1, 1, 1]
    assert df.filter(pl.col("SeriesInstanceUID") == "b")["LoadedCount"].to_list() == [None]


def test_build_manifest_without_progress_is_worklist(worklists):
    assert build_manifest(worklists).columns == list(WORKLIST_SCHEMA)


@pytest.mark.parametrize(
    "value,format_arg,expected",
    [
        ("out.parquet", None, ("parquet", Path("out.parquet"))),
        ("out.json", None, ("json", Path("out.json"))),
        ("out.ndjson", None, ("jsonl", Path("out.ndjson"))),
        ("jsonl:out.txt", None, ("jsonl", Path("out.txt"))),
        ("json:out.txt", "parquet", ("parquet", Path("out.txt"))),
        ("out", None, ("parquet", Path("out"))),
        ("s3:bucket", None, ("parquet", Path("s3:bucket"))),
    ],
)
def test_resolve_output(value, format_arg, expected):
    assert resolve_output(value, format_arg) == expected


def test_resolve_output_rejects_unknown_format():
    with pytest.raises(ValueError, match="Unsupported output format"):
        resolve_output("out.csv", "csv")


@pytest.mark.parametrize("fmt,reader", [("parquet", pl.read_parquet), ("json", pl.read_json), ("jsonl", pl.read_ndjson)])
def test_write_manifest_formats(worklists, tmp_path, fmt, reader):
    path = tmp_path / "nested" / f"manifest.{fmt}"
    write_manifest(worklists_to_dataframe(worklists), path, fmt)

    df = reader(path)
    assert df["SOPInstanceUID"].to_list() == ["a1", "a2", "ax", "b1"]


def test_write_manifest_rejects_unknown_format(worklists, tmp_path):
    with pytest.raises(ValueError):
        write_manifest(worklists_to_dataframe(worklists), tmp_path / "x.csv", "csv")


def test_cache_directory_precedence(monkeypatch, tmp_path):
    monkeypatch.setenv("DICOM_SHARE_LOADER_CACHE_DIR", str(tmp_path / "env"))
    assert get_cache_directory(str(tmp_path / "cli")) == tmp_path / "cli"
    assert get_cache_directory() == tmp_path / "env"

    monkeypatch.delenv("DICOM_SHARE_LOADER_CACHE_DIR")
    assert get_cache_directory().name == "dicom-share-loader"
