"""Row readers for reference dataset files.

Provides read_rows() as the single entry point. The file type is taken
from the suffix unless given explicitly:
- CSV/TSV: csv.DictReader with chardet encoding detection on a sample,
  BOM handling and delimiter sniffing; rows are streamed
- JSON: a JSON array of objects (loaded whole) or, failing that, JSON Lines
- JSONL: one object per line, streamed
- XLSX: openpyxl in read-only mode, first row as headers, streamed

Reference dumps run to millions of rows, so readers yield rows instead of
building a list. Best-effort parsing: malformed rows produce warnings on
the returned RowStream and are skipped, they never abort the read.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

import chardet
import openpyxl

# Bytes read for encoding detection and delimiter sniffing.
_SAMPLE_BYTES = 64 * 1024
# Warnings kept per file; the rest are only counted.
_MAX_WARNINGS = 100

_SUFFIX_TYPES = {
    ".csv": "csv",
    ".tsv": "csv",
    ".txt": "csv",
    ".json": "json",
    ".jsonl": "jsonl",
    ".ndjson": "jsonl",
    ".xlsx": "xlsx",
}
_SUPPORTED_TYPES = {"csv", "json", "jsonl", "xlsx"}


@dataclass
class RowStream:
    """Lazily parsed rows of one file.

    Attributes:
        path: File being read.
        file_type: csv, json, jsonl or xlsx.
        column_names: Header names, known once the first row is read.
        warnings: Problems met so far (capped; see warning_count).
        warning_count: Total number of problems, including dropped ones.
    """

    path: Path
    file_type: str
    column_names: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    warning_count: int = 0
    _rows: Iterator[dict[str, Any]] | None = None

    def warn(self, message: str) -> None:
        self.warning_count += 1
        if len(self.warnings) < _MAX_WARNINGS:
            self.warnings.append(message)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        if self._rows is None:
            return iter(())
        return self._rows


def detect_file_type(path: Path) -> str:
    """Map a file suffix to a parser type. Raises ValueError for unknown suffixes."""
    file_type = _SUFFIX_TYPES.get(path.suffix.lower())
    if file_type is None:
        raise ValueError(
            f"Cannot infer file type from '{path.name}'. "
            f"Supported suffixes: {', '.join(sorted(_SUFFIX_TYPES))}"
        )
    return file_type


def read_rows(path: Path, file_type: str | None = None) -> RowStream:
    """Open a data file and return a RowStream over its rows.

    Args:
        path: Path to the file on disk.
        file_type: One of 'csv', 'json', 'jsonl', 'xlsx'; inferred from
            the suffix when omitted.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If the file type is unsupported.
    """
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    file_type = (file_type or detect_file_type(path)).lower().strip()
    if file_type not in _SUPPORTED_TYPES:
        raise ValueError(
            f"Unsupported file type: '{file_type}'. "
            f"Supported types: {', '.join(sorted(_SUPPORTED_TYPES))}"
        )

    stream = RowStream(path=path, file_type=file_type)
    readers = {
        "csv": _iter_csv,
        "json": _iter_json,
        "jsonl": _iter_json_lines,
        "xlsx": _iter_xlsx,
    }
    stream._rows = readers[file_type](stream)
    return stream


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------


def _detect_encoding(sample: bytes) -> str:
    """Detect the encoding of a byte sample using chardet.

    Falls back to 'utf-8' if detection fails.
    """
    if sample[:3] == b"\xef\xbb\xbf":
        return "utf-8-sig"

    encoding = chardet.detect(sample).get("encoding")
    if encoding is None:
        return "utf-8"
    if encoding.lower() in ("ascii", "utf-8", "utf8"):
        return "utf-8"
    return encoding


def _read_sample(path: Path) -> bytes:
    with path.open("rb") as fh:
        return fh.read(_SAMPLE_BYTES)


def _iter_csv(stream: RowStream) -> Iterator[dict[str, Any]]:
    sample = _read_sample(stream.path)
    if not sample.strip():
        stream.warn("File is empty")
        return

    encoding = _detect_encoding(sample)
    try:
        dialect = csv.Sniffer().sniff(
            sample.decode(encoding, errors="replace"), delimiters=",;\t|",
        )
        delimiter = dialect.delimiter
    except csv.Error:
        delimiter = ","

    with stream.path.open("r", encoding=encoding, errors="replace", newline="") as fh:
        reader = csv.DictReader(fh, delimiter=delimiter)
        fieldnames = reader.fieldnames
        if not fieldnames:
            stream.warn("File has no header row")
            return
        stream.column_names = [name.strip().lstrip("\ufeff") for name in fieldnames]

        for line_no, row in enumerate(reader, start=2):
            if reader.restkey in row:  # type: ignore[operator]
                stream.warn(f"Row {line_no}: has extra columns, ignored")
            if None in row.values():
                stream.warn(f"Row {line_no}: has fewer columns than header")
            yield {
                clean: row.get(orig)
                for orig, clean in zip(fieldnames, stream.column_names)
            }


# ---------------------------------------------------------------------------
# JSON / JSON Lines
# ---------------------------------------------------------------------------


def _iter_json(stream: RowStream) -> Iterator[dict[str, Any]]:
    """A JSON array of objects, or a single object, else JSON Lines."""
    raw = stream.path.read_bytes()
    if not raw.strip():
        stream.warn("File is empty")
        return
    text = raw.decode(_detect_encoding(raw[:_SAMPLE_BYTES]), errors="replace").strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        yield from _json_lines(stream, text.splitlines())
        return

    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        stream.warn("JSON root is neither an array nor an object")
        return
    for idx, item in enumerate(data, start=1):
        if not isinstance(item, dict):
            stream.warn(f"Row {idx}: not an object, skipped")
            continue
        _track_columns(stream, item)
        yield item


def _iter_json_lines(stream: RowStream) -> Iterator[dict[str, Any]]:
    encoding = _detect_encoding(_read_sample(stream.path))
    with stream.path.open("r", encoding=encoding, errors="replace") as fh:
        yield from _json_lines(stream, fh)


def _json_lines(stream: RowStream, lines: Any) -> Iterator[dict[str, Any]]:
    for line_no, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            stream.warn(f"Line {line_no}: malformed JSON, skipped")
            continue
        if not isinstance(obj, dict):
            stream.warn(f"Line {line_no}: not an object, skipped")
            continue
        _track_columns(stream, obj)
        yield obj


def _track_columns(stream: RowStream, row: dict[str, Any]) -> None:
    """Extend column_names with keys in first-seen order."""
    for key in row:
        if key not in stream.column_names:
            stream.column_names.append(key)


# ---------------------------------------------------------------------------
# XLSX
# ---------------------------------------------------------------------------


def _iter_xlsx(stream: RowStream) -> Iterator[dict[str, Any]]:
    wb = openpyxl.load_workbook(str(stream.path), read_only=True, data_only=True)
    try:
        ws = wb.active
        if ws is None:
            stream.warn("XLSX file has no active sheet")
            return

        rows_iter = ws.iter_rows(values_only=True)
        header = next(rows_iter, None)
        if header is None:
            stream.warn("File is empty or has no header row")
            return
        stream.column_names = [
            str(value).strip() if value is not None else f"column_{i}"
            for i, value in enumerate(header, start=1)
        ]

        for row_no, values in enumerate(rows_iter, start=2):
            if all(v is None for v in values):
                stream.warn(f"Row {row_no}: empty row, skipped")
                continue
            yield dict(zip(stream.column_names, values))
    finally:
        wb.close()
