"""
loader.py

Reads an uploaded rate-card file into a header list and one dict per data row.

Supports: .csv .tsv .txt .xlsx .xlsm .xls .json

Public API:
    upload = load_upload("path/to/rate_cards.csv")
    upload.headers    -> ["Marketplace", "Category", ...]
    upload.rows       -> [{"Marketplace": "Amazon", ...}, ...]

Every cell is kept as text so that the field parsers see exactly what the
seller typed. A file without a usable header row raises UploadFormatError;
everything else is reported per row further down the pipeline.
"""

from __future__ import annotations

import csv
import io
import json
import warnings
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import chardet
import pandas as pd

from ratecard_recon.errors import UploadFormatError

TEXT_FORMATS = {".csv", ".tsv", ".txt"}
EXCEL_FORMATS = {".xlsx", ".xlsm", ".xls"}
JSON_FORMATS = {".json"}
ALL_FORMATS = TEXT_FORMATS | EXCEL_FORMATS | JSON_FORMATS

DELIMITERS = [",", ";", "\t", "|"]


@dataclass
class LoadedUpload:
    headers: list[str]
    rows: list[dict[str, Any]]
    detected_format: str
    detected_encoding: Optional[str] = None
    delimiter: Optional[str] = None
    sheet_name: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    source_lines: list[int] = field(default_factory=list)

    @property
    def row_numbers(self) -> list[int]:
        if len(self.source_lines) == len(self.rows):
            return list(self.source_lines)
        # header is line 1
        return [index + 2 for index in range(len(self.rows))]


# ══════════════════════════════════════════════════════════════════════════════
# ENCODING
# ══════════════════════════════════════════════════════════════════════════════

def detect_encoding(raw: bytes) -> str:
    result = chardet.detect(raw)
    return result.get("encoding") or "utf-8"


def read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line by line.

    Each line tries UTF-8, then the detected encoding, then latin-1, and
    finally CP1252 with replacement, so a file that mixes encodings (common
    after copy-pasting between spreadsheet tools) still loads.
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc:
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    return "\n".join(decoded_lines).lstrip("\ufeff")


# ══════════════════════════════════════════════════════════════════════════════
# DELIMITER DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def detect_delimiter(text: str) -> str:
    """
    Infer the delimiter from sample lines.

    csv.Sniffer gets the first try; when it gives up, each candidate is scored
    by how consistently it splits rows into the same number of columns.
    """
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters="".join(DELIMITERS)).delimiter
        except csv.Error:
            pass

    best_delim = ","
    best_score = float("-inf")
    sample_text = "\n".join(sample_lines)

    for delim in DELIMITERS:
        rows = [
            row
            for row in csv.reader(io.StringIO(sample_text), delimiter=delim)
            if any(cell.strip() for cell in row)
        ]
        if not rows:
            continue
        widths = Counter(len(row) for row in rows)
        mode_width, mode_count = widths.most_common(1)[0]
        score = mode_width * 2.0 + (mode_count / len(rows)) * mode_width
        if len(rows[0]) == mode_width:
            score += 1.0
        if mode_width == 1:
            score -= 10.0
        if score > best_score:
            best_score = score
            best_delim = delim

    return best_delim


# ══════════════════════════════════════════════════════════════════════════════
# TABLE ASSEMBLY
# ══════════════════════════════════════════════════════════════════════════════

def _clean_headers(columns: list[Any]) -> list[str]:
    headers = []
    for index, column in enumerate(columns):
        text = "" if column is None else str(column).strip()
        if not text or text.startswith("Unnamed:"):
            text = f"column_{index}"
        headers.append(text)
    return headers


def _frame_to_upload(df: pd.DataFrame, line_numbers: Optional[list[int]] = None,
                     **meta: Any) -> LoadedUpload:
    if len(df.columns) == 0 or all(str(column).startswith("Unnamed:") for column in df.columns):
        raise UploadFormatError("Upload has no header row")

    headers = _clean_headers(list(df.columns))
    df = df.fillna("")
    df.columns = headers

    rows: list[dict[str, Any]] = []
    source_lines: list[int] = []
    for position, record in enumerate(df.to_dict(orient="records")):
        if all(str(value).strip() == "" for value in record.values()):
            continue
        rows.append({key: str(value) for key, value in record.items()})
        if line_numbers is not None and position < len(line_numbers):
            source_lines.append(line_numbers[position])
        else:
            source_lines.append(position + 2)
    return LoadedUpload(headers=headers, rows=rows, source_lines=source_lines, **meta)


def record_start_lines(text: str, delimiter: str) -> list[int]:
    """
    First physical line of every non-blank record, header included.

    Blank lines are skipped the same way the frame reader skips them, and a
    quoted cell spanning several lines counts from the line it opens on.
    """
    starts: list[int] = []
    reader = csv.reader(io.StringIO(text), delimiter=delimiter)
    previous = 0
    for record in reader:
        start = previous + 1
        previous = reader.line_num
        if not record or (len(record) == 1 and not record[0].strip()):
            continue
        starts.append(start)
    return starts


def parse_upload_text(text: str, *, delimiter: Optional[str] = None,
                      detected_format: str = "csv",
                      detected_encoding: Optional[str] = None) -> LoadedUpload:
    """Parse delimited text; quoted fields use doubled quotes for escaping."""
    text = text.lstrip("\ufeff")
    if not text.strip():
        raise UploadFormatError("Upload is empty; expected a header row")

    delimiter = delimiter or detect_delimiter(text)
    bad_lines: list[list[str]] = []

    def keep_bad_line(fields: list[str]) -> list[str]:
        bad_lines.append(fields)
        return fields

    sep = r"\|" if delimiter == "|" else delimiter
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", pd.errors.ParserWarning)
        try:
            df = pd.read_csv(
                io.StringIO(text),
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                sep=sep,
                engine="python",
                on_bad_lines=keep_bad_line,
            )
        except pd.errors.EmptyDataError as exc:
            raise UploadFormatError("Upload is empty; expected a header row") from exc
        except (pd.errors.ParserError, ValueError) as exc:
            raise UploadFormatError(f"Could not parse delimited upload: {exc}") from exc

    try:
        line_numbers = record_start_lines(text, delimiter)[1:]
    except csv.Error:
        line_numbers = None

    upload = _frame_to_upload(
        df,
        line_numbers=line_numbers,
        detected_format=detected_format,
        detected_encoding=detected_encoding,
        delimiter=delimiter,
    )
    if bad_lines:
        upload.warnings.append(
            f"{len(bad_lines)} row(s) had more cells than the header; extra cells were ignored"
        )
    return upload


def _load_text(path: Path, suffix: str) -> LoadedUpload:
    raw = path.read_bytes()
    encoding = detect_encoding(raw)
    text = read_text_safely(raw, encoding)
    delimiter = "\t" if suffix == ".tsv" else None
    return parse_upload_text(
        text,
        delimiter=delimiter,
        detected_format=suffix.lstrip("."),
        detected_encoding=encoding,
    )


def _load_excel(path: Path, suffix: str, sheet_name: Optional[str]) -> LoadedUpload:
    if suffix == ".xls":
        try:
            import xlrd  # noqa: F401
        except ImportError as exc:
            raise UploadFormatError(".xls uploads require xlrd: pip install ratecard-recon[excel-legacy]") from exc

    try:
        with pd.ExcelFile(path) as workbook:
            all_sheets = list(workbook.sheet_names)
    except Exception as exc:
        raise UploadFormatError(f"Could not open workbook: {exc}") from exc

    warnings_out: list[str] = []
    if sheet_name is not None:
        if sheet_name not in all_sheets:
            raise UploadFormatError(f"Sheet '{sheet_name}' not found. Available: {all_sheets}")
        chosen = sheet_name
    else:
        chosen = all_sheets[0]
        if len(all_sheets) > 1:
            warnings_out.append(
                f"Multiple sheets found ({len(all_sheets)} total); used '{chosen}'. "
                f"Ignored: {all_sheets[1:]}"
            )

    try:
        df = pd.read_excel(path, sheet_name=chosen, dtype=str)
    except Exception as exc:
        raise UploadFormatError(f"Could not load sheet '{chosen}': {exc}") from exc

    upload = _frame_to_upload(df, detected_format=suffix.lstrip("."), sheet_name=chosen)
    upload.warnings.extend(warnings_out)
    return upload


def _load_json(path: Path) -> LoadedUpload:
    """
    A JSON array of row objects, or an object holding one under ``rows``.

    Nested values (a ``slabs`` list, a ``payload`` object) are passed through
    untouched for the normalizer.
    """
    raw = path.read_bytes()
    encoding = detect_encoding(raw)
    try:
        data = json.loads(read_text_safely(raw, encoding))
    except json.JSONDecodeError as exc:
        raise UploadFormatError(f"Invalid JSON upload: {exc}") from exc

    records = data.get("rows") if isinstance(data, dict) else data
    if not isinstance(records, list) or not records:
        raise UploadFormatError("JSON upload must be a non-empty array of row objects")
    if not all(isinstance(item, dict) for item in records):
        raise UploadFormatError("JSON upload rows must be objects")

    headers: list[str] = []
    for record in records:
        for key in record:
            if str(key) not in headers:
                headers.append(str(key))
    if not headers:
        raise UploadFormatError("Upload has no header row")

    rows = [{str(key): value for key, value in record.items()} for record in records]
    return LoadedUpload(headers=headers, rows=rows, detected_format="json", detected_encoding=encoding)


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def load_upload(path: "str | Path", sheet_name: Optional[str] = None) -> LoadedUpload:
    """
    Load any supported upload.

    Raises:
        FileNotFoundError  if the file does not exist.
        UploadFormatError  if the format is unsupported or there is no header row.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    if suffix not in ALL_FORMATS:
        supported = ", ".join(sorted(ALL_FORMATS))
        raise UploadFormatError(f"Unsupported format '{suffix}'. Supported: {supported}")

    if suffix in TEXT_FORMATS:
        return _load_text(path, suffix)
    if suffix in EXCEL_FORMATS:
        return _load_excel(path, suffix, sheet_name)
    return _load_json(path)
