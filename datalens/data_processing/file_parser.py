"""
file_parser.py - delimited text -> Dataset.

- Encoding detection (BOM, chardet, candidate decoding)
- Delimiter sniffing (TAB heuristic, csv.Sniffer, frequency count)
- Tokenizing delegated to pandas.read_csv, every cell kept as a string
- Header row becomes the ColumnSet, in file order
- Any failure raises ParseError; nothing is published from here
"""

from __future__ import annotations

import io
import csv
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Tuple, Union

import chardet
import pandas as pd

from ..core.errors import ParseError
from ..core.types import Dataset
from ..utils.logger import get_logger

LOGGER = get_logger("file_parser")

# ========================================================================================
# CONSTANTS
# ========================================================================================

SUPPORTED_EXTENSIONS = {"csv", "tsv", "txt"}

DEFAULT_MAX_FILE_SIZE_MB = 50.0
DEFAULT_CSV_DELIMITERS = (",", ";", "\t", "|")
DEFAULT_CSV_ENCODINGS = ("utf-8", "utf-8-sig", "cp1250", "latin-1")
DEFAULT_SNIFF_BYTES = 10_000
CHARDET_MIN_CONFIDENCE = 0.7

# ========================================================================================
# DATACLASSES
# ========================================================================================

@dataclass(frozen=True)
class ParseOptions:
    """Parsing options."""
    max_file_size_mb: float = DEFAULT_MAX_FILE_SIZE_MB
    csv_delimiters: Tuple[str, ...] = DEFAULT_CSV_DELIMITERS
    csv_try_encodings: Tuple[str, ...] = DEFAULT_CSV_ENCODINGS
    csv_sniff_bytes: int = DEFAULT_SNIFF_BYTES
    strip_header: bool = True

# ========================================================================================
# VALIDATION
# ========================================================================================

def _validate_file_size(file_bytes: bytes, max_size_mb: float, filename: str) -> None:
    size_mb = len(file_bytes) / 1e6
    if max_size_mb and size_mb > max_size_mb:
        raise ParseError(f"File {filename} is too large: {size_mb:.1f} MB (limit {max_size_mb:.0f} MB)")


def _extension(file_name: Optional[str]) -> Optional[str]:
    if not file_name or "." not in file_name:
        return None
    return file_name.rsplit(".", 1)[-1].lower()

# ========================================================================================
# DETECTION
# ========================================================================================

def _decodes(data: bytes, encoding: str) -> bool:
    try:
        data.decode(encoding)
        return True
    except (UnicodeDecodeError, LookupError):
        return False


def _detect_encoding(data: bytes, candidates: Tuple[str, ...], sniff_bytes: int) -> str:
    """
    Detect the text encoding.

    Order: BOM, chardet guess on the leading sample, candidate list. A guess
    is accepted only if the whole payload decodes with it.

    Args:
        data: Raw bytes
        candidates: Encodings tried in order
        sniff_bytes: How many leading bytes chardet inspects

    Returns:
        Encoding name

    Raises:
        ParseError: If no encoding decodes the content
    """
    if data.startswith(b"\xef\xbb\xbf"):
        LOGGER.debug("UTF-8 BOM detected")
        return "utf-8-sig"
    if data.startswith(b"\xff\xfe") or data.startswith(b"\xfe\xff"):
        LOGGER.debug("UTF-16 BOM detected")
        return "utf-16"

    result = chardet.detect(data[:sniff_bytes]) or {}
    guess = (result.get("encoding") or "").lower()
    confidence = result.get("confidence") or 0.0
    if guess and confidence > CHARDET_MIN_CONFIDENCE:
        if _decodes(data, guess):
            LOGGER.debug(f"Chardet detected: {guess} (confidence: {confidence:.2%})")
            return guess
        LOGGER.debug(f"Chardet guess {guess} does not decode the whole file")

    for encoding in candidates:
        if _decodes(data, encoding):
            LOGGER.debug(f"Encoding detected: {encoding}")
            return encoding

    raise ParseError("Could not decode file with any supported encoding")


def _sniff_delimiter(sample_text: str, delimiters: Tuple[str, ...]) -> str:
    """Pick the delimiter of a delimited text sample."""
    header = sample_text.splitlines()[0] if sample_text else ""
    counts = {d: header.count(d) for d in delimiters}

    # TAB-dominant header = TSV
    tab_count = counts.get("\t", 0)
    if tab_count and tab_count > max((v for k, v in counts.items() if k != "\t"), default=0):
        LOGGER.debug("Delimiter detected (heuristic): TAB")
        return "\t"

    try:
        dialect = csv.Sniffer().sniff(sample_text, delimiters="".join(delimiters))
        LOGGER.debug(f"Delimiter detected (Sniffer): {dialect.delimiter!r}")
        return dialect.delimiter
    except csv.Error as e:
        LOGGER.debug(f"CSV Sniffer failed: {e}")

    most_common = max(counts.items(), key=lambda x: x[1]) if counts else (",", 0)
    if most_common[1] >= 1:
        LOGGER.debug(f"Delimiter detected (count): {most_common[0]!r}")
        return most_common[0]

    # single-column file
    return ","


def _check_row_widths(text: str, sep: str) -> None:
    """
    Reject rows with more fields than the header.

    pandas would otherwise promote the surplus leading field to an index and
    shift every value one column left. Shorter rows are padded with "".
    """
    reader = csv.reader(io.StringIO(text), delimiter=sep)
    try:
        header = next((row for row in reader if row), None)
        if not header:
            return
        for row in reader:
            if len(row) > len(header):
                raise ParseError(
                    f"Malformed delimited file: line {reader.line_num} has {len(row)} fields, "
                    f"header has {len(header)}"
                )
    except csv.Error as e:
        raise ParseError(f"Malformed delimited file: {e}") from e

# ========================================================================================
# PUBLIC API
# ========================================================================================

def dataset_from_rows(rows: Sequence[Mapping[str, Any]], *, source_name: Optional[str] = None) -> Dataset:
    """
    Build a Dataset from already tokenized rows (header-keyed mappings).

    The ColumnSet is the key order of the first row.

    Raises:
        ParseError: If there are no rows or the first row has no keys
    """
    if not rows:
        raise ParseError("The file contains no data rows")
    dataset = Dataset.from_rows(rows, source_name=source_name)
    if not dataset.columns:
        raise ParseError("Could not determine the header row")
    return dataset


def parse_table(
    file_bytes: Union[bytes, bytearray],
    file_name: Optional[str] = None,
    opts: Optional[ParseOptions] = None,
) -> Dataset:
    """
    Parse delimited text with a header row into a Dataset.

    Args:
        file_bytes: Raw file content
        file_name: Optional file name; its extension selects the delimiter policy
        opts: Parsing options

    Returns:
        Dataset whose cells are all strings

    Raises:
        ParseError: Empty file, unsupported extension, undecodable content,
            missing header or no data rows
    """
    opts = opts or ParseOptions()
    name = file_name or "<upload>"

    if file_bytes is None or len(file_bytes) == 0:
        raise ParseError("The file is empty")
    data = bytes(file_bytes)
    _validate_file_size(data, opts.max_file_size_mb, name)

    ext = _extension(file_name)
    if ext is not None and ext not in SUPPORTED_EXTENSIONS:
        raise ParseError(
            f"Unsupported extension: .{ext} (supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))})"
        )

    encoding = _detect_encoding(data, opts.csv_try_encodings, opts.csv_sniff_bytes)
    text = data.decode(encoding)
    if not text.strip():
        raise ParseError("The file is empty")

    sep = "\t" if ext == "tsv" else _sniff_delimiter(text[: opts.csv_sniff_bytes], opts.csv_delimiters)
    LOGGER.info(f"Parsing {name} ({len(data)} bytes, encoding={encoding}, sep={sep!r})")

    _check_row_widths(text, sep)

    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=sep,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            index_col=False,
            engine="python",
        )
    except pd.errors.EmptyDataError as e:
        raise ParseError("Could not determine the header row") from e
    except (pd.errors.ParserError, ValueError) as e:
        raise ParseError(f"Malformed delimited file: {e}") from e

    header = [str(c).strip() if opts.strip_header else str(c) for c in df.columns]
    if not header or all(c == "" or c.startswith("Unnamed:") for c in header):
        raise ParseError("Could not determine the header row")
    df.columns = header

    rows = df.fillna("").to_dict(orient="records")
    dataset = dataset_from_rows(rows, source_name=file_name)
    LOGGER.info(f"Parsed {name}: {dataset.record_count} rows x {len(dataset.columns)} cols")
    return dataset


def parse_text(text: str, file_name: Optional[str] = None, opts: Optional[ParseOptions] = None) -> Dataset:
    """Same as `parse_table` for already-decoded text."""
    return parse_table((text or "").encode("utf-8"), file_name=file_name, opts=opts)
