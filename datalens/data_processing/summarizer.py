"""
Per-column descriptive statistics for a Dataset.

Numeric column inference:
- "first_row" (default): a column is numeric iff its value in the first row
  parses as a number. A column whose first cell is text is skipped even when
  later cells are numeric.
- "full_scan": every non-blank value must parse and at least one must exist.

Aggregates are formatted as strings with two decimals ("1.50").
"""

from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Iterable, List, Literal, Optional, Sequence

import numpy as np
import pandas as pd

from ..core.errors import EmptyColumn
from ..core.types import ColumnSummary, Dataset, SummaryTable
from ..utils.logger import get_logger

LOGGER = get_logger("summarizer")

Mode = Literal["first_row", "full_scan"]
_MODES = ("first_row", "full_scan")

# Numeric text: ASCII decimal literal with optional exponent, or unsigned 0x/0o/0b integer.
_DECIMAL = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)
_PREFIXED = re.compile(r"0(?:[xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)", re.ASCII)
_CENT = Decimal("0.01")
_WIDE = Context(prec=400)


def parse_number(value: Optional[str]) -> Optional[float]:
    """Finite float for numeric text, else None. Blank text is not a number."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if _DECIMAL.fullmatch(text):
        number = float(text)
    elif _PREFIXED.fullmatch(text):
        try:
            number = float(int(text, 0))
        except OverflowError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _fmt(value: float) -> str:
    # exact binary value, ties rounded away from zero; -0.0 + 0.0 == 0.0
    exact = Decimal(float(value) + 0.0)
    return format(exact.quantize(_CENT, rounding=ROUND_HALF_UP, context=_WIDE), "f")


def is_numeric(dataset: Dataset, column: str, mode: Mode = "first_row") -> bool:
    if not dataset.rows:
        return False
    if mode == "first_row":
        return parse_number(dataset.rows[0].get(column)) is not None
    non_blank = [v for v in dataset.column_values(column) if str(v).strip()]
    return bool(non_blank) and all(parse_number(v) is not None for v in non_blank)


def summarize_column(column: str, values: Iterable[Optional[str]]) -> ColumnSummary:
    """
    Aggregate the values of one column that parse as numbers.

    Raises:
        EmptyColumn: If none of the values parses
    """
    numbers: List[float] = [n for n in (parse_number(v) for v in values) if n is not None]
    if not numbers:
        raise EmptyColumn(column)
    arr = np.asarray(numbers, dtype=float)
    total = float(np.sum(arr))
    return ColumnSummary(
        mean=_fmt(total / arr.size),
        median=_fmt(np.median(arr)),
        max=_fmt(np.max(arr)),
        min=_fmt(np.min(arr)),
        sum=_fmt(total),
    )


def summarize(dataset: Dataset, columns: Optional[Sequence[str]] = None, mode: Mode = "first_row") -> SummaryTable:
    """
    Build the SummaryTable of `dataset`.

    Args:
        dataset: Parsed dataset
        columns: Column order to follow (defaults to the dataset's ColumnSet)
        mode: Numeric inference policy, "first_row" or "full_scan"

    Returns:
        Mapping column -> ColumnSummary for numeric columns, in column order
    """
    if mode not in _MODES:
        raise ValueError(f"mode must be one of {_MODES}, got {mode!r}")
    cols = tuple(columns) if columns is not None else dataset.columns

    table: SummaryTable = {}
    for col in cols:
        if not is_numeric(dataset, col, mode):
            continue
        try:
            table[col] = summarize_column(col, dataset.column_values(col))
        except EmptyColumn as e:
            LOGGER.warning(f"Skipping column: {e}")
    LOGGER.debug(f"Summarized {len(table)}/{len(cols)} columns (mode={mode})")
    return table


def summary_to_frame(table: SummaryTable) -> pd.DataFrame:
    """SummaryTable as a DataFrame (one row per column) for display."""
    records = [{"column": col, **stats.to_dict()} for col, stats in table.items()]
    return pd.DataFrame.from_records(records, columns=["column", "mean", "median", "max", "min", "sum"])
