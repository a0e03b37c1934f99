"""
Small utilities: spreadsheet loader and native-type conversion.

Rationale:
- Turn the uploaded bytes into an ordered list of row dicts keyed by the
  header row, which is all the pipeline needs from the spreadsheet.
- Empty cells become absent keys (not None/NaN); cells beyond the header
  width are dropped; pandas/numpy scalars become plain Python values.
"""

import io
import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .errors import InputError, ParseError

logger = logging.getLogger(__name__)

EXCEL_SOURCE = "excel_file"
CSV_SOURCE = "csv_file"


def to_native(value: Any) -> Any:
    """Convert pandas/numpy scalars to Python native types."""
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, np.generic):
        return value.item()
    return value


def _is_blank(value: Any) -> bool:
    if isinstance(value, str):
        return not value.strip()
    return bool(pd.api.types.is_scalar(value) and pd.isna(value))


def _read_excel(content: bytes) -> pd.DataFrame:
    try:
        workbook = pd.ExcelFile(io.BytesIO(content), engine="openpyxl")
    except Exception as e:
        raise ParseError(f"Failed to parse spreadsheet: {e}")

    with workbook:
        if not workbook.sheet_names:
            raise InputError("Spreadsheet has no readable worksheet")

        try:
            return workbook.parse(workbook.sheet_names[0])
        except Exception as e:
            raise ParseError(f"Failed to parse spreadsheet: {e}")


def _read_csv(content: bytes) -> pd.DataFrame:
    try:
        return pd.read_csv(io.BytesIO(content))
    except pd.errors.EmptyDataError:
        raise InputError("CSV file has no header row")
    except (UnicodeDecodeError, pd.errors.ParserError) as e:
        raise ParseError(f"Failed to parse CSV: {e}")


def frame_to_rows(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Header-keyed row dicts; blank cells and unnamed overflow columns are dropped."""
    columns = [c for c in df.columns if not str(c).startswith("Unnamed:")]
    rows = []
    for record in df[columns].to_dict(orient="records"):
        row = {str(k): to_native(v) for k, v in record.items() if not _is_blank(v)}
        if row:
            rows.append(row)
    return rows


def load_rows(
    filename: Optional[str],
    content: bytes,
    row_limit: Optional[int] = None,
) -> Tuple[List[Dict[str, Any]], str]:
    """
    Parse an uploaded .xlsx or .csv file.

    Returns (rows, data_source tag). Raises InputError for empty uploads or
    workbooks without a sheet, ParseError for bytes that cannot be decoded.
    """
    if not content:
        raise InputError("Uploaded file is empty")

    name = (filename or "").lower()
    if name.endswith(".csv"):
        df, source = _read_csv(content), CSV_SOURCE
    else:
        df, source = _read_excel(content), EXCEL_SOURCE

    if len(df.columns) == 0:
        raise InputError("Spreadsheet has no readable worksheet")

    rows = frame_to_rows(df)
    logger.info(f"Parsed {filename or 'upload'}: {len(rows)} rows, columns={list(df.columns)}")

    if row_limit and len(rows) > row_limit:
        rows = rows[:row_limit]
        logger.info(f"Truncated to {row_limit} rows")

    return rows, source
