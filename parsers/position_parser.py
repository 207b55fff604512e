"""
Spreadsheet parser for tender position uploads.

Reads the first sheet of a customer BOQ workbook. The first row is a
header and is skipped; columns are positional:

    A: number   B: type   C: work name   D: unit   E: volume   F: note
"""

from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Optional, Union
import structlog

import pandas as pd

from models.position import PositionRow
from exceptions import PositionUploadError, SpreadsheetParseError

logger = structlog.get_logger(__name__)

COLUMNS = ["number", "kind", "name", "unit", "volume", "note"]

# Sheet must at least reach the work name column
MIN_COLUMNS = 3


@dataclass
class ParseError:
    """Single validation error from parsing."""
    row: int
    field: str
    error: str


@dataclass
class PositionSheetResult:
    """Result of parsing a position sheet."""
    rows: list[PositionRow] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    skipped_blank: int = 0

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


def parse_position_sheet(file: Union[str, Path, BytesIO]) -> PositionSheetResult:
    """
    Parse a position spreadsheet.

    Blank rows are skipped. Rows missing a number or a name are returned
    as they are; the version service reports them.

    Args:
        file: File path or file-like object

    Returns:
        PositionSheetResult with rows in sheet order and any cell errors

    Raises:
        SpreadsheetParseError: If the file cannot be read or has too few columns
    """
    logger.info("parsing_position_sheet", file_type=type(file).__name__)

    try:
        excel = pd.ExcelFile(file, engine="openpyxl")
        df = excel.parse(excel.sheet_names[0], header=None, skiprows=1, dtype=object)
    except Exception as e:
        logger.error("position_sheet_read_failed", error=str(e))
        raise SpreadsheetParseError(
            "Failed to read Excel file",
            details={"original_error": str(e)}
        )

    if df.empty:
        logger.info("position_sheet_empty")
        return PositionSheetResult()

    if df.shape[1] < MIN_COLUMNS:
        raise SpreadsheetParseError(
            f"Expected at least {MIN_COLUMNS} columns (number, type, work name)",
            details={"columns": int(df.shape[1])}
        )

    df = df.iloc[:, :len(COLUMNS)].reindex(columns=range(len(COLUMNS)))
    df.columns = COLUMNS

    result = PositionSheetResult()

    for idx, row in df.iterrows():
        row_num = idx + 2  # Excel row (1-indexed + header)

        cells = {column: _cell_text(row[column]) for column in COLUMNS if column != "volume"}
        raw_volume = row["volume"]

        if not any(cells.values()) and _is_blank(raw_volume):
            result.skipped_blank += 1
            continue

        volume = _parse_volume(raw_volume)
        if volume is None and not _is_blank(raw_volume):
            result.errors.append(ParseError(
                row=row_num,
                field="volume",
                error=f"Not a number: {raw_volume}"
            ))
            continue

        result.rows.append(PositionRow(
            number=_number_text(row["number"]),
            kind=cells["kind"],
            name=cells["name"],
            unit=cells["unit"],
            volume=volume,
            note=cells["note"],
        ))

    logger.info(
        "position_sheet_parsed",
        rows=len(result.rows),
        skipped_blank=result.skipped_blank,
        errors=len(result.errors)
    )

    return result


def parse_position_upload(content: bytes) -> list[PositionRow]:
    """
    Parse uploaded workbook bytes into rows.

    Raises:
        SpreadsheetParseError: If the file cannot be read
        PositionUploadError: If any cell is invalid
    """
    result = parse_position_sheet(BytesIO(content))

    if not result.success:
        raise PositionUploadError([
            {"row": e.row, "field": e.field, "error": e.error}
            for e in result.errors
        ])

    return result.rows


# ===================
# HELPERS
# ===================

def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and pd.isna(value):
        return True
    return isinstance(value, str) and not value.strip()


def _cell_text(value) -> Optional[str]:
    """Cell as stripped text, None for blanks."""
    if _is_blank(value):
        return None
    return str(value).strip()


def _number_text(value) -> Optional[str]:
    """Position number as text; whole floats lose their ".0"."""
    if isinstance(value, float) and not pd.isna(value) and value.is_integer():
        return str(int(value))
    return _cell_text(value)


def _parse_volume(value) -> Optional[float]:
    """
    Parse a volume cell.

    Accepts numbers and text with a decimal comma or spaces ("1 250,5").
    """
    if _is_blank(value):
        return None

    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip().replace("\u00a0", "").replace(" ", "").replace(",", ".")
    try:
        return float(text)
    except ValueError:
        return None
