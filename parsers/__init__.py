"""
Spreadsheet parsers.
"""

from parsers.position_parser import (
    parse_position_sheet,
    parse_position_upload,
    PositionSheetResult,
)

__all__ = [
    "parse_position_sheet",
    "parse_position_upload",
    "PositionSheetResult",
]
