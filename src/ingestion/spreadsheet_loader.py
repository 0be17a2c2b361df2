"""
Spreadsheet loader for FondCAS.

Source exports have title rows above the real header, merged cells and
column names that differ from file to file. The loader scans the first
rows of every sheet for a recognizable header, maps columns by name
patterns and emits one raw record per data row.
"""

import csv
import re
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple
import pandas as pd

from ..domain.models import RawRecord
from ..normalize.text import collapse_whitespace, fold_diacritics, is_blank

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".xlsx", ".xlsm", ".csv"}

PROVIDER_COLUMN_PATTERNS = {
    "name": ["denumire", "den.furnizor", "furnizor", "nume"],
    "address": ["adresa", "sediu"],
    "phone": ["telefon", "tel"],
    "email": ["email", "e-mail"],
    "specialties": ["specialitat"],
}

ALLOCATION_COLUMN_PATTERNS = {
    "name": ["denumire", "den.furnizor", "furnizor", "nume"],
    "address": ["adresa", "sediu"],
    "year": ["anul", "an"],
    "month": ["luna"],
    "service_type": ["tip serviciu", "serviciu", "tip"],
    "allocated": ["alocat", "valoare contract", "valoare"],
    "consumed": ["consumat", "realizat"],
}


class IngestionError(ValueError):
    """Raised when a source file cannot be read."""


def parse_amount(value) -> Optional[float]:
    """
    Parse a monetary amount written in Romanian or plain formatting.
    
    Args:
        value: Cell value such as ``12.345,67``, ``12345.67`` or a number
        
    Returns:
        Float amount, or None when unparsable
    """
    if is_blank(value):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    
    text = re.sub(r'[^\d,.\-]', '', str(value))
    if not re.search(r'\d', text):
        return None
    
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".") if text.count(",") == 1 else text.replace(",", "")
    elif text.count(".") > 1 or re.fullmatch(r'-?\d{1,3}\.\d{3}', text):
        text = text.replace(".", "")
    
    try:
        return float(text)
    except ValueError:
        return None


class SpreadsheetLoader:
    """
    Loads provider and allocation rows from spreadsheet exports.
    """
    
    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize loader with configuration.
        
        Args:
            config: Ingestion section of the configuration
        """
        self.config = config or {}
        self.header_scan_rows = self.config.get("header_scan_rows", 15)
        self.specialty_separator_pattern = re.compile(
            self.config.get("specialty_separators", r"[,;/\n]")
        )
        
        logger.info("Initialized SpreadsheetLoader")
    
    def read_sheets(self, file_path: str) -> Dict[str, pd.DataFrame]:
        """
        Read every sheet of a file without interpreting headers.
        
        Args:
            file_path: Path to an xlsx/xlsm/csv file
            
        Returns:
            Mapping of sheet name to raw cell DataFrame
            
        Raises:
            IngestionError: If the format is unsupported or the file unreadable
        """
        path = Path(file_path)
        suffix = path.suffix.lower()
        if suffix not in SUPPORTED_EXTENSIONS:
            raise IngestionError(f"Unsupported file format: {file_path}")
        
        try:
            if suffix == ".csv":
                # pd.read_csv fixes the column count from the first line and rejects
                # the wider table rows below a short title row, so rows are read raw
                with open(path, newline="", encoding="utf-8-sig") as f:
                    rows = list(csv.reader(f))
                # DataFrame pads the ragged rows to the widest one
                return {path.stem: pd.DataFrame(rows, dtype=object)}
            return pd.read_excel(path, sheet_name=None, header=None, dtype=object)
        except (OSError, ValueError, csv.Error, pd.errors.ParserError) as e:
            raise IngestionError(f"Failed to read {file_path}: {e}")
    
    @staticmethod
    def _matches(value, patterns: Sequence[str]) -> bool:
        if is_blank(value):
            return False
        text = collapse_whitespace(fold_diacritics(str(value)))
        # Short patterns ("an", "tel") must be whole words
        return any(
            re.search(r"\b" + re.escape(p) + r"\b", text) if len(p) <= 3 else p in text
            for p in patterns
        )
    
    def find_header_row(self, sheet: pd.DataFrame,
                        column_patterns: Dict[str, List[str]],
                        required: Sequence[str] = ("name",),
                        any_of: Sequence[str] = ()) -> int:
        """
        Locate the header row among the first rows of a sheet.
        
        Args:
            sheet: Raw cell DataFrame
            column_patterns: Field name -> header substrings
            required: Fields whose header must be present
            any_of: Fields of which at least one header must be present
            
        Returns:
            Row position of the header, or -1 when not found
        """
        for position in range(min(self.header_scan_rows, len(sheet))):
            cells = list(sheet.iloc[position].values)
            present = {
                field for field, patterns in column_patterns.items()
                if any(self._matches(cell, patterns) for cell in cells)
            }
            if all(f in present for f in required) and (not any_of or present.intersection(any_of)):
                return position
        return -1
    
    def build_column_map(self, header_row: Sequence,
                         column_patterns: Dict[str, List[str]]) -> Dict[str, int]:
        """
        Map fields to column positions; the first matching column wins.
        
        Args:
            header_row: Header cell values
            column_patterns: Field name -> header substrings, in priority order
            
        Returns:
            Field name -> column position
        """
        column_map: Dict[str, int] = {}
        for position, cell in enumerate(header_row):
            for field, patterns in column_patterns.items():
                if field not in column_map and self._matches(cell, patterns):
                    column_map[field] = position
                    break
        return column_map
    
    @staticmethod
    def _cell(row: Sequence, column_map: Dict[str, int], field: str) -> Optional[str]:
        position = column_map.get(field)
        if position is None or position >= len(row) or is_blank(row[position]):
            return None
        return collapse_whitespace(str(row[position]))
    
    def split_specialties(self, cell: Optional[str]) -> Tuple[str, ...]:
        if is_blank(cell):
            return ()
        parts = (collapse_whitespace(p) for p in self.specialty_separator_pattern.split(cell))
        return tuple(p for p in parts if p)
    
    def _sheets_with_header(self, file_path: str, column_patterns: Dict[str, List[str]],
                            any_of: Sequence[str]):
        path = Path(file_path)
        if path.name.startswith("~$"):
            logger.info(f"Skipping temporary file {path.name}")
            return
        
        for sheet_name, sheet in self.read_sheets(file_path).items():
            if len(sheet) < 2:
                logger.warning(f"{path.name}#{sheet_name}: insufficient data")
                continue
            
            header_position = self.find_header_row(sheet, column_patterns, any_of=any_of)
            if header_position == -1:
                logger.warning(f"{path.name}#{sheet_name}: no header found")
                continue
            
            column_map = self.build_column_map(list(sheet.iloc[header_position].values), column_patterns)
            logger.info(f"{path.name}#{sheet_name}: header at row {header_position}, columns {column_map}")
            yield sheet_name, sheet, header_position, column_map
    
    def load_providers(self, file_path: str,
                       imported_at: Optional[datetime] = None) -> List[RawRecord]:
        """
        Load provider rows from a spreadsheet export.
        
        Args:
            file_path: Path to the export
            imported_at: Import timestamp (defaults to now, UTC)
            
        Returns:
            Raw records, one per data row with a non-empty name
        """
        imported_at = imported_at or datetime.now(timezone.utc)
        file_name = Path(file_path).name
        records = []
        
        for sheet_name, sheet, header_position, column_map in self._sheets_with_header(
                file_path, PROVIDER_COLUMN_PATTERNS, any_of=("address", "phone")):
            for position in range(header_position + 1, len(sheet)):
                row = list(sheet.iloc[position].values)
                name = self._cell(row, column_map, "name")
                if not name:
                    continue
                records.append(RawRecord(
                    name=name,
                    source_id=f"{file_name}#{sheet_name}:{position}",
                    address=self._cell(row, column_map, "address"),
                    phone=self._cell(row, column_map, "phone"),
                    email=self._cell(row, column_map, "email"),
                    specialties=self.split_specialties(self._cell(row, column_map, "specialties")),
                    imported_at=imported_at,
                ))
        
        logger.info(f"Loaded {len(records)} provider rows from {file_name}")
        return records
    
    def load_allocations(self, file_path: str, year: Optional[int] = None,
                         month: Optional[int] = None,
                         data_source: Optional[str] = None) -> pd.DataFrame:
        """
        Load fund allocation rows from a spreadsheet export.
        
        Provider references are raw names here; they are resolved to
        canonical providers by the matcher.
        
        Args:
            file_path: Path to the export
            year: Period year for files without a year column
            month: Period month for files without a month column
            data_source: Source label (defaults to the file name)
            
        Returns:
            DataFrame with ``provider_name``, ``address``, ``year``, ``month``, ``service_type``,
            ``allocated_amount``, ``consumed_amount`` and ``data_source`` columns
        """
        file_name = Path(file_path).name
        data_source = data_source or file_name
        columns = ["provider_name", "address", "year", "month", "service_type",
                   "allocated_amount", "consumed_amount", "data_source"]
        rows = []
        
        for sheet_name, sheet, header_position, column_map in self._sheets_with_header(
                file_path, ALLOCATION_COLUMN_PATTERNS, any_of=("allocated",)):
            for position in range(header_position + 1, len(sheet)):
                row = list(sheet.iloc[position].values)
                name = self._cell(row, column_map, "name")
                allocated = parse_amount(self._cell(row, column_map, "allocated"))
                row_year = parse_amount(self._cell(row, column_map, "year")) or year
                row_month = parse_amount(self._cell(row, column_map, "month")) or month
                
                if not name or allocated is None or not row_year or not row_month:
                    if name:
                        logger.warning(f"{file_name}#{sheet_name}:{position}: incomplete allocation row skipped")
                    continue
                
                rows.append({
                    "provider_name": name,
                    "address": self._cell(row, column_map, "address"),
                    "year": int(row_year),
                    "month": int(row_month),
                    "service_type": self._cell(row, column_map, "service_type") or "general",
                    "allocated_amount": allocated,
                    "consumed_amount": parse_amount(self._cell(row, column_map, "consumed")),
                    "data_source": data_source,
                })
        
        logger.info(f"Loaded {len(rows)} allocation rows from {file_name}")
        return pd.DataFrame(rows, columns=columns)
