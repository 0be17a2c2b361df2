"""
Table loaders for FondCAS.

Reads the plain tabular exchange files used by the command line: resolved
fund allocations, user reports and suggestion candidates.
"""

import logging
from typing import List
import pandas as pd

from ..domain.models import FundAllocation, SuggestionCandidate, UserReport
from ..normalize.text import is_blank
from ..reports.user_reports import ReportValidationError, as_utc, parse_report_kind
from .spreadsheet_loader import IngestionError, parse_amount

logger = logging.getLogger(__name__)

ALLOCATION_COLUMNS = ["provider_id", "year", "month", "service_type", "allocated_amount"]
REPORT_COLUMNS = ["provider_id", "kind", "reported_at"]
CANDIDATE_COLUMNS = ["kind", "id", "name"]


def _read_table(file_path: str, required_columns: List[str]) -> pd.DataFrame:
    try:
        df = pd.read_csv(file_path, dtype=str, keep_default_na=False)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise IngestionError(f"Failed to read {file_path}: {e}")
    
    missing = [c for c in required_columns if c not in df.columns]
    if missing:
        raise IngestionError(f"{file_path} is missing columns: {missing}")
    return df


def allocations_from_dataframe(df: pd.DataFrame) -> List[FundAllocation]:
    """
    Convert allocation rows into FundAllocations, skipping unusable rows.
    
    Args:
        df: DataFrame with allocation columns
        
    Returns:
        List of FundAllocation
    """
    allocations = []
    for position, row in df.iterrows():
        allocated = parse_amount(row.get("allocated_amount"))
        year = parse_amount(row.get("year"))
        month = parse_amount(row.get("month"))
        if is_blank(row.get("provider_id")) or allocated is None or not year or not month:
            logger.warning(f"Skipping allocation row {position}: incomplete")
            continue
        
        allocations.append(FundAllocation(
            provider_id=str(row["provider_id"]).strip(),
            year=int(year),
            month=int(month),
            service_type=str(row.get("service_type") or "general").strip() or "general",
            allocated_amount=allocated,
            consumed_amount=parse_amount(row.get("consumed_amount")),
            data_source=str(row.get("data_source") or "").strip(),
        ))
    return allocations


def load_allocation_table(file_path: str) -> List[FundAllocation]:
    """Load resolved allocations from a CSV file."""
    allocations = allocations_from_dataframe(_read_table(file_path, ALLOCATION_COLUMNS))
    logger.info(f"Loaded {len(allocations)} allocations from {file_path}")
    return allocations


def load_report_table(file_path: str) -> List[UserReport]:
    """
    Load user reports from a CSV file.
    
    Rows with an unknown kind or an unparsable timestamp are skipped.
    
    Args:
        file_path: CSV with ``provider_id,kind,reported_at[,submitter_hash,comment]``
        
    Returns:
        List of UserReport
    """
    df = _read_table(file_path, REPORT_COLUMNS)
    reports = []
    for position, row in df.iterrows():
        try:
            kind = parse_report_kind(row["kind"])
            reported_at = pd.to_datetime(row["reported_at"], utc=True).to_pydatetime()
        except (ReportValidationError, ValueError, TypeError) as e:
            logger.warning(f"Skipping report row {position}: {e}")
            continue
        
        reports.append(UserReport(
            provider_id=str(row["provider_id"]).strip(),
            kind=kind,
            reported_at=as_utc(reported_at),
            submitter_hash=str(row.get("submitter_hash") or ""),
            comment=row.get("comment") or None,
        ))
    
    logger.info(f"Loaded {len(reports)} reports from {file_path}")
    return reports


def load_candidate_table(file_path: str) -> List[SuggestionCandidate]:
    """Load suggestion candidates from a CSV file with ``kind,id,name[,subtitle]`` columns."""
    df = _read_table(file_path, CANDIDATE_COLUMNS)
    return [
        SuggestionCandidate(
            kind=str(row["kind"]).strip(),
            candidate_id=str(row["id"]).strip(),
            name=str(row["name"]).strip(),
            subtitle=(str(row.get("subtitle")).strip() or None) if row.get("subtitle") else None,
        )
        for _, row in df.iterrows()
        if not is_blank(row["name"])
    ]
