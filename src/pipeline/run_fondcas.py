"""
Main pipeline orchestrator for FondCAS.

Coordinates the reconciliation run from spreadsheet ingestion through
matching to the canonical provider catalogue, and exposes the estimator
and the suggestion ranker on the command line.
"""

import argparse
import json
import logging
import sys
import time
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import pandas as pd

from ..blocking.provider_index import ProviderIndex
from ..domain.models import FundAllocation, RawRecord
from ..estimate.fund_estimator import FundEstimator
from ..ingestion.spreadsheet_loader import IngestionError, SpreadsheetLoader
from ..ingestion.table_loader import (
    load_allocation_table, load_candidate_table, load_report_table,
)
from ..match.provider_matcher import MatchReport, ProviderMatcher
from ..merge.allocation_merger import select_allocation
from ..merge.merger import summarize_providers
from ..normalize.config import DEFAULT_CONFIG_PATH, load_config, validate_config
from ..rank.suggestion_ranker import SuggestionRanker
from ..reports.user_reports import as_aware

logger = logging.getLogger(__name__)


class ReconciliationPipeline:
    """
    Batch orchestrator for FondCAS.
    
    Loads provider spreadsheets, reconciles them into canonical providers
    and specialties and writes the catalogue and its maintenance reports.
    """
    
    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH,
                 config: Optional[Dict] = None):
        """
        Initialize pipeline with configuration.
        
        Args:
            config_path: Path to configuration file
            config: Already loaded configuration (takes precedence over the path)
        """
        self.config_path = config_path
        self.config = config if config is not None else load_config(config_path)
        if not validate_config(self.config):
            logger.warning("Configuration has problems; continuing with the given values")
        
        self.loader = SpreadsheetLoader(self.config.get("ingestion", {}))
        self.matcher = ProviderMatcher(self.config)
        
        self.pipeline_start_time = None
        self.stage_times = {}
        
        logger.info("Initialized FondCAS pipeline")
    
    def _start_stage_timer(self, stage_name: str):
        """Start timing for a pipeline stage."""
        self.stage_times[stage_name] = time.time()
        logger.info(f"Starting stage: {stage_name}")
    
    def _end_stage_timer(self, stage_name: str):
        """End timing for a pipeline stage."""
        if stage_name in self.stage_times:
            duration = time.time() - self.stage_times[stage_name]
            self.stage_times[stage_name] = duration
            logger.info(f"Completed stage: {stage_name} in {duration:.2f} seconds")
    
    def ingest(self, paths: Sequence[str]) -> Tuple[List[RawRecord], List[str]]:
        """
        Load raw provider records from every input file.
        
        A file that cannot be read is logged and skipped.
        
        Args:
            paths: Spreadsheet or CSV paths
            
        Returns:
            Tuple of (records, failed paths)
        """
        self._start_stage_timer("ingestion")
        records = []
        failed = []
        
        for path in paths:
            try:
                records.extend(self.loader.load_providers(path))
            except IngestionError as e:
                logger.error(f"Skipping {path}: {e}")
                failed.append(path)
        
        logger.info(f"Ingested {len(records)} records from {len(paths) - len(failed)} files")
        self._end_stage_timer("ingestion")
        return records, failed
    
    def reconcile(self, records: Iterable[RawRecord],
                  index: Optional[ProviderIndex] = None) -> Tuple[ProviderIndex, MatchReport]:
        """
        Match records against the index, creating it when none is given.
        
        Args:
            records: Raw records
            index: Existing provider index
            
        Returns:
            Tuple of (index, match report)
        """
        self._start_stage_timer("matching")
        if index is None:
            index = self.matcher.build_index()
        report = self.matcher.match_batch(records, index)
        self._end_stage_timer("matching")
        return index, report
    
    def resolve_allocations(self, paths: Sequence[str],
                            index: ProviderIndex) -> Tuple[List[FundAllocation], pd.DataFrame]:
        """
        Load allocation exports and attach them to canonical providers.
        
        Args:
            paths: Allocation export paths
            index: Reconciled provider index
            
        Returns:
            Tuple of (resolved allocations, rows whose provider was not found)
        """
        self._start_stage_timer("allocations")
        allocations = []
        unresolved = []
        
        for path in paths:
            try:
                rows = self.loader.load_allocations(path)
            except IngestionError as e:
                logger.error(f"Skipping {path}: {e}")
                continue
            
            for row in rows.to_dict("records"):
                provider_id = self.matcher.resolve_provider_id(
                    row["provider_name"], row.get("address"), index)
                if provider_id is None:
                    unresolved.append(row)
                    continue
                consumed = row["consumed_amount"]
                allocations.append(FundAllocation(
                    provider_id=provider_id,
                    year=row["year"],
                    month=row["month"],
                    service_type=row["service_type"],
                    allocated_amount=row["allocated_amount"],
                    consumed_amount=None if pd.isna(consumed) else consumed,
                    data_source=row["data_source"],
                ))
        
        if unresolved:
            logger.warning(f"{len(unresolved)} allocation rows did not match a provider")
        logger.info(f"Resolved {len(allocations)} allocations")
        self._end_stage_timer("allocations")
        return allocations, pd.DataFrame(unresolved)
    
    def unmapped_specialties(self, records: Iterable[RawRecord]) -> pd.DataFrame:
        """List specialty labels that no variant mapping covers."""
        labels = [label for record in records for label in record.specialties]
        unmapped = self.matcher.specialty_normalizer.find_unmapped(labels)
        if not unmapped.empty:
            logger.warning(f"{len(unmapped)} specialty labels have no mapping")
        return unmapped
    
    def run(self, paths: Sequence[str], output_dir: Optional[str] = None,
            allocation_paths: Sequence[str] = (),
            index: Optional[ProviderIndex] = None) -> Dict[str, Any]:
        """
        Run the complete reconciliation.
        
        Args:
            paths: Provider spreadsheet paths
            output_dir: Directory for output files (optional)
            allocation_paths: Allocation export paths (optional)
            index: Existing provider index to reconcile into
            
        Returns:
            Run summary
        """
        self.pipeline_start_time = time.time()
        logger.info(f"Starting FondCAS reconciliation for {len(paths)} files")
        
        records, failed = self.ingest(paths)
        index, report = self.reconcile(records, index)
        unmapped = self.unmapped_specialties(records)
        allocations, unresolved = self.resolve_allocations(allocation_paths, index)
        
        providers = list(index)
        summary = {
            "files": len(paths),
            "failed_files": failed,
            "records": len(records),
            "outcomes": report.counts,
            "created_providers": len(report.created_provider_ids),
            "updated_providers": len(report.updated_provider_ids),
            "created_specialties": len(report.created_specialty_ids),
            "catalogue": summarize_providers(providers),
            "unmapped_specialty_labels": len(unmapped),
            "allocations": len(allocations),
            "unresolved_allocations": len(unresolved),
            "stage_times": dict(self.stage_times),
            "total_duration": time.time() - self.pipeline_start_time,
        }
        
        if output_dir:
            self._save_results(index, report, unmapped, allocations, output_dir)
        
        logger.info(f"Reconciliation completed in {summary['total_duration']:.2f} seconds")
        return summary
    
    def _save_results(self, index: ProviderIndex, report: MatchReport,
                      unmapped: pd.DataFrame, allocations: List[FundAllocation],
                      output_path: str):
        """Save reconciliation results to the given directory."""
        output_dir = Path(output_path)
        output_dir.mkdir(parents=True, exist_ok=True)
        
        providers = sorted((p.to_dict() for p in index), key=lambda p: p["provider_id"])
        specialties = sorted((s.to_dict() for s in index.specialties.values()),
                             key=lambda s: s["name"])
        
        with open(output_dir / "providers.json", "w", encoding="utf-8") as f:
            json.dump(providers, f, ensure_ascii=False, indent=2)
        with open(output_dir / "specialties.json", "w", encoding="utf-8") as f:
            json.dump(specialties, f, ensure_ascii=False, indent=2)
        
        report.to_dataframe().to_csv(output_dir / "match_log.csv", index=False)
        unmapped.to_csv(output_dir / "unmapped_specialties.csv", index=False)
        if allocations:
            pd.DataFrame([asdict(a) for a in allocations]).to_csv(
                output_dir / "allocations.csv", index=False)
        
        logger.info(f"Results saved to {output_path}")


def parse_reference_time(value: Optional[str]) -> datetime:
    """Parse an ISO timestamp for the CLI, defaulting to now (UTC)."""
    if not value:
        return datetime.now(timezone.utc)
    return as_aware(pd.Timestamp(value).to_pydatetime())


def run_estimate(args, config: Dict) -> Dict[str, Any]:
    """Estimate fund availability for one provider from exchange files."""
    now = parse_reference_time(args.now)
    allocations = load_allocation_table(args.allocations)
    reports = load_report_table(args.reports) if args.reports else []
    
    allocation = select_allocation(allocations, args.provider, now, args.service_type)
    provider_reports = [r for r in reports if r.provider_id == args.provider]
    status = FundEstimator(config.get("estimator", {})).estimate(allocation, provider_reports, now)
    
    result = {"provider_id": args.provider, "evaluated_at": now.isoformat()}
    result.update(status.to_dict())
    return result


def run_suggest(args, config: Dict) -> List[Dict[str, Any]]:
    """Rank suggestion candidates for a query."""
    candidates = load_candidate_table(args.candidates)
    ranker = SuggestionRanker(config.get("ranker", {}))
    return [s.to_dict() for s in ranker.rank(args.query, candidates, limit=args.limit)]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="FondCAS provider catalogue and fund availability")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Configuration file path")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    subparsers = parser.add_subparsers(dest="command", required=True)
    
    reconcile = subparsers.add_parser("reconcile", help="Reconcile provider spreadsheets")
    reconcile.add_argument("inputs", nargs="+", help="Provider spreadsheets (xlsx, xlsm, csv)")
    reconcile.add_argument("--allocations", nargs="*", default=[], help="Allocation exports")
    reconcile.add_argument("--output", help="Output directory path")
    
    estimate = subparsers.add_parser("estimate", help="Estimate fund availability for a provider")
    estimate.add_argument("--allocations", required=True, help="Resolved allocations CSV")
    estimate.add_argument("--reports", help="User reports CSV")
    estimate.add_argument("--provider", required=True, help="Provider ID")
    estimate.add_argument("--service-type", help="Service type (merged view when omitted)")
    estimate.add_argument("--now", help="Reference time, ISO 8601 (defaults to now)")
    
    suggest = subparsers.add_parser("suggest", help="Rank typeahead suggestions")
    suggest.add_argument("query", help="Search query")
    suggest.add_argument("--candidates", required=True, help="Candidates CSV (kind,id,name,subtitle)")
    suggest.add_argument("--limit", type=int, help="Maximum number of results")
    
    return parser


def main(argv: Optional[Sequence[str]] = None):
    """Main entry point for the FondCAS command line."""
    args = build_parser().parse_args(argv)
    
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    
    try:
        if args.command == "reconcile":
            pipeline = ReconciliationPipeline(args.config)
            summary = pipeline.run(args.inputs, output_dir=args.output,
                                   allocation_paths=args.allocations)
            
            print("\n" + "=" * 50)
            print("RECONCILIATION SUMMARY")
            print("=" * 50)
            print(f"Records: {summary['records']:,}")
            print(f"Created: {summary['outcomes']['created']:,}")
            print(f"Merged: {summary['outcomes']['merged']:,}")
            print(f"Skipped: {summary['outcomes']['skipped']:,}")
            print(f"Unmapped specialty labels: {summary['unmapped_specialty_labels']:,}")
            print(f"Total Duration: {summary['total_duration']:.2f} seconds")
            print("=" * 50)
            if summary["failed_files"]:
                sys.exit(1)
        else:
            config = load_config(args.config)
            if args.command == "estimate":
                result = run_estimate(args, config)
            else:
                result = run_suggest(args, config)
            print(json.dumps(result, ensure_ascii=False, indent=2))
    
    except (IngestionError, OSError, ValueError) as e:
        logger.error(f"FondCAS {args.command} failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
