"""
Fund availability estimator for FondCAS.

Blends a provider's monthly allocation with recent community reports into
a single status with a confidence level. The blend is rule-based so every
status can be explained: the allocation sets a base level, and recency
weighted reports can move it by at most one step.
"""

import calendar
import logging
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple
import numpy as np

from ..domain.models import FundAllocation, FundLevel, FundStatus, ReasonCode, ReportKind, UserReport
from ..normalize.text import is_blank
from ..reports.user_reports import as_aware, as_utc, reports_in_window

logger = logging.getLogger(__name__)

LEAN_AVAILABLE = "available"
LEAN_EXHAUSTED = "exhausted"

# Levels ordered from least to most available
_LEVEL_STEPS = [FundLevel.LIKELY_EXHAUSTED, FundLevel.UNCERTAIN, FundLevel.LIKELY_AVAILABLE]


class FundEstimator:
    """
    Estimates whether government-funded slots are still available.
    
    All tuning constants come from the ``estimator`` configuration section.
    """
    
    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize estimator with configuration.
        
        Args:
            config: Estimator section of the configuration
        """
        self.config = config or {}
        self.window_hours = float(self.config.get("window_hours", 48))
        self.decay = self.config.get("decay", "linear")
        self.decay_tau_hours = float(self.config.get("decay_tau_hours", 12.0))
        self.available_ratio_threshold = self.config.get("available_ratio_threshold", 0.15)
        self.pull_margin = self.config.get("pull_margin", 1.0)
        self.pull_dominance_ratio = self.config.get("pull_dominance_ratio", 2.0)
        self.allocation_confidence = self.config.get("allocation_confidence", 0.8)
        self.elapsed_confidence_min = self.config.get("elapsed_confidence_min", 0.3)
        self.elapsed_confidence_max = self.config.get("elapsed_confidence_max", 0.6)
        self.no_allocation_confidence = self.config.get("no_allocation_confidence", 0.1)
        self.reports_only_confidence_max = self.config.get("reports_only_confidence_max", 0.3)
        self.per_report_confidence = self.config.get("per_report_confidence", 0.05)
        self.max_report_confidence = self.config.get("max_report_confidence", 0.15)
        self.max_confidence = self.config.get("max_confidence", 0.95)
        
        if self.decay not in ("linear", "exponential"):
            logger.warning(f"Unknown decay '{self.decay}', using linear")
            self.decay = "linear"
        
        logger.info(f"Initialized FundEstimator ({self.decay} decay over {self.window_hours:g}h)")
    
    def estimate(self, allocation: Optional[FundAllocation],
                 reports: Iterable[UserReport], now: datetime) -> FundStatus:
        """
        Estimate fund availability as of ``now``.
        
        Args:
            allocation: Allocation for the provider (per service type or merged), or None
            reports: User reports for the provider; only the trailing window is used
            now: Reference instant
            
        Returns:
            FundStatus
        """
        # Calendar fields follow the offset of now, the same month select_allocation picks
        now = as_aware(now)
        days_in_month = calendar.monthrange(now.year, now.month)[1]
        days_remaining = days_in_month - now.day
        
        weighted_available, weighted_exhausted, qualifying = self.weigh_reports(reports, now)
        report_confidence = min(self.max_report_confidence,
                                self.per_report_confidence * qualifying)
        lean = self._lean(weighted_available, weighted_exhausted)
        
        if not self._is_usable(allocation, now):
            if qualifying == 0:
                return FundStatus(
                    level=FundLevel.UNKNOWN,
                    confidence=self.no_allocation_confidence,
                    reason=ReasonCode.NO_DATA,
                    days_remaining=days_remaining,
                )
            return FundStatus(
                level=FundLevel.UNKNOWN,
                confidence=min(self.reports_only_confidence_max,
                               self.no_allocation_confidence + report_confidence),
                reason=ReasonCode.COMMUNITY_REPORTS_ONLY,
                lean=lean,
                days_remaining=days_remaining,
                weighted_available=weighted_available,
                weighted_exhausted=weighted_exhausted,
                qualifying_reports=qualifying,
            )
        
        level, confidence, remaining_ratio = self.base_level(allocation, days_remaining, days_in_month)
        adjusted = self.adjust_for_reports(level, weighted_available, weighted_exhausted)
        if adjusted != level:
            logger.debug(f"Reports moved level from {level.value} to {adjusted.value}")
        
        return FundStatus(
            level=adjusted,
            confidence=min(self.max_confidence, confidence + report_confidence),
            reason=ReasonCode.ALLOCATION_AND_REPORTS if qualifying else ReasonCode.ALLOCATION_DATA,
            lean=lean,
            remaining_ratio=remaining_ratio,
            days_remaining=days_remaining,
            weighted_available=weighted_available,
            weighted_exhausted=weighted_exhausted,
            qualifying_reports=qualifying,
        )
    
    def base_level(self, allocation: FundAllocation, days_remaining: int,
                   days_in_month: int) -> Tuple[FundLevel, float, Optional[float]]:
        """
        Level implied by the allocation alone.
        
        Args:
            allocation: Usable allocation with a positive allocated amount
            days_remaining: Days left in the month after today
            days_in_month: Length of the month
            
        Returns:
            Tuple of (level, confidence, remaining ratio or None)
        """
        if is_blank(allocation.consumed_amount):
            return (FundLevel.UNCERTAIN,
                    self.elapsed_confidence(days_remaining, days_in_month),
                    None)
        
        allocated = float(allocation.allocated_amount)
        consumed = max(0.0, float(allocation.consumed_amount))
        remaining_ratio = (allocated - consumed) / allocated
        return self.level_for_ratio(remaining_ratio), self.allocation_confidence, remaining_ratio
    
    def level_for_ratio(self, remaining_ratio: float) -> FundLevel:
        if remaining_ratio > self.available_ratio_threshold:
            return FundLevel.LIKELY_AVAILABLE
        if remaining_ratio > 0:
            return FundLevel.UNCERTAIN
        return FundLevel.LIKELY_EXHAUSTED
    
    def elapsed_confidence(self, days_remaining: int, days_in_month: int) -> float:
        """Confidence growing as the month runs out (funds deplete late in the month)."""
        elapsed = 1.0 - max(0, min(days_remaining, days_in_month)) / days_in_month
        return self.elapsed_confidence_min + (
            self.elapsed_confidence_max - self.elapsed_confidence_min
        ) * elapsed
    
    def report_weights(self, ages_hours: np.ndarray) -> np.ndarray:
        """
        Recency weights for report ages.
        
        Args:
            ages_hours: Report ages in hours (inside the window)
            
        Returns:
            Weights in [0, 1], near 1 for fresh reports and near 0 at the window edge
        """
        ages_hours = np.clip(ages_hours, 0.0, self.window_hours)
        if self.decay == "exponential":
            return np.exp(-ages_hours / self.decay_tau_hours)
        return np.clip(1.0 - ages_hours / self.window_hours, 0.0, 1.0)
    
    def weigh_reports(self, reports: Iterable[UserReport], now: datetime) -> Tuple[float, float, int]:
        """
        Weighted counts of availability reports in the trailing window.
        
        Long-wait and good-service reports are informational and ignored.
        
        Args:
            reports: User reports
            now: Reference instant
            
        Returns:
            Tuple of (weighted available, weighted exhausted, number of qualifying reports)
        """
        qualifying = [
            r for r in reports_in_window(reports, now, self.window_hours)
            if r.kind in (ReportKind.FUNDS_AVAILABLE, ReportKind.FUNDS_EXHAUSTED)
        ]
        if not qualifying:
            return 0.0, 0.0, 0
        
        now = as_utc(now)
        ages = np.array([(now - as_utc(r.reported_at)).total_seconds() / 3600.0 for r in qualifying])
        weights = self.report_weights(ages)
        exhausted_mask = np.array([r.kind == ReportKind.FUNDS_EXHAUSTED for r in qualifying])
        
        weighted_exhausted = float(weights[exhausted_mask].sum())
        weighted_available = float(weights[~exhausted_mask].sum())
        return weighted_available, weighted_exhausted, len(qualifying)
    
    def adjust_for_reports(self, level: FundLevel, weighted_available: float,
                           weighted_exhausted: float) -> FundLevel:
        """
        Move the allocation-based level by at most one step.
        
        A clear majority of exhausted reports pulls one step down, and any
        net-exhausted balance keeps the level below likely-available. A clear
        majority of available reports pulls one step up.
        
        Args:
            level: Allocation-based level
            weighted_available: Weighted funds-available count
            weighted_exhausted: Weighted funds-exhausted count
            
        Returns:
            Adjusted level
        """
        step = _LEVEL_STEPS.index(level)
        net = weighted_exhausted - weighted_available
        
        if net > 0:
            if self._dominates(weighted_exhausted, weighted_available):
                step = max(0, step - 1)
            elif level == FundLevel.LIKELY_AVAILABLE:
                step = _LEVEL_STEPS.index(FundLevel.UNCERTAIN)
        elif net < 0 and self._dominates(weighted_available, weighted_exhausted):
            step = min(len(_LEVEL_STEPS) - 1, step + 1)
        
        return _LEVEL_STEPS[step]
    
    def _dominates(self, stronger: float, weaker: float) -> bool:
        return (stronger - weaker >= self.pull_margin
                and stronger >= self.pull_dominance_ratio * weaker)
    
    @staticmethod
    def _lean(weighted_available: float, weighted_exhausted: float) -> Optional[str]:
        if weighted_exhausted > weighted_available:
            return LEAN_EXHAUSTED
        if weighted_available > weighted_exhausted:
            return LEAN_AVAILABLE
        return None
    
    @staticmethod
    def _is_usable(allocation: Optional[FundAllocation], now: datetime) -> bool:
        """Allocation exists for the month of ``now`` with a positive amount."""
        if allocation is None:
            return False
        if (allocation.year, allocation.month) != (now.year, now.month):
            return False
        if is_blank(allocation.allocated_amount):
            return False
        return float(allocation.allocated_amount) > 0
