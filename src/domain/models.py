"""
Data model for FondCAS.

Raw import rows, canonical providers and specialties, funding allocations,
crowd-sourced user reports and the derived fund status.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Set, Tuple


class ReportKind(str, Enum):
    """Kinds of user reports."""

    FUNDS_AVAILABLE = "funds_available"
    FUNDS_EXHAUSTED = "funds_exhausted"
    LONG_WAIT = "long_wait"
    GOOD_SERVICE = "good_service"


class FundLevel(str, Enum):
    """Fund availability levels shown to end users."""

    LIKELY_AVAILABLE = "likely_available"
    UNCERTAIN = "uncertain"
    LIKELY_EXHAUSTED = "likely_exhausted"
    UNKNOWN = "unknown"

    @property
    def availability_rank(self) -> Optional[int]:
        """Ordering used for monotonicity checks; None for UNKNOWN."""
        return _AVAILABILITY_RANK.get(self)


_AVAILABILITY_RANK = {
    FundLevel.LIKELY_EXHAUSTED: 0,
    FundLevel.UNCERTAIN: 1,
    FundLevel.LIKELY_AVAILABLE: 2,
}

LEVEL_LABELS = {
    FundLevel.LIKELY_AVAILABLE: "Probabil disponibile",
    FundLevel.UNCERTAIN: "Incert",
    FundLevel.LIKELY_EXHAUSTED: "Probabil epuizate",
    FundLevel.UNKNOWN: "Necunoscut",
}


class ReasonCode(str, Enum):
    """Machine-usable explanation attached to every FundStatus."""

    ALLOCATION_DATA = "allocation_data"
    ALLOCATION_AND_REPORTS = "allocation_and_reports"
    COMMUNITY_REPORTS_ONLY = "community_reports_only"
    NO_DATA = "no_data"


@dataclass(frozen=True)
class RawRecord:
    """One row from one imported source file."""

    name: Optional[str]
    source_id: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    specialties: Tuple[str, ...] = ()
    imported_at: Optional[datetime] = None


@dataclass
class CanonicalProvider:
    """Deduplicated real-world provider."""

    provider_id: str
    display_name: str
    name_key: Optional[str] = None
    address: Optional[str] = None
    address_key: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    specialty_ids: Set[str] = field(default_factory=set)
    source_ids: Set[str] = field(default_factory=set)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "display_name": self.display_name,
            "name_key": self.name_key,
            "address": self.address,
            "address_key": self.address_key,
            "phone": self.phone,
            "email": self.email,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "specialty_ids": sorted(self.specialty_ids),
            "source_ids": sorted(self.source_ids),
        }


@dataclass
class CanonicalSpecialty:
    """Normalized medical-specialty term."""

    specialty_id: str
    name: str
    category: str = "clinical"

    @property
    def display_name(self) -> str:
        return self.name[:1].upper() + self.name[1:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "specialty_id": self.specialty_id,
            "name": self.name,
            "display_name": self.display_name,
            "category": self.category,
        }


@dataclass(frozen=True)
class FundAllocation:
    """Monthly funding quota for one provider and service type."""

    provider_id: str
    year: int
    month: int
    service_type: str
    allocated_amount: float
    consumed_amount: Optional[float] = None
    data_source: str = ""


@dataclass(frozen=True)
class UserReport:
    """Crowd-sourced signal about a provider. Never edited once created."""

    provider_id: str
    kind: ReportKind
    reported_at: datetime
    submitter_hash: str = ""
    comment: Optional[str] = None


@dataclass(frozen=True)
class FundStatus:
    """Derived fund availability, computed per request."""

    level: FundLevel
    confidence: float
    reason: ReasonCode
    lean: Optional[str] = None
    remaining_ratio: Optional[float] = None
    days_remaining: Optional[int] = None
    weighted_available: float = 0.0
    weighted_exhausted: float = 0.0
    qualifying_reports: int = 0

    @property
    def label(self) -> str:
        return LEVEL_LABELS[self.level]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "label": self.label,
            "confidence": round(self.confidence, 3),
            "explanation": self.reason.value,
            "lean": self.lean,
            "remaining_ratio": self.remaining_ratio,
            "days_remaining": self.days_remaining,
            "weighted_available": round(self.weighted_available, 3),
            "weighted_exhausted": round(self.weighted_exhausted, 3),
            "qualifying_reports": self.qualifying_reports,
        }


@dataclass(frozen=True)
class SuggestionCandidate:
    """Searchable entity offered to the typeahead ranker."""

    kind: str
    candidate_id: str
    name: str
    subtitle: Optional[str] = None
    alt_names: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Suggestion:
    """Ranked typeahead result."""

    kind: str
    candidate_id: str
    name: str
    score: float
    subtitle: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "id": self.candidate_id,
            "name": self.name,
            "subtitle": self.subtitle,
            "score": self.score,
        }
