"""
Provider matcher for FondCAS.

Deduplicates raw import records against a caller-owned index of canonical
providers. The combined name+address key is tried first and the name-only
key is the fallback for records without a usable address.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple
import pandas as pd

from ..blocking.provider_index import ProviderIndex
from ..domain.models import CanonicalProvider, CanonicalSpecialty, RawRecord
from ..merge.merger import ProviderMerger, generate_specialty_id
from ..normalize.address_normalizer import AddressNormalizer
from ..normalize.config import get_default_config
from ..normalize.contact_normalizer import ContactNormalizer
from ..normalize.name_normalizer import NameNormalizer
from ..normalize.specialty_normalizer import SpecialtyNormalizer

logger = logging.getLogger(__name__)

ACTION_CREATED = "created"
ACTION_MERGED = "merged"
ACTION_SKIPPED = "skipped"

REASON_EMPTY_NAME = "empty_name"
REASON_ERROR = "error"


def record_order_key(record) -> Tuple[str, str, str]:
    """Canonical processing order for a batch: source ID, then raw name and address."""
    return (
        str(getattr(record, "source_id", "") or ""),
        str(getattr(record, "name", "") or ""),
        str(getattr(record, "address", "") or ""),
    )


@dataclass
class MatchOutcome:
    """Decision taken for one raw record."""
    
    source_id: str
    action: str
    provider_id: Optional[str] = None
    matched_on: Optional[str] = None
    reason: Optional[str] = None
    filled_fields: List[str] = field(default_factory=list)
    linked_specialty_ids: List[str] = field(default_factory=list)


@dataclass
class MatchReport:
    """
    Result of matching a batch.
    
    The created and updated ID lists are the insert / update instructions
    for the persistence layer that owns the index.
    """
    
    outcomes: List[MatchOutcome] = field(default_factory=list)
    created_provider_ids: List[str] = field(default_factory=list)
    updated_provider_ids: List[str] = field(default_factory=list)
    created_specialty_ids: List[str] = field(default_factory=list)
    
    @property
    def counts(self) -> Dict[str, int]:
        counts = {ACTION_CREATED: 0, ACTION_MERGED: 0, ACTION_SKIPPED: 0}
        for outcome in self.outcomes:
            counts[outcome.action] += 1
        return counts
    
    @property
    def skipped(self) -> List[MatchOutcome]:
        return [o for o in self.outcomes if o.action == ACTION_SKIPPED]
    
    def to_dataframe(self) -> pd.DataFrame:
        """Match log with one row per record."""
        rows = [{
            "source_id": o.source_id,
            "action": o.action,
            "provider_id": o.provider_id,
            "matched_on": o.matched_on,
            "reason": o.reason,
            "filled_fields": ",".join(o.filled_fields),
            "linked_specialty_ids": ",".join(o.linked_specialty_ids),
        } for o in self.outcomes]
        return pd.DataFrame(rows, columns=[
            "source_id", "action", "provider_id", "matched_on", "reason",
            "filled_fields", "linked_specialty_ids",
        ])


class ProviderMatcher:
    """
    Matches raw records to canonical providers and links specialties.
    
    Holds no index of its own; every call works on the index it is given.
    """
    
    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize provider matcher with configuration.
        
        Args:
            config: Full configuration dictionary (defaults when omitted)
        """
        self.config = config or get_default_config()
        normalization = self.config.get("normalization", {})
        
        self.name_normalizer = NameNormalizer(normalization.get("name", {}))
        self.address_normalizer = AddressNormalizer(normalization.get("address", {}))
        self.specialty_normalizer = SpecialtyNormalizer(normalization.get("specialty", {}))
        self.contact_normalizer = ContactNormalizer(normalization.get("contact", {}))
        self.merger = ProviderMerger(self.contact_normalizer)
        self.key_separator = self.config.get("matching", {}).get("key_separator", "|")
        
        logger.info("Initialized ProviderMatcher")
    
    def normalize_record(self, record: RawRecord) -> Tuple[Optional[str], Optional[str]]:
        """
        Compute the matching keys of a raw record.
        
        Returns:
            Tuple of (name key, address key); either may be None
        """
        name_key = self.name_normalizer.normalize_name(record.name)
        address_key = self.address_normalizer.normalize_address(record.address)
        return name_key, address_key
    
    def build_index(self, providers: Iterable[CanonicalProvider] = (),
                    specialties: Iterable[CanonicalSpecialty] = ()) -> ProviderIndex:
        """
        Build an index over existing providers, computing missing keys.
        
        Args:
            providers: Canonical providers from the store
            specialties: Canonical specialties from the store
            
        Returns:
            ProviderIndex ready for matching
        """
        prepared = []
        for provider in providers:
            if not provider.name_key:
                provider.name_key = self.name_normalizer.normalize_name(provider.display_name)
            if provider.address and not provider.address_key:
                provider.address_key = self.address_normalizer.normalize_address(provider.address)
            if not provider.name_key:
                logger.warning(f"Provider {provider.provider_id} has no usable name, not indexed")
                continue
            prepared.append(provider)
        
        return ProviderIndex.from_existing(prepared, specialties, self.key_separator)
    
    def match_record(self, record: RawRecord, index: ProviderIndex,
                     report: Optional[MatchReport] = None) -> MatchOutcome:
        """
        Match one raw record, creating or merging a canonical provider.
        
        Args:
            record: Raw record to match
            index: Caller-owned provider index, updated in place
            report: Batch report collecting created / updated IDs (optional)
            
        Returns:
            Outcome of the match
        """
        if report is None:
            report = MatchReport()
        
        name_key, address_key = self.normalize_record(record)
        if not name_key:
            logger.warning(f"Skipping record {record.source_id}: no usable name ({record.name!r})")
            return MatchOutcome(source_id=record.source_id, action=ACTION_SKIPPED,
                                reason=REASON_EMPTY_NAME)
        
        provider, matched_on = index.lookup(name_key, address_key)
        
        if provider is None:
            provider = self.merger.create_provider(record, name_key, address_key, index)
            index.add(provider)
            report.created_provider_ids.append(provider.provider_id)
            outcome = MatchOutcome(source_id=record.source_id, action=ACTION_CREATED,
                                   provider_id=provider.provider_id)
            changed = False
        else:
            had_source = record.source_id in provider.source_ids
            filled = self.merger.merge_record(provider, record, address_key)
            index.reindex(provider)
            outcome = MatchOutcome(source_id=record.source_id, action=ACTION_MERGED,
                                   provider_id=provider.provider_id, matched_on=matched_on,
                                   filled_fields=filled)
            changed = bool(filled) or not had_source
        
        outcome.linked_specialty_ids = self.link_specialties(
            provider, record.specialties, index, report
        )
        changed = changed or bool(outcome.linked_specialty_ids)
        
        if (changed and provider.provider_id not in report.created_provider_ids
                and provider.provider_id not in report.updated_provider_ids):
            report.updated_provider_ids.append(provider.provider_id)
        
        return outcome
    
    def link_specialties(self, provider: CanonicalProvider, labels: Iterable[str],
                         index: ProviderIndex, report: Optional[MatchReport] = None) -> List[str]:
        """
        Link raw specialty labels to canonical specialties.
        
        Unknown canonical names create a new specialty. Relinking an
        existing pair is a no-op.
        
        Args:
            provider: Provider receiving the links
            labels: Raw specialty labels
            index: Index holding the canonical specialties
            report: Batch report collecting created specialty IDs (optional)
            
        Returns:
            IDs of newly linked specialties
        """
        linked = []
        for label in labels or ():
            canonical_name = self.specialty_normalizer.normalize_specialty(label)
            if not canonical_name:
                continue
            
            specialty = index.get_specialty(canonical_name)
            if specialty is None:
                specialty = CanonicalSpecialty(
                    specialty_id=generate_specialty_id(canonical_name),
                    name=canonical_name,
                    category=self.specialty_normalizer.category_for(canonical_name),
                )
                index.add_specialty(specialty)
                if report is not None:
                    report.created_specialty_ids.append(specialty.specialty_id)
            
            if self.merger.link_specialty(provider, specialty):
                linked.append(specialty.specialty_id)
        
        return linked
    
    def match_batch(self, records: Iterable[RawRecord], index: ProviderIndex) -> MatchReport:
        """
        Match a batch of raw records against the index.
        
        Records are processed in ``record_order_key`` order, so the
        record that seeds a provider's display name and address does not
        depend on how the batch was shuffled. A record that cannot be
        matched is reported as skipped and the batch continues.

        Args:
            records: Raw records, in any order
            index: Caller-owned provider index, updated in place

        Returns:
            MatchReport for the batch, outcomes in processing order
        """
        report = MatchReport()

        for record in sorted(records, key=record_order_key):
            try:
                outcome = self.match_record(record, index, report)
            except (AttributeError, TypeError, ValueError) as e:
                logger.error(f"Failed to match record {getattr(record, 'source_id', '?')}: {e}")
                outcome = MatchOutcome(source_id=getattr(record, "source_id", ""),
                                       action=ACTION_SKIPPED, reason=f"{REASON_ERROR}: {e}")
            report.outcomes.append(outcome)
        
        counts = report.counts
        logger.info(f"Matched {len(report.outcomes)} records: {counts[ACTION_CREATED]} created, "
                    f"{counts[ACTION_MERGED]} merged, {counts[ACTION_SKIPPED]} skipped")
        return report
    
    def resolve_provider_id(self, name: str, address: Optional[str],
                            index: ProviderIndex) -> Optional[str]:
        """
        Find the canonical provider a reference (e.g. an allocation row) points to.
        
        Uses the same keys as matching but never creates a provider.
        
        Args:
            name: Raw provider name
            address: Raw address (optional)
            index: Provider index
            
        Returns:
            Provider ID, or None when nothing matches
        """
        name_key = self.name_normalizer.normalize_name(name)
        address_key = self.address_normalizer.normalize_address(address)
        provider, _ = index.lookup(name_key, address_key)
        return provider.provider_id if provider is not None else None
