"""
Provider record merger for FondCAS.

Seeds canonical providers from raw records and merges later matching
records into them. Merges only fill empty fields and union sets, so
re-running an import over the same or overlapping files converges and
never overwrites values that were cleaned by hand.
"""

import hashlib
import logging
from typing import Container, Dict, List, Optional

from ..domain.models import CanonicalProvider, CanonicalSpecialty, RawRecord
from ..normalize.contact_normalizer import ContactNormalizer
from ..normalize.text import collapse_whitespace, is_blank

logger = logging.getLogger(__name__)


def generate_provider_id(name_key: str, existing_ids: Container[str] = ()) -> str:
    """
    Generate a deterministic canonical ID for a provider.
    
    Args:
        name_key: Normalized provider name
        existing_ids: IDs already in use
        
    Returns:
        ID of the form ``PROV-<16 hex>``, suffixed when taken
    """
    sha256_hash = hashlib.sha256(name_key.encode("utf-8")).hexdigest()[:16]
    canonical_id = f"PROV-{sha256_hash.upper()}"
    
    candidate = canonical_id
    suffix = 2
    while candidate in existing_ids:
        candidate = f"{canonical_id}-{suffix}"
        suffix += 1
    return candidate


def generate_specialty_id(canonical_name: str) -> str:
    """Deterministic ID of the form ``SPEC-<12 hex>`` for a canonical specialty."""
    sha256_hash = hashlib.sha256(canonical_name.encode("utf-8")).hexdigest()[:12]
    return f"SPEC-{sha256_hash.upper()}"


class ProviderMerger:
    """
    Creates and merges canonical providers from raw records.
    
    Populated canonical fields are never overwritten; contributor and
    specialty links only grow.
    """
    
    def __init__(self, contact_normalizer: ContactNormalizer):
        """
        Initialize provider merger.
        
        Args:
            contact_normalizer: Normalizer applied to phone and email before storing
        """
        self.contact_normalizer = contact_normalizer
        
        logger.info("Initialized ProviderMerger")
    
    def create_provider(self, record: RawRecord, name_key: str,
                        address_key: Optional[str],
                        existing_ids: Container[str] = ()) -> CanonicalProvider:
        """
        Seed a new canonical provider from a raw record.
        
        Args:
            record: Raw record with no existing match
            name_key: Normalized name of the record
            address_key: Normalized address of the record (optional)
            existing_ids: IDs already in use
            
        Returns:
            New canonical provider
        """
        return CanonicalProvider(
            provider_id=generate_provider_id(name_key, existing_ids),
            display_name=collapse_whitespace(record.name),
            name_key=name_key,
            address=self._clean_text(record.address),
            address_key=address_key,
            phone=self.contact_normalizer.normalize_phone(record.phone),
            email=self.contact_normalizer.normalize_email(record.email),
            source_ids={record.source_id},
        )
    
    def merge_record(self, provider: CanonicalProvider, record: RawRecord,
                     address_key: Optional[str]) -> List[str]:
        """
        Merge a matching raw record into a canonical provider.
        
        Args:
            provider: Canonical provider the record matched
            record: Matching raw record
            address_key: Normalized address of the record (optional)
            
        Returns:
            Names of the canonical fields that were filled
        """
        filled = []
        provider.source_ids.add(record.source_id)
        
        address = self._clean_text(record.address)
        if not provider.address and address:
            provider.address = address
            provider.address_key = address_key
            filled.append("address")
        elif not provider.address_key and address_key and provider.address == address:
            provider.address_key = address_key
        
        phone = self.contact_normalizer.normalize_phone(record.phone)
        if not provider.phone and phone:
            provider.phone = phone
            filled.append("phone")
        
        email = self.contact_normalizer.normalize_email(record.email)
        if not provider.email and email:
            provider.email = email
            filled.append("email")
        
        if filled:
            logger.debug(f"Filled {filled} on {provider.provider_id} from {record.source_id}")
        return filled
    
    @staticmethod
    def link_specialty(provider: CanonicalProvider, specialty: CanonicalSpecialty) -> bool:
        """
        Link a provider to a specialty.
        
        Returns:
            True if the link is new, False if it already existed
        """
        if specialty.specialty_id in provider.specialty_ids:
            return False
        provider.specialty_ids.add(specialty.specialty_id)
        return True
    
    @staticmethod
    def _clean_text(value) -> Optional[str]:
        if is_blank(value):
            return None
        return collapse_whitespace(str(value))


def summarize_providers(providers: List[CanonicalProvider]) -> Dict[str, int]:
    """
    Count field coverage over a set of canonical providers.
    
    Args:
        providers: Canonical providers
        
    Returns:
        Dictionary with totals per populated field
    """
    return {
        "providers": len(providers),
        "with_address": sum(1 for p in providers if p.address),
        "with_phone": sum(1 for p in providers if p.phone),
        "with_email": sum(1 for p in providers if p.email),
        "with_coordinates": sum(1 for p in providers if p.latitude is not None),
        "multi_source": sum(1 for p in providers if len(p.source_ids) > 1),
    }
