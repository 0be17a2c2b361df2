"""
Provider index for FondCAS.

Maps normalized name keys and combined name+address keys to canonical
providers. The index is owned by the caller and handed to the matcher, so
each import run or test works on its own in-memory copy. It is not safe
for concurrent writers.
"""

import logging
from typing import Dict, Iterable, Iterator, Optional, Tuple

from ..domain.models import CanonicalProvider, CanonicalSpecialty

logger = logging.getLogger(__name__)

MATCHED_ON_NAME_ADDRESS = "name_address"
MATCHED_ON_NAME = "name"


class ProviderIndex:
    """
    Lookup table of canonical providers and specialties by normalized key.
    
    Name-only keys keep the first provider indexed under them; combined keys
    are unique per provider.
    """
    
    def __init__(self, key_separator: str = "|"):
        """
        Initialize an empty index.
        
        Args:
            key_separator: Separator placed between name and address keys
        """
        self.key_separator = key_separator
        self.providers: Dict[str, CanonicalProvider] = {}
        self.specialties: Dict[str, CanonicalSpecialty] = {}
        self._keys: Dict[str, str] = {}
    
    @classmethod
    def from_existing(cls, providers: Iterable[CanonicalProvider],
                      specialties: Iterable[CanonicalSpecialty] = (),
                      key_separator: str = "|") -> "ProviderIndex":
        """
        Build an index over already-known providers and specialties.
        
        Providers must carry their ``name_key`` (and ``address_key`` when an
        address is known).
        
        Args:
            providers: Existing canonical providers
            specialties: Existing canonical specialties
            key_separator: Separator placed between name and address keys
            
        Returns:
            Populated ProviderIndex
        """
        index = cls(key_separator)
        for provider in providers:
            index.add(provider)
        for specialty in specialties:
            index.add_specialty(specialty)
        
        logger.info(f"Built provider index with {len(index.providers)} providers "
                    f"and {len(index._keys)} keys")
        return index
    
    def combined_key(self, name_key: str, address_key: str) -> str:
        return f"{name_key}{self.key_separator}{address_key}"
    
    def add(self, provider: CanonicalProvider):
        """
        Insert a provider under every key it can support.
        
        Args:
            provider: Canonical provider with normalized keys set
        """
        self.providers[provider.provider_id] = provider
        self.reindex(provider)
    
    def reindex(self, provider: CanonicalProvider):
        """Register keys for a provider whose address key may have been filled."""
        if not provider.name_key:
            return
        self._keys.setdefault(provider.name_key, provider.provider_id)
        if provider.address_key:
            self._keys.setdefault(
                self.combined_key(provider.name_key, provider.address_key),
                provider.provider_id,
            )
    
    def lookup(self, name_key: str,
               address_key: Optional[str] = None) -> Tuple[Optional[CanonicalProvider], Optional[str]]:
        """
        Find the provider for a record's keys, combined key first.
        
        Args:
            name_key: Normalized name
            address_key: Normalized address (optional)
            
        Returns:
            Tuple of (provider or None, key kind used for the hit or None)
        """
        if not name_key:
            return None, None
        
        if address_key:
            provider_id = self._keys.get(self.combined_key(name_key, address_key))
            if provider_id is not None:
                return self.providers[provider_id], MATCHED_ON_NAME_ADDRESS
        
        provider_id = self._keys.get(name_key)
        if provider_id is not None:
            return self.providers[provider_id], MATCHED_ON_NAME
        
        return None, None
    
    def add_specialty(self, specialty: CanonicalSpecialty):
        self.specialties.setdefault(specialty.name, specialty)
    
    def get_specialty(self, canonical_name: str) -> Optional[CanonicalSpecialty]:
        return self.specialties.get(canonical_name)
    
    def __len__(self) -> int:
        return len(self.providers)
    
    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self.providers
    
    def __iter__(self) -> Iterator[CanonicalProvider]:
        return iter(self.providers.values())
