"""
Address normalization for FondCAS.

Reduces free-text Romanian street addresses to a short composite key made
of the street name, the house number and the Bucharest sector, so that
"Str. Exemplu 10, Sector 2" and "Strada Exemplu nr. 10, Sect. 2" both
become ``exemplu-10-s2``. The sector carries its own prefix so a sector-only
address never shares a key with a house-number-only one.
"""

import re
import logging
from typing import Dict, List, Optional
import pandas as pd

from .text import collapse_whitespace, fold_diacritics, is_blank

logger = logging.getLogger(__name__)


class AddressNormalizer:
    """
    Normalizes provider addresses into matching keys.
    
    Street-type abbreviations are standardized, the sector and house number
    are extracted by pattern, and the first significant remaining word is
    taken as the street name.
    """
    
    def __init__(self, config: Dict):
        """
        Initialize address normalizer with configuration.
        
        Args:
            config: Address normalization section of the configuration
        """
        self.config = config
        self.street_types = config.get("street_types", {
            "bd": ["bulevardul", "bulevard", "bdul", "b-dul", "b dul", "blvd"],
            "str": ["strada", "str"],
            "nr": ["numarul", "numar", "nr"],
            "sect": ["sectorul", "sector", "sect"],
        })
        self.stop_words = set(config.get("stop_words", ["str", "bd", "cal", "sos", "nr", "sect", "prel", "al"]))
        self.unit_markers = config.get("unit_markers", ["bl", "sc", "ap", "et"])
        self.separator = config.get("separator", "-")
        self.sector_prefix = config.get("sector_prefix", "s")
        
        # Compile regex patterns for efficiency
        self.dropped_punctuation_pattern = re.compile(r'[.,;:\'"()]')
        self.punctuation_pattern = re.compile(r'[^\w\s]|_')
        self.street_type_patterns = [
            (re.compile(r'\b(?:' + '|'.join(
                re.escape(v) for v in sorted(variants, key=len, reverse=True)
            ) + r')\b'), canonical)
            for canonical, variants in self.street_types.items()
            if variants
        ]
        self.sector_pattern = re.compile(r'\bsect\s*(\d)\b')
        self.number_pattern = re.compile(r'\bnr\s*(\d+[a-z]?)\b')
        self.bare_number_pattern = re.compile(r'\b(\d{1,4}[a-z]?)\b')
        self.number_range_pattern = re.compile(r'\b(\d{1,4}[a-z]?)\s*-\s*\d{1,4}[a-z]?\b')
        self.unit_pattern = None
        if self.unit_markers:
            self.unit_pattern = re.compile(
                r'\b(?:' + '|'.join(map(re.escape, self.unit_markers)) + r')(?:\s+|(?=\d))\w+\b'
            )
        sep = re.escape(self.separator)
        self.repeated_separator_pattern = re.compile(sep + '{2,}')
        self.canonical_key_pattern = re.compile(
            r'^[a-z][a-z0-9]{2,}(?:' + sep + r'\d+[a-z]?)?(?:' + sep + re.escape(self.sector_prefix) + r'\d)?$'
        )
        
        logger.info("Initialized AddressNormalizer")
    
    def normalize_address(self, address: str) -> Optional[str]:
        """
        Normalize a single address into a matching key.
        
        Args:
            address: Raw street address
            
        Returns:
            Key of the form ``street-number-s<sector>`` (missing parts omitted),
            or None when no significant street word exists
        """
        if is_blank(address) or not isinstance(address, str):
            return None
        
        text = collapse_whitespace(fold_diacritics(address))
        if self._is_canonical_key(text):
            return text
        
        components = self.parse_address(text)
        street = components["street"]
        if not street:
            return None
        
        sector = components["sector"]
        if sector:
            sector = self.sector_prefix + sector
        key = self.separator.join([street, components["number"], sector])
        key = self.repeated_separator_pattern.sub(self.separator, key)
        return key.strip(self.separator)
    
    def parse_address(self, address: str) -> Dict[str, str]:
        """
        Extract street name, house number and sector from an address.
        
        Args:
            address: Raw or lower-cased address
            
        Returns:
            Dictionary with ``street``, ``number`` and ``sector`` (empty when absent)
        """
        components = {"street": "", "number": "", "sector": ""}
        if is_blank(address) or not isinstance(address, str):
            return components
        
        text = fold_diacritics(address)
        text = self.dropped_punctuation_pattern.sub(' ', text)
        # House number ranges such as "2-4" keep their first number
        text = self.number_range_pattern.sub(r'\1', text)
        for pattern, canonical in self.street_type_patterns:
            text = pattern.sub(canonical, text)
        text = collapse_whitespace(self.punctuation_pattern.sub(' ', text))
        
        sector_match = self.sector_pattern.search(text)
        if sector_match:
            components["sector"] = sector_match.group(1)
            text = text[:sector_match.start()] + ' ' + text[sector_match.end():]
        
        if self.unit_pattern is not None:
            text = self.unit_pattern.sub(' ', text)
        
        number_match = self.number_pattern.search(text)
        if number_match:
            components["number"] = number_match.group(1)
            text = text[:number_match.start()] + ' ' + text[number_match.end():]
        else:
            bare_numbers = list(self.bare_number_pattern.finditer(text))
            if bare_numbers:
                last = bare_numbers[-1]
                components["number"] = last.group(1)
                text = text[:last.start()] + ' ' + text[last.end():]
        
        words = self._significant_words(text)
        if words:
            components["street"] = words[0]
        
        return components
    
    def _significant_words(self, text: str) -> List[str]:
        """Words of three or more characters that are not stop words or numbers."""
        return [
            word for word in text.split()
            if len(word) > 2 and word not in self.stop_words and word[0].isalpha()
        ]
    
    def _is_canonical_key(self, text: str) -> bool:
        """True when text already has the shape of a key this class produces."""
        if not self.canonical_key_pattern.match(text):
            return False
        street = text.split(self.separator, 1)[0]
        return street not in self.stop_words
    
    def normalize_dataframe(self, df: pd.DataFrame, address_column: str = "address") -> pd.DataFrame:
        """
        Normalize addresses in a DataFrame.
        
        Args:
            df: Input DataFrame
            address_column: Column with raw addresses
            
        Returns:
            DataFrame with an added ``<address_column>_norm`` column
        """
        result_df = df.copy()
        if address_column in df.columns:
            result_df[f"{address_column}_norm"] = df[address_column].apply(self.normalize_address)
        
        logger.info(f"Normalized addresses for {len(result_df)} records")
        return result_df
