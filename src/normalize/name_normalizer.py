"""
Company name normalization for FondCAS.

Builds a comparison key from a provider's legal or trading name by folding
case and diacritics, removing punctuation and collapsing legal-form
variants such as "S.C.", "S.R.L." or "SRL-D".
"""

import re
import logging
from typing import Dict, List, Optional
import pandas as pd

from .text import collapse_whitespace, fold_diacritics, is_blank

logger = logging.getLogger(__name__)


class NameNormalizer:
    """
    Normalizes provider names into matching keys.
    
    Keys are lower-case, diacritic-free, punctuation-free and carry no
    leading or trailing legal-form tokens.
    """
    
    def __init__(self, config: Dict):
        """
        Initialize name normalizer with configuration.
        
        Args:
            config: Name normalization section of the configuration
        """
        self.config = config
        self.legal_forms = config.get("legal_forms", {
            "sc": [r"s ?c"],
            "srl": [r"s ?r ?l(?: ?d)?"],
            "sa": [r"s ?a"],
        })
        self.strip_prefixes = set(config.get("strip_prefixes", ["sc"]))
        self.strip_suffixes = set(config.get("strip_suffixes", ["srl", "sa"]))
        
        # Compile regex patterns for efficiency
        self.dropped_punctuation_pattern = re.compile(r'[.,;:\'"()`´]')
        self.punctuation_pattern = re.compile(r'[^\w\s]|_')
        self.legal_form_patterns = [
            (re.compile(r'\b(?:' + '|'.join(variants) + r')\b'), canonical)
            for canonical, variants in self.legal_forms.items()
            if variants
        ]
        self.has_letter_pattern = re.compile(r'[a-z]')
        
        logger.info("Initialized NameNormalizer")
    
    def normalize_name(self, name: str) -> Optional[str]:
        """
        Normalize a single provider name.
        
        Args:
            name: Raw provider name
            
        Returns:
            Normalized name key, or None when nothing usable remains
        """
        if is_blank(name) or not isinstance(name, str):
            return None
        
        key = fold_diacritics(name)
        
        # "S.R.L." -> "srl", then any other punctuation becomes a separator
        key = self.dropped_punctuation_pattern.sub('', key)
        key = self.punctuation_pattern.sub(' ', key)
        key = collapse_whitespace(key)
        
        for pattern, canonical in self.legal_form_patterns:
            key = pattern.sub(canonical, key)
        
        tokens = self._strip_legal_tokens(key.split())
        if not tokens:
            return None
        
        key = ' '.join(tokens)
        
        # Numeric-only names are header or counter artifacts
        if not self.has_letter_pattern.search(key):
            return None
        
        return key
    
    def _strip_legal_tokens(self, tokens: List[str]) -> List[str]:
        """Drop legal-form tokens from both ends of the name."""
        while tokens and tokens[0] in self.strip_prefixes:
            tokens = tokens[1:]
        while tokens and tokens[-1] in self.strip_suffixes:
            tokens = tokens[:-1]
        return tokens
    
    def normalize_dataframe(self, df: pd.DataFrame, name_column: str = "name") -> pd.DataFrame:
        """
        Normalize names in a DataFrame.
        
        Args:
            df: Input DataFrame
            name_column: Column with raw names
            
        Returns:
            DataFrame with an added ``<name_column>_norm`` column
        """
        result_df = df.copy()
        if name_column in df.columns:
            result_df[f"{name_column}_norm"] = df[name_column].apply(self.normalize_name)
        
        logger.info(f"Normalized names for {len(result_df)} records")
        return result_df
