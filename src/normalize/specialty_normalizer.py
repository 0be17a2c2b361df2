"""
Specialty normalization for FondCAS.

Maps medical-specialty spellings, typos and synonyms onto canonical
specialty names using an editable variant table, and helps maintainers
extend that table with fuzzy suggestions for labels it does not cover.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple
import pandas as pd
from thefuzz import fuzz, process

from .text import collapse_whitespace, is_blank

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "clinical"

# Fallback table used when no mapping file is available
DEFAULT_SPECIALTY_VARIANTS = {
    "orl": "otorinolaringologie",
    "otorinolanrigologie": "otorinolaringologie",
    "oto-rino-laringologie": "otorinolaringologie",
    "dermato-venerologie": "dermatovenerologie",
    "dermato venerologie": "dermatovenerologie",
    "diabet zaharat, nutritie si boli metabolice": "diabet zaharat",
    "obstetrica - ginecologie": "obstetrica-ginecologie",
    "obstetrică-ginecologie": "obstetrica-ginecologie",
    "ginecologie": "obstetrica-ginecologie",
    "medicina internă": "medicina interna",
    "chirurgie generalã": "chirurgie generala",
    "alergologie si imunologie clinica": "alergologie",
    "alergologie şi imunologie clinică": "alergologie",
}


class SpecialtyNormalizer:
    """
    Normalizes specialty labels against a variant -> canonical table.
    
    The table is data, loaded from a CSV file and inline configuration, so
    new variants are added without code changes.
    """
    
    def __init__(self, config: Dict):
        """
        Initialize specialty normalizer with configuration.
        
        Args:
            config: Specialty normalization section of the configuration
        """
        self.config = config
        self.mapping_file = config.get("mapping_file", "")
        self.default_category = config.get("default_category", DEFAULT_CATEGORY)
        self.suggestion_min_score = config.get("suggestion_min_score", 80)
        
        # variant -> canonical name, canonical name -> category
        self.variants: Dict[str, str] = {}
        self.categories: Dict[str, str] = {}
        
        if self.mapping_file:
            self._load_mapping_file()
        else:
            self.variants.update(
                {self._clean(k): self._clean(v) for k, v in DEFAULT_SPECIALTY_VARIANTS.items()}
            )
        
        for variant, canonical in (config.get("variants") or {}).items():
            if not is_blank(variant) and not is_blank(canonical):
                self.variants[self._clean(variant)] = self._clean(canonical)
        
        for category, names in (config.get("categories") or {}).items():
            for name in names or []:
                self.categories.setdefault(self._clean(name), category)
        
        self._resolve_chains()
        
        logger.info(f"Initialized SpecialtyNormalizer with {len(self.variants)} variants")
    
    @staticmethod
    def _clean(value: str) -> str:
        return collapse_whitespace(str(value).lower())
    
    def _load_mapping_file(self):
        """Load variants from CSV file with ``variant,canonical_name[,category]`` columns."""
        try:
            mapping_df = pd.read_csv(self.mapping_file, dtype=str, keep_default_na=False)
            
            for _, row in mapping_df.iterrows():
                variant = row.get('variant', '')
                canonical_name = row.get('canonical_name', '')
                category = row.get('category', '')
                
                if is_blank(canonical_name):
                    continue
                canonical_name = self._clean(canonical_name)
                if not is_blank(variant):
                    self.variants[self._clean(variant)] = canonical_name
                if not is_blank(category):
                    self.categories[canonical_name] = category.strip().lower()
            
            logger.info(f"Loaded {len(self.variants)} specialty variants from {self.mapping_file}")
            
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            logger.warning(f"Failed to load specialty mapping file: {e}")
            self.variants.update(
                {self._clean(k): self._clean(v) for k, v in DEFAULT_SPECIALTY_VARIANTS.items()}
            )
    
    def _resolve_chains(self):
        """Point every variant straight at its final canonical name."""
        resolved = {variant: self._final_target(variant) for variant in self.variants}
        
        # Canonical names never map elsewhere
        self.variants = {
            variant: target for variant, target in resolved.items() if variant != target
        }
    
    def _final_target(self, variant: str) -> str:
        seen = [variant]
        target = self.variants[variant]
        while target in self.variants:
            if target in seen:
                cycle = seen[seen.index(target):]
                logger.warning(f"Specialty mapping cycle {cycle}, using '{min(cycle)}'")
                return min(cycle)
            seen.append(target)
            target = self.variants[target]
        return target
    
    def normalize_specialty(self, label: str) -> Optional[str]:
        """
        Normalize a single specialty label.
        
        Args:
            label: Raw specialty label
            
        Returns:
            Canonical specialty name, or None for blank input
        """
        if is_blank(label) or not isinstance(label, str):
            return None
        
        cleaned = self._clean(label)
        return self.variants.get(cleaned, cleaned)
    
    def category_for(self, canonical_name: str) -> str:
        """Category of a canonical specialty, defaulting to the generic clinical one."""
        return self.categories.get(canonical_name, self.default_category)
    
    @property
    def canonical_names(self) -> List[str]:
        names = set(self.variants.values()) | set(self.categories)
        return sorted(names)
    
    def is_mapped(self, label: str) -> bool:
        """True when the label is a known variant or a known canonical name."""
        if is_blank(label):
            return False
        cleaned = self._clean(label)
        return cleaned in self.variants or cleaned in set(self.canonical_names)
    
    def suggest_canonical(self, label: str) -> Tuple[Optional[str], int]:
        """
        Suggest the closest known canonical name for an unmapped label.
        
        Args:
            label: Raw specialty label
            
        Returns:
            Tuple of (suggested canonical name or None, similarity score)
        """
        if is_blank(label) or not self.canonical_names:
            return None, 0
        
        best_match = process.extractOne(
            self._clean(label), self.canonical_names, scorer=fuzz.token_sort_ratio
        )
        if best_match and best_match[1] >= self.suggestion_min_score:
            return best_match[0], best_match[1]
        return None, best_match[1] if best_match else 0
    
    def find_unmapped(self, labels: Iterable[str]) -> pd.DataFrame:
        """
        List labels that fell back to themselves, with fuzzy suggestions.
        
        Args:
            labels: Raw specialty labels seen during an import
            
        Returns:
            DataFrame with ``label``, ``occurrences``, ``suggestion`` and ``score`` columns
        """
        counts: Dict[str, int] = {}
        for label in labels:
            if is_blank(label) or self.is_mapped(label):
                continue
            cleaned = self._clean(label)
            counts[cleaned] = counts.get(cleaned, 0) + 1
        
        rows = []
        for label, occurrences in sorted(counts.items()):
            suggestion, score = self.suggest_canonical(label)
            rows.append({
                "label": label,
                "occurrences": occurrences,
                "suggestion": suggestion,
                "score": score,
            })
        
        if rows:
            logger.warning(f"Found {len(rows)} unmapped specialty labels")
        return pd.DataFrame(rows, columns=["label", "occurrences", "suggestion", "score"])
