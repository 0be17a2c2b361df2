"""
Fuzzy suggestion ranker for FondCAS.

Scores how well a short, possibly misspelled query matches a candidate
name with an ordered cascade of rules; the first rule that matches gives
the score. Query and candidate are compared lower-cased and without
diacritics, so "pediatrica" finds "Pediatrică".
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..domain.models import Suggestion, SuggestionCandidate
from ..normalize.text import collapse_whitespace, fold_diacritics, is_blank

logger = logging.getLogger(__name__)

SCORE_EXACT = 100.0
SCORE_PREFIX = 90.0
SCORE_WORD = 80.0
SCORE_SUBSTRING = 70.0
SCORE_SUBSEQUENCE_BASE = 50.0
SCORE_SUBSEQUENCE_RUN_BONUS = 20.0
SCORE_SINGLE_DELETION = 40.0
SCORE_WORD_PREFIX = 35.0

RuleFn = Callable[[str, str], Optional[float]]


def longest_subsequence_run(query: str, candidate: str) -> Optional[int]:
    """
    Greedy in-order scan of query characters through the candidate.
    
    Returns:
        Longest unbroken run of consecutive matched characters, or None if
        some query character cannot be found in order
    """
    q_idx = 0
    run = 0
    longest = 0
    for ch in candidate:
        if q_idx == len(query):
            break
        if ch == query[q_idx]:
            q_idx += 1
            run += 1
            longest = max(longest, run)
        else:
            run = 0
    if q_idx < len(query):
        return None
    return longest


def single_deletions(query: str) -> Iterable[str]:
    for i in range(len(query)):
        yield query[:i] + query[i + 1:]


class SuggestionRanker:
    """
    Ranks typeahead suggestions for a query.
    
    The rules are kept as an ordered list of named checks so that their
    precedence is explicit and each can be tested on its own.
    """
    
    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize ranker with configuration.
        
        Args:
            config: Ranker section of the configuration
        """
        self.config = config or {}
        self.min_query_length = self.config.get("min_query_length", 2)
        self.max_results = self.config.get("max_results", 8)
        self.typo_min_query_length = self.config.get("typo_min_query_length", 3)
        self.typo_prefix_length = self.config.get("typo_prefix_length", 3)
        
        self.rules: List[Tuple[str, RuleFn]] = [
            ("exact", self._exact),
            ("prefix", self._prefix),
            ("word", self._word),
            ("substring", self._substring),
            # Single-deletion typos take precedence over subsequence matches
            ("single_deletion", self._single_deletion),
            ("subsequence", self._subsequence),
            ("word_prefix", self._word_prefix),
        ]
        
        logger.info("Initialized SuggestionRanker")
    
    @staticmethod
    def prepare(text: str) -> str:
        """Lower-case, fold diacritics and collapse whitespace."""
        if is_blank(text):
            return ""
        return collapse_whitespace(fold_diacritics(str(text)))
    
    def score(self, query: str, candidate: str) -> float:
        """
        Score a candidate string against a query.
        
        Args:
            query: User query
            candidate: Candidate display text
            
        Returns:
            Score between 0 and 100
        """
        return self.score_with_rule(query, candidate)[0]
    
    def score_with_rule(self, query: str, candidate: str) -> Tuple[float, Optional[str]]:
        """
        Score a candidate and report which rule matched.
        
        Returns:
            Tuple of (score, rule name or None when nothing matched)
        """
        q = self.prepare(query)
        t = self.prepare(candidate)
        if not q or not t:
            return 0.0, None
        
        for name, rule in self.rules:
            result = rule(q, t)
            if result is not None:
                return result, name
        return 0.0, None
    
    def _exact(self, q: str, t: str) -> Optional[float]:
        return SCORE_EXACT if t == q else None
    
    def _prefix(self, q: str, t: str) -> Optional[float]:
        return SCORE_PREFIX if t.startswith(q) else None
    
    def _word(self, q: str, t: str) -> Optional[float]:
        return SCORE_WORD if f" {q}" in t or f"{q} " in t else None
    
    def _substring(self, q: str, t: str) -> Optional[float]:
        return SCORE_SUBSTRING if q in t else None
    
    def _subsequence(self, q: str, t: str) -> Optional[float]:
        longest = longest_subsequence_run(q, t)
        if longest is None:
            return None
        return SCORE_SUBSEQUENCE_BASE + (longest / len(q)) * SCORE_SUBSEQUENCE_RUN_BONUS
    
    def _single_deletion(self, q: str, t: str) -> Optional[float]:
        if len(q) < self.typo_min_query_length:
            return None
        if any(reduced in t for reduced in single_deletions(q)):
            return SCORE_SINGLE_DELETION
        return None
    
    def _word_prefix(self, q: str, t: str) -> Optional[float]:
        if len(q) < self.typo_min_query_length:
            return None
        prefix = q[:self.typo_prefix_length]
        if any(word.startswith(prefix) for word in t.split()):
            return SCORE_WORD_PREFIX
        return None
    
    def score_candidate(self, query: str, candidate: SuggestionCandidate) -> float:
        """Best score over the candidate's name, alternative names and subtitle."""
        texts = [candidate.name, *candidate.alt_names]
        if candidate.subtitle:
            texts.append(candidate.subtitle)
        return max((self.score(query, text) for text in texts if text), default=0.0)
    
    def rank(self, query: str, candidates: Iterable[SuggestionCandidate],
             limit: Optional[int] = None) -> List[Suggestion]:
        """
        Rank candidates for a typeahead query.
        
        Zero scores are dropped; results are sorted by descending score with
        ties broken alphabetically by display name, then deduplicated by
        (kind, lower-cased name) and truncated.
        
        Args:
            query: User query
            candidates: Locations, specialties and organizations to rank
            limit: Maximum number of results (configured default when omitted)
            
        Returns:
            Ordered suggestions
        """
        query = (query or "").strip()
        if len(query) < self.min_query_length:
            return []
        
        limit = self.max_results if limit is None else limit
        
        scored = []
        for candidate in candidates:
            score = self.score_candidate(query, candidate)
            if score > 0:
                scored.append(Suggestion(
                    kind=candidate.kind,
                    candidate_id=candidate.candidate_id,
                    name=candidate.name,
                    score=score,
                    subtitle=candidate.subtitle,
                ))
        
        scored.sort(key=lambda s: (-s.score, self.prepare(s.name), s.kind))
        
        seen = set()
        results = []
        for suggestion in scored:
            key = (suggestion.kind, suggestion.name.lower())
            if key in seen:
                continue
            seen.add(key)
            results.append(suggestion)
            if len(results) >= limit:
                break
        
        logger.debug(f"Ranked {len(scored)} matching candidates for '{query}'")
        return results
