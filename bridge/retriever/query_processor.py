"""
Query Processor

Normalizes recall query text into the pieces the scorer needs: a cleaned
phrase, content terms (stop words removed), quoted phrases, and any
quality dimensions the query names outright.
"""

import re
from dataclasses import dataclass, field
from typing import List

from ..common.schemas import ALL_DIMENSIONS


@dataclass
class ParsedQuery:
    """Parsed representation of a recall query"""
    original: str
    cleaned: str
    terms: List[str] = field(default_factory=list)
    phrases: List[str] = field(default_factory=list)
    dimensions: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.cleaned


def stem_variants(word: str) -> List[str]:
    """
    Cheap stems for fuzzy term matching ("anxiety" ~ "anxious").

    Only variants longer than three characters are returned.
    """
    candidates = [
        re.sub(r"iety$", "ious", word),
        re.sub(r"ty$", "t", word),
        re.sub(r"y$", "i", word),
        word[:-1],
        word[:-2],
    ]
    seen = []
    for c in candidates:
        if c != word and len(c) > 3 and c not in seen:
            seen.append(c)
    return seen


class QueryProcessor:
    """
    Processes recall queries.

    Responsibilities:
    1. Clean and normalize query text
    2. Extract content terms and quoted phrases
    3. Detect quality dimensions named in the query
    """

    # Stop words to filter from terms
    STOP_WORDS = {
        "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "must", "shall", "can", "to", "of", "in",
        "for", "on", "with", "at", "by", "from", "up", "about", "into", "over",
        "after", "we", "our", "us", "i", "me", "my", "you", "your", "it", "its",
        "they", "them", "their", "this", "that", "these", "those", "what",
        "which", "who", "whom", "when", "where", "why", "how", "and", "or",
        "but", "if", "because", "as", "until", "while", "just", "also", "felt",
        "feel", "feeling", "like", "so", "very", "really",
    }

    MAX_TERMS = 15

    def parse(self, query: str) -> ParsedQuery:
        """
        Parse a recall query.

        Args:
            query: Raw query string

        Returns:
            ParsedQuery with terms, phrases and named dimensions
        """
        cleaned = self._clean_query(query or "")
        return ParsedQuery(
            original=query or "",
            cleaned=cleaned,
            terms=self._extract_terms(cleaned),
            phrases=self._extract_phrases(query or ""),
            dimensions=self._detect_dimensions(cleaned),
        )

    def tokenize(self, text: str) -> List[str]:
        """Lowercase word tokens of a text"""
        return re.findall(r"\b\w+\b", text.lower())

    def _clean_query(self, query: str) -> str:
        """Clean and normalize query text"""
        # Lowercase
        cleaned = query.lower().strip()

        # Remove extra whitespace
        cleaned = re.sub(r'\s+', ' ', cleaned)

        # Remove trailing punctuation
        cleaned = re.sub(r'[.!?,;:]+$', '', cleaned)

        return cleaned

    def _extract_terms(self, query: str) -> List[str]:
        """Extract content terms from a cleaned query"""
        words = self.tokenize(query)

        # Filter stop words and short words
        terms = [
            w for w in words
            if w not in self.STOP_WORDS and len(w) > 2
        ]

        # Deduplicate and return
        return list(dict.fromkeys(terms))[:self.MAX_TERMS]

    def _extract_phrases(self, query: str) -> List[str]:
        """Extract quoted phrases; apostrophes inside words are not quotes"""
        phrases = []
        for match in re.findall(r"\"([^\"]+)\"|(?<!\w)'([^']+)'(?!\w)", query):
            phrase = (match[0] or match[1]).strip().lower()
            if len(phrase) > 1 and phrase not in phrases:
                phrases.append(phrase)
        return phrases

    def _detect_dimensions(self, query: str) -> List[str]:
        words = set(self.tokenize(query))
        return [d for d in ALL_DIMENSIONS if d in words]
