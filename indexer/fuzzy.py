"""Weighted multi-field fuzzy matching over service records.

Matching is lexical: records and queries are split into lowercase tokens and
compared with ``difflib.SequenceMatcher``, so typos ("databse") and
partial tokens ("postg") still match. A query does not need every token to
hit; each field earns partial credit for the tokens it matches.
"""

import re
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from pipelines.models import ServiceRecord

# (field, weight); weights sum to 1.0
FIELD_WEIGHTS: Tuple[Tuple[str, float], ...] = (
    ("name", 0.30),
    ("description", 0.30),
    ("free_tier", 0.15),
    ("category", 0.10),
    ("tags", 0.10),
    ("limitations", 0.05),
)

MATCH_THRESHOLD = 0.75
PREFIX_MIN_LENGTH = 3
PREFIX_SIMILARITY = 0.8

TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


def tokenize(text: Optional[str]) -> List[str]:
    """Split text into lowercase alphanumeric tokens."""
    if not text:
        return []
    return TOKEN_PATTERN.findall(text.lower())


def token_similarity(query_token: str, candidate: str, threshold: float = MATCH_THRESHOLD) -> float:
    """Similarity in [0, 1] between a query token and an indexed token.

    Returns 0.0 for anything below ``threshold``.
    """
    if query_token == candidate:
        return 1.0
    if len(query_token) >= PREFIX_MIN_LENGTH and candidate.startswith(query_token):
        return max(PREFIX_SIMILARITY, len(query_token) / len(candidate))

    matcher = SequenceMatcher(None, query_token, candidate)
    # Cheap upper bounds first; ratio() is the expensive call.
    if matcher.real_quick_ratio() < threshold or matcher.quick_ratio() < threshold:
        return 0.0
    ratio = matcher.ratio()
    return ratio if ratio >= threshold else 0.0


def field_text(record: ServiceRecord, field_name: str) -> str:
    if field_name == "tags":
        return " ".join(record.tags or ())
    return getattr(record, field_name) or ""


@dataclass(frozen=True)
class FieldMatch:
    """Which indexed tokens of one field matched the query."""
    field: str
    terms: Tuple[str, ...]
    similarity: float

    def to_dict(self):
        return {"field": self.field, "terms": list(self.terms), "similarity": round(self.similarity, 4)}


@dataclass(frozen=True)
class FuzzyMatch:
    position: int
    distance: float
    matches: Tuple[FieldMatch, ...]


@dataclass(frozen=True)
class IndexedDocument:
    position: int
    fields: Tuple[Tuple[str, FrozenSet[str]], ...]


class FuzzyIndex:
    """Token index over a fixed sequence of records."""

    def __init__(self, records: Sequence[ServiceRecord],
                 weights: Tuple[Tuple[str, float], ...] = FIELD_WEIGHTS,
                 threshold: float = MATCH_THRESHOLD):
        """Build the index.

        Args:
            records: Records in snapshot order; positions refer to this order
            weights: Field weights used for scoring
            threshold: Minimum token similarity that counts as a match
        """
        self.weights = weights
        self.threshold = threshold
        self.total_weight = sum(weight for _, weight in weights) or 1.0

        vocabulary: Set[str] = set()
        documents = []
        for position, record in enumerate(records):
            fields = []
            for field_name, _ in weights:
                tokens = frozenset(tokenize(field_text(record, field_name)))
                vocabulary.update(tokens)
                fields.append((field_name, tokens))
            documents.append(IndexedDocument(position=position, fields=tuple(fields)))

        self.documents: Tuple[IndexedDocument, ...] = tuple(documents)
        self.vocabulary: FrozenSet[str] = frozenset(vocabulary)

    def __len__(self) -> int:
        return len(self.documents)

    def expand(self, query_token: str) -> Dict[str, float]:
        """Map every vocabulary token similar to ``query_token`` to its similarity."""
        expansions = {}
        for candidate in self.vocabulary:
            similarity = token_similarity(query_token, candidate, self.threshold)
            if similarity > 0.0:
                expansions[candidate] = similarity
        return expansions

    def _best(self, expansion: Dict[str, float], tokens: FrozenSet[str]) -> Tuple[float, Optional[str]]:
        best_score, best_term = 0.0, None
        if len(expansion) < len(tokens):
            pairs = ((term, score) for term, score in expansion.items() if term in tokens)
        else:
            pairs = ((term, expansion[term]) for term in tokens if term in expansion)
        for term, score in pairs:
            if score > best_score or (score == best_score and best_term is not None and term < best_term):
                best_score, best_term = score, term
        return best_score, best_term

    def search(self, query: str, positions: Optional[Iterable[int]] = None) -> List[FuzzyMatch]:
        """Score candidate documents against ``query``.

        Returns matches sorted by ascending distance; equal distances keep
        the order of ``positions`` (snapshot order by default). Documents
        sharing no token with the query are not returned.
        """
        query_tokens = list(dict.fromkeys(tokenize(query)))
        if not query_tokens:
            return []

        expansions = [self.expand(token) for token in query_tokens]
        if not any(expansions):
            return []

        candidates = self.documents if positions is None else [self.documents[p] for p in positions]
        weight_of = dict(self.weights)
        results = []

        for document in candidates:
            weighted = 0.0
            field_matches = []
            for field_name, tokens in document.fields:
                if not tokens:
                    continue
                matched_terms = []
                field_score = 0.0
                for expansion in expansions:
                    if not expansion:
                        continue
                    score, term = self._best(expansion, tokens)
                    if term is not None:
                        field_score += score
                        matched_terms.append(term)
                if matched_terms:
                    similarity = field_score / len(query_tokens)
                    weighted += weight_of[field_name] * similarity
                    field_matches.append(FieldMatch(field_name, tuple(dict.fromkeys(matched_terms)), similarity))

            if field_matches:
                distance = round(1.0 - weighted / self.total_weight, 6)
                results.append(FuzzyMatch(document.position, max(0.0, distance), tuple(field_matches)))

        results.sort(key=lambda match: match.distance)
        return results
