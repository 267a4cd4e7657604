# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Query analyzer – picks a retrieval strategy from lexical cues alone.

  Short, broad, exploratory          -> diversity (MMR)
  Long, precise, entity/tech-heavy   -> relevance (cosine)
  Comparisons, mid specificity       -> hybrid

analyze() never raises: blank input or any internal error returns the safe
default (relevance, moderate/focused, confidence 0.3).
"""
import logging
import re

from .models import (
    Complexity,
    QueryAnalysis,
    QueryFeatures,
    SearchStrategy,
    Specificity,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.3

_TECHNICAL_PATTERNS = [
    re.compile(r"^[a-z]+[A-Z]\w*$"),                      # camelCase
    re.compile(r"^[A-Za-z]\w*_\w+$"),                     # snake_case
    re.compile(r"^v?\d+(\.\d+)+$"),                       # versions
    re.compile(r"^[A-Za-z_]\w*(\.[A-Za-z_]\w*)+$"),       # dotted names, files
    re.compile(r"^[A-Z]{2,}\d*s?$"),                      # acronyms
    re.compile(r"^\d+(\.\d+)?(ms|s|kb|mb|gb|tb|px|%|k|m)$", re.IGNORECASE),
    re.compile(r"^\w+\(\)$"),                             # calls
    re.compile(r"^[a-z]+\d+[a-z0-9]*$", re.IGNORECASE),   # s3, urllib3
    re.compile(r"^[a-z]+-\d[\w.]*$", re.IGNORECASE),      # gpt-4
]
_BACKTICK_RE = re.compile(r"`([^`]+)`")
_QUOTED_RE = re.compile(r"\"([^\"]+)\"|“([^”]+)”")
_STRIP = ".,;:!?()[]{}'\"“”"

_QUESTION_WORDS = ("what", "how", "why", "when", "where", "who", "which")
_EXPLORATORY = (
    "tell me about", "explain", "overview", "explore", "ideas", "show me",
    "what are some", "give me", "brainstorm", "anything about", "learn about",
)
_COMPARISON = re.compile(
    r"\b(vs\.?|versus|compare[sd]?|comparison|difference between|differ|"
    r"better than|worse than|pros and cons|trade-?offs?)\b", re.IGNORECASE,
)
_CONSTRAINT = re.compile(
    r"\b(only|must|without|except|exactly|at least|at most|no more than|"
    r"limit(ed)?|required?|specific(ally)?|not)\b", re.IGNORECASE,
)
_SPATIAL_TEMPORAL = re.compile(
    r"\b(before|after|during|since|until|yesterday|today|tomorrow|last|"
    r"recent(ly)?|latest|near|inside|outside|(19|20)\d\d)\b", re.IGNORECASE,
)
_ENUMERATION = re.compile(
    r"\b(list|examples?|types of|kinds of|ways|various|different|options|"
    r"alternatives)\b", re.IGNORECASE,
)


def default_analysis(query: str = "", reason: str = "fallback") -> QueryAnalysis:
    return QueryAnalysis(
        complexity=Complexity.MODERATE,
        specificity=Specificity.FOCUSED,
        recommended_strategy=SearchStrategy.RELEVANCE,
        confidence=DEFAULT_CONFIDENCE,
        reasoning=[f"Default strategy used: {reason}"],
        features=QueryFeatures(length=len(query or "")),
    )


def _is_technical(token: str) -> bool:
    return any(p.match(token) for p in _TECHNICAL_PATTERNS)


class QueryAnalyzer:
    def analyze(self, query: str) -> QueryAnalysis:
        if not query or not query.strip():
            return default_analysis(query or "", "blank query")
        try:
            return self._analyze(query.strip())
        except Exception as e:
            logger.warning("Query analysis failed, using default strategy: %s", e)
            return default_analysis(query, f"analysis error ({type(e).__name__})")

    def extract_features(self, query: str) -> QueryFeatures:
        lowered = query.lower()
        tokens = query.split()
        words = [t.strip(_STRIP) for t in tokens]

        technical = {m.strip() for m in _BACKTICK_RE.findall(query)}
        entities = {q1 or q2 for q1, q2 in _QUOTED_RE.findall(query)}
        sentence_start = True
        for raw, word in zip(tokens, words):
            if word:
                if _is_technical(word):
                    technical.add(word)
                elif word[0].isupper() and not sentence_start:
                    entities.add(word)
            sentence_start = raw.endswith((".", "?", "!"))

        if any(lowered.startswith(p) or f" {p} " in f" {lowered} " for p in _EXPLORATORY):
            question_type = "exploratory"
        elif words and words[0].lower() in _QUESTION_WORDS:
            question_type = words[0].lower()
        elif query.endswith("?"):
            question_type = "specific"
        else:
            question_type = "statement"

        return QueryFeatures(
            length=len(query),
            word_count=len(tokens),
            technical_terms=len(technical),
            entities=len(entities),
            question_type=question_type,
            has_comparison=bool(_COMPARISON.search(query)),
            has_constraints=bool(_CONSTRAINT.search(query)),
            has_spatial_temporal=bool(_SPATIAL_TEMPORAL.search(query)),
            has_enumeration=bool(_ENUMERATION.search(query)),
        )

    def _analyze(self, query: str) -> QueryAnalysis:
        f = self.extract_features(query)
        reasoning: list[str] = []
        exploratory = f.question_type == "exploratory"

        # Specificity
        spec_score = f.technical_terms * 2.0 + f.entities * 1.5
        if f.has_constraints:
            spec_score += 1
        if f.question_type in ("what", "when", "where", "who", "which", "specific"):
            spec_score += 1
        if f.word_count >= 12:
            spec_score += 1
        if exploratory:
            spec_score -= 2
        if f.has_enumeration:
            spec_score -= 1

        if spec_score >= 4:
            specificity = Specificity.SPECIFIC
        elif spec_score >= 1.5:
            specificity = Specificity.FOCUSED
        else:
            specificity = Specificity.GENERAL

        # Complexity
        clauses = query.count(",") + query.count(";") + len(re.findall(r"\band\b", query, re.IGNORECASE))
        complexity_score = f.word_count / 8 + clauses * 0.5
        complexity_score += sum([f.has_comparison, f.has_constraints, f.has_spatial_temporal])
        if f.question_type in ("how", "why"):
            complexity_score += 1

        if complexity_score < 1.5:
            complexity = Complexity.SIMPLE
        elif complexity_score < 3:
            complexity = Complexity.MODERATE
        else:
            complexity = Complexity.COMPLEX

        if f.technical_terms:
            reasoning.append(f"{f.technical_terms} technical term(s)")
        if f.entities:
            reasoning.append(f"{f.entities} named entit{'y' if f.entities == 1 else 'ies'}")
        if exploratory:
            reasoning.append("exploratory phrasing")

        # Strategy
        if f.has_comparison:
            strategy = SearchStrategy.HYBRID
            confidence = 0.75
            reasoning.append("comparison needs both precise and varied context")
        elif specificity is Specificity.SPECIFIC:
            strategy = SearchStrategy.RELEVANCE
            confidence = 0.6 + 0.05 * min(spec_score - 4, 6)
            reasoning.append("specific query, precision first")
        elif specificity is Specificity.GENERAL and (f.word_count <= 8 or exploratory or f.has_enumeration):
            strategy = SearchStrategy.DIVERSITY
            confidence = 0.6 + 0.1 * exploratory + 0.1 * f.has_enumeration + 0.05 * (f.word_count <= 8)
            reasoning.append("broad query, favour coverage")
        elif complexity is Complexity.COMPLEX:
            strategy = SearchStrategy.HYBRID
            confidence = 0.65
            reasoning.append("complex query, mix precision and coverage")
        elif specificity is Specificity.GENERAL:
            strategy = SearchStrategy.DIVERSITY
            confidence = 0.55
            reasoning.append("general query")
        else:
            strategy = SearchStrategy.HYBRID
            confidence = 0.5
            reasoning.append("moderately focused query, ambiguous intent")

        analysis = QueryAnalysis(
            complexity=complexity,
            specificity=specificity,
            recommended_strategy=strategy,
            confidence=confidence,
            reasoning=reasoning,
            features=f,
        )
        logger.debug(
            "Query analysed: strategy=%s complexity=%s specificity=%s confidence=%.2f",
            strategy.value, complexity.value, specificity.value, analysis.confidence,
        )
        return analysis


_STRATEGY_BLURBS = {
    SearchStrategy.DIVERSITY: (
        "MMR (Maximal Marginal Relevance) balances relevance with novelty. "
        "Best for exploratory queries that benefit from different perspectives."
    ),
    SearchStrategy.RELEVANCE: (
        "Cosine similarity returns the closest matches. "
        "Best for specific queries with a clear target."
    ),
    SearchStrategy.HYBRID: (
        "Hybrid interleaves precise and diverse results. "
        "Best for complex or comparative queries that need broad coverage."
    ),
}


def explain(analysis: QueryAnalysis) -> str:
    """Human readable summary of why a strategy was chosen."""
    f = analysis.features
    lines = [
        f"Strategy: {analysis.recommended_strategy.value.upper()}",
        f"- Complexity: {analysis.complexity.value}",
        f"- Specificity: {analysis.specificity.value}",
        f"- Length: {f.length} characters, {f.word_count} words",
        f"- Technical terms: {f.technical_terms}",
        f"- Entities: {f.entities}",
        f"- Question type: {f.question_type}",
        f"- Confidence: {analysis.confidence * 100:.1f}%",
    ]
    if analysis.reasoning:
        lines.append(f"- Reasoning: {'; '.join(analysis.reasoning)}")
    lines.append("")
    lines.append(_STRATEGY_BLURBS.get(analysis.recommended_strategy, "Standard similarity search."))
    return "\n".join(lines)
