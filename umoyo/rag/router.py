"""
Umoyo Query Router

Decides which retrieval strategy answers a question. Rules are evaluated
in order and the first one that matches wins:

1. visual terms       -> custom  0.9
2. regional terms     -> custom  min(0.7 + 0.1 * matches, 0.95)
3. comparative terms  -> hybrid  0.8
4. general medical    -> managed min(0.75 + 0.1 * matches, 0.9)
5. fewer than 5 words -> managed 0.6
6. anything else      -> hybrid  0.5

Healthcare professionals get low-confidence managed decisions upgraded to
hybrid. Keyword matching is case-insensitive and whole-word.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum


class Strategy(str, Enum):
    MANAGED = "managed"
    CUSTOM = "custom"
    HYBRID = "hybrid"


class UserRole(str, Enum):
    PATIENT = "patient"
    PROFESSIONAL = "professional"

    @classmethod
    def parse(cls, value: "str | UserRole") -> "UserRole":
        """Accept 'patient', 'professional' or 'healthcare-professional'."""
        if isinstance(value, UserRole):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown role: {value!r}")
        normalized = value.strip().lower()
        if normalized == "healthcare-professional":
            return cls.PROFESSIONAL
        return cls(normalized)


@dataclass(frozen=True)
class QueryAnalysis:
    strategy: Strategy
    confidence: float
    reasoning: str


# ============================================
# Keyword tables
# ============================================

VISUAL_KEYWORDS = (
    "image",
    "picture",
    "diagram",
    "chart",
    "graph",
    "figure",
    "illustration",
    "x-ray",
    "scan",
    "visual",
    "show me",
)

REGIONAL_KEYWORDS = (
    "zambia",
    "zambian",
    "lusaka",
    "copperbelt",
    "southern province",
    "local",
    "regional",
    "africa",
    "sub-saharan",
    "endemic",
    "prevalence in zambia",
)

COMPARATIVE_KEYWORDS = (
    "compare",
    "difference between",
    "versus",
    "vs",
    "relationship",
    "how does",
    "why does",
    "when should",
)

GENERAL_MEDICAL_KEYWORDS = (
    "what is",
    "define",
    "explain",
    "symptoms of",
    "treatment for",
    "causes of",
    "diagnosis",
    "prevention",
    "side effects",
    "drug",
    "medication",
    "disease",
    "condition",
    "who guideline",
    "clinical guideline",
)

SHORT_QUERY_WORDS = 5
PROFESSIONAL_UPGRADE_THRESHOLD = 0.8
PROFESSIONAL_SUFFIX = " (adjusted for healthcare professional)"


def _keyword_pattern(keyword: str) -> re.Pattern:
    return re.compile(r"\b" + re.escape(keyword) + r"\b", re.IGNORECASE)


def count_matches(query: str, patterns: tuple[re.Pattern, ...]) -> int:
    """Number of distinct keywords present in the query."""
    return sum(1 for p in patterns if p.search(query))


# ============================================
# Rules
# ============================================


@dataclass(frozen=True)
class RoutingRule:
    """One step of the routing cascade.

    ``matches`` returns the number of hits for the query (0 means the rule
    does not apply); ``confidence`` maps that count to a score.
    """

    name: str
    strategy: Strategy
    reasoning: str
    matches: Callable[[str], int]
    confidence: Callable[[int], float]


def keyword_rule(
    name: str,
    keywords: tuple[str, ...],
    strategy: Strategy,
    reasoning: str,
    confidence: Callable[[int], float],
) -> RoutingRule:
    patterns = tuple(_keyword_pattern(k) for k in keywords)
    return RoutingRule(
        name=name,
        strategy=strategy,
        reasoning=reasoning,
        matches=lambda query: count_matches(query, patterns),
        confidence=confidence,
    )


def _is_short(query: str) -> int:
    return 1 if len(query.split()) < SHORT_QUERY_WORDS else 0


DEFAULT_RULES: tuple[RoutingRule, ...] = (
    keyword_rule(
        "visual",
        VISUAL_KEYWORDS,
        Strategy.CUSTOM,
        "Query requires visual/image content",
        lambda n: 0.9,
    ),
    keyword_rule(
        "regional",
        REGIONAL_KEYWORDS,
        Strategy.CUSTOM,
        "Query is Zambia-specific",
        lambda n: min(0.7 + 0.1 * n, 0.95),
    ),
    keyword_rule(
        "comparative",
        COMPARATIVE_KEYWORDS,
        Strategy.HYBRID,
        "Complex query benefits from multiple sources",
        lambda n: 0.8,
    ),
    keyword_rule(
        "general",
        GENERAL_MEDICAL_KEYWORDS,
        Strategy.MANAGED,
        "General medical query suitable for managed retrieval",
        lambda n: min(0.75 + 0.1 * n, 0.9),
    ),
    RoutingRule(
        name="short",
        strategy=Strategy.MANAGED,
        reasoning="Short query benefits from broader knowledge base",
        matches=_is_short,
        confidence=lambda n: 0.6,
    ),
)

DEFAULT_ANALYSIS = QueryAnalysis(
    strategy=Strategy.HYBRID,
    confidence=0.5,
    reasoning="Query type unclear, using hybrid approach",
)


class QueryRouter:
    """Deterministic, side-effect-free query classifier."""

    def __init__(
        self,
        rules: tuple[RoutingRule, ...] = DEFAULT_RULES,
        default: QueryAnalysis = DEFAULT_ANALYSIS,
    ) -> None:
        self.rules = rules
        self.default = default

    def analyze(self, query: str) -> QueryAnalysis:
        """Apply the rule cascade without any role adjustment."""
        normalized = query.strip().lower()
        for rule in self.rules:
            hits = rule.matches(normalized)
            if hits > 0:
                return QueryAnalysis(
                    strategy=rule.strategy,
                    confidence=round(rule.confidence(hits), 4),
                    reasoning=rule.reasoning,
                )
        return self.default

    def classify(self, query: str, role: "str | UserRole") -> QueryAnalysis:
        return adjust_for_role(self.analyze(query), UserRole.parse(role))


def adjust_for_role(analysis: QueryAnalysis, role: UserRole) -> QueryAnalysis:
    """Upgrade low-confidence managed decisions to hybrid for professionals."""
    if (
        role is UserRole.PROFESSIONAL
        and analysis.strategy is Strategy.MANAGED
        and analysis.confidence < PROFESSIONAL_UPGRADE_THRESHOLD
    ):
        return QueryAnalysis(
            strategy=Strategy.HYBRID,
            confidence=round(min(analysis.confidence + 0.1, 1.0), 4),
            reasoning=analysis.reasoning + PROFESSIONAL_SUFFIX,
        )
    return analysis
