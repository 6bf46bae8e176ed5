"""
Question intent detection and query expansion.

Provides two capabilities:
  1. QuestionTypeDetector — classify a query into a question intent
     (what_kind, how_many, recency, ...) with prioritized bilingual rules.
  2. QueryExpander — strip stopwords and question particles to widen recall
     when a search under-returns.

Both are deterministic and stdlib-only.  Rule sets are data: they can be
loaded from JSON and are compiled once, failing fast on a bad pattern.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Optional, Pattern, Sequence, Tuple

from memrecall.errors import BuildError

logger = logging.getLogger(__name__)

# ── Question intents ────────────────────────────────────────────────────

QuestionType = Literal[
    "what_kind", "how_many", "recency", "update", "where",
    "preference", "when", "have", "can", "generic",
]
VALID_QUESTION_TYPES: set = {
    "what_kind", "how_many", "recency", "update", "where",
    "preference", "when", "have", "can", "generic",
}

# (pattern, question type, priority); higher priority is tried first
DEFAULT_INTENT_PATTERNS: List[Tuple[str, str, int]] = [
    (r"(?i)(我是什么|我是谁|我的身份|我的类型|我属于|我算.*用户|我属于.*吗)", "what_kind", 100),
    (r"(?i)(what kind|what type|who am i|what am i|my identity)", "what_kind", 90),
    (r"(?i)(现在|目前|最新|当前|最近|current|latest|right now|at the moment|up to date)",
     "recency", 80),
    (r"(?i)(多少|有几个|几多|how many|how much|count of|number of)", "how_many", 70),
    (r"(?i)(之前|原来|之前是|以前.*现在|changed|updated|was.*now)", "update", 60),
    (r"(?i)(在哪|在哪里|住哪|where|which place|which location)", "where", 50),
    (r"(?i)(什么时候|何时|when|at what time|what time)", "when", 45),
    (r"(?i)(喜欢什么|爱什么|偏好|what.*like|what do you like)", "preference", 40),
    (r"(?i)(有什么|拥有|have|have.*got|possess)", "have", 35),
    (r"(?i)(会.*吗|能.*吗|can you|able to|capable of)", "can", 30),
]

# Characters that mark a pattern as a regex rather than a plain substring
_REGEX_MARKERS = ("(?i)", "(", "|")


@dataclass
class IntentPattern:
    """One detection rule.

    Patterns containing ``(``, ``|`` or ``(?i)`` are regular expressions
    searched in the lowercased query; anything else is a case-insensitive
    substring.
    """

    pattern: str
    question_type: QuestionType
    priority: int = 50
    _regex: Optional[Pattern[str]] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        if self.question_type not in VALID_QUESTION_TYPES:
            raise BuildError("kind", self.pattern, f"unknown question type {self.question_type!r}")
        if any(m in self.pattern for m in _REGEX_MARKERS):
            try:
                self._regex = re.compile(self.pattern)
            except re.error as exc:
                raise BuildError("regex", self.pattern, str(exc)) from exc

    @property
    def is_regex(self) -> bool:
        return self._regex is not None

    def matches(self, query: str) -> bool:
        lowered = query.lower()
        if self._regex is not None:
            return self._regex.search(lowered) is not None
        return self.pattern.lower() in lowered


class QuestionTypeDetector:
    """Classify queries by the first matching rule (priority descending).

    Ties in priority keep insertion order.  A disabled detector always
    answers ``generic``.
    """

    def __init__(
        self,
        patterns: Optional[Iterable[IntentPattern]] = None,
        *,
        enabled: bool = True,
    ):
        if patterns is None:
            patterns = [IntentPattern(p, qt, prio) for p, qt, prio in DEFAULT_INTENT_PATTERNS]
        self._patterns: List[IntentPattern] = []
        self.enabled = enabled
        for p in patterns:
            self._patterns.append(p)
        self._sort()

    def _sort(self) -> None:
        # list.sort is stable: equal priorities keep insertion order
        self._patterns.sort(key=lambda p: -p.priority)

    @property
    def patterns(self) -> List[IntentPattern]:
        return list(self._patterns)

    def add_pattern(
        self, pattern: str, question_type: QuestionType, priority: int = 50,
    ) -> None:
        """Compile and register a rule (raises BuildError on a bad regex)."""
        self._patterns.append(IntentPattern(pattern, question_type, priority))
        self._sort()

    def detect(self, query: str) -> QuestionType:
        if not self.enabled:
            return "generic"
        for p in self._patterns:
            if p.matches(query):
                return p.question_type
        return "generic"

    def is_type(self, query: str, question_type: QuestionType) -> bool:
        return self.detect(query) == question_type


def load_intent_patterns(path: str) -> List[IntentPattern]:
    """Load a versioned intent rule set from JSON.

    Format::

        {"version": "1", "patterns": [
            {"pattern": "...", "question_type": "where", "priority": 50}
        ]}

    Every rule is compiled here; a bad rule raises BuildError before any
    query is classified.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    rules = [
        IntentPattern(r["pattern"], r["question_type"], int(r.get("priority", 50)))
        for r in data.get("patterns", [])
    ]
    logger.info(
        f"Loaded {len(rules)} intent patterns from {path} "
        f"(version={data.get('version', 'unversioned')})"
    )
    return rules


# ── Query expansion ─────────────────────────────────────────────────────

DEFAULT_STOPWORDS: Tuple[str, ...] = (
    # Chinese question words and particles
    "什么", "怎么", "如何", "哪里", "哪个", "多少", "谁", "什么时候",
    "为什么", "咋", "吗", "呢", "的", "了", "是", "有", "在",
    "我", "你", "他", "她", "它",
    # Chinese single characters of split question words
    "什", "么", "怎", "如",
    # English question words and auxiliaries
    "what", "how", "where", "which", "who", "when", "why", "whose",
    "a", "an", "the", "is", "are", "was", "were", "do", "does", "did", "am",
)

# Plural handling: nouns that take the "们" suffix
_PLURAL_SUFFIX = "们"
_PLURALIZABLE = frozenset({"用户", "设备", "手机"})

_CJK_RANGES: Tuple[Tuple[int, int], ...] = (
    (0x4E00, 0x9FFF),    # CJK Unified Ideographs
    (0x3400, 0x4DBF),    # Extension A
    (0x20000, 0x2A6DF),  # Extension B
    (0x2A700, 0x2B73F),  # Extension C
    (0x2B740, 0x2B81F),  # Extension D
    (0x2B820, 0x2CEAF),  # Extension E
    (0x2CEB0, 0x2EBEF),  # Extension F
    (0x3000, 0x303F),    # CJK Symbols and Punctuation
    (0xFF00, 0xFFEF),    # Halfwidth and Fullwidth Forms
)

ExpansionType = Literal["stopwords", "variants"]


def is_cjk(ch: str) -> bool:
    """Return True if the character lies in a CJK block."""
    cp = ord(ch)
    return any(lo <= cp <= hi for lo, hi in _CJK_RANGES)


def _has_cjk(text: str) -> bool:
    return any(is_cjk(ch) for ch in text)


def tokenize(query: str) -> List[str]:
    """Split a query into terms.

    Whitespace first.  When that yields nothing and the text contains CJK
    code points (an ideographic-space-only string), one token per
    character; otherwise the whole string as a single token.  Unsegmented
    CJK text such as ``"我是什么用户"`` therefore stays one token.
    """
    tokens = query.split()
    if tokens:
        return tokens
    if _has_cjk(query):
        return list(query)
    return [query]


@dataclass
class ExpandedQuery:
    """An expanded query with the strategy that produced it."""
    query: str
    expansion_type: ExpansionType = "stopwords"


class QueryExpander:
    """Stopword-stripping query expansion."""

    def __init__(
        self,
        stopwords: Optional[Sequence[str]] = None,
        *,
        enabled: bool = True,
    ):
        base = DEFAULT_STOPWORDS if stopwords is None else stopwords
        self._stopwords: List[str] = [w.lower() for w in base]
        self.enabled = enabled

    @property
    def stopwords(self) -> List[str]:
        return list(self._stopwords)

    def add_stopword(self, word: str) -> None:
        self._stopwords.append(word.lower())

    def is_stopword(self, token: str) -> bool:
        """Exact match, or containment of any stopword.

        Unsegmented CJK text arrives as one long token, so a contained
        question word or particle marks the whole token as noise.
        """
        lower = token.lower()
        if lower in self._stopwords:
            return True
        return any(sw in lower for sw in self._stopwords)

    def remove_stopwords(self, query: str) -> Optional[str]:
        """Query with stopword tokens removed, or None if nothing useful.

        Returns None when every token is a stopword or when no token was
        removed.
        """
        tokens = tokenize(query)
        kept = [t for t in tokens if not self.is_stopword(t)]
        if kept and len(kept) < len(tokens):
            return " ".join(kept)
        return None

    def expand(self, query: str) -> List[ExpandedQuery]:
        """All expansions of *query* (empty when disabled)."""
        if not self.enabled:
            return []
        results: List[ExpandedQuery] = []
        filtered = self.remove_stopwords(query)
        if filtered is not None:
            results.append(ExpandedQuery(filtered, "stopwords"))
        return results

    def expand_variants(self, query: str) -> List[str]:
        """Non-stopword tokens plus singular/plural variants, sorted."""
        variants: List[str] = []
        for token in tokenize(query):
            if self.is_stopword(token):
                continue
            variants.append(token)
            if token.endswith(_PLURAL_SUFFIX) and len(token) > 1:
                variants.append(token[:-1])
            elif token in _PLURALIZABLE:
                variants.append(token + _PLURAL_SUFFIX)
        return sorted(set(variants))

    def expansion_terms(self, query: str) -> List[str]:
        """Distinct terms from all expansions, in first-seen order."""
        seen: Dict[str, None] = {}
        for eq in self.expand(query):
            for term in eq.query.split():
                seen.setdefault(term, None)
        return list(seen)

    def to_dict(self) -> Dict[str, Any]:
        return {"stopwords": self.stopwords, "enabled": self.enabled}
