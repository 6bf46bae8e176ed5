"""
Structured Card Extraction — Rule-based entity/slot/value extraction

Each rule is a regex plus a card kind and entity/slot/value templates that
reference capture groups as ``$1`` .. ``$9``.  Applying the rule set to a
text yields zero or more MemoryCards:

    "我住北京" --location_live_in--> (user, location, "北京")

Rule sets are versioned data: they are loaded from JSON (or the built-in
defaults) and every rule is compiled at load time, so a broken rule fails
with BuildError before any text is processed.

Confidence of a card:
    0.5 + 0.3 * (match length / text length)
        + 0.1 if the entity template is literal
        + 0.1 if the slot template is literal
capped at 1.0.  Cards below ``min_confidence`` are discarded.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Pattern

from memrecall.config import ExtractionConfig
from memrecall.errors import BuildError
from memrecall.types import (
    VALID_CARD_KINDS,
    VALID_POLARITIES,
    CardKind,
    MemoryCard,
    Polarity,
)

logger = logging.getLogger(__name__)

DEFAULT_PATTERN_SET_VERSION = "1.0.0"

_PLACEHOLDER_RE = re.compile(r"\$([1-9])")


# ---------------------------------------------------------------------------
# Rule definitions (data) and compiled rules
# ---------------------------------------------------------------------------

@dataclass
class PatternDef:
    """Serializable extraction rule."""

    id: str
    name: str
    pattern: str
    kind: str
    entity: str
    slot: str
    value: str
    polarity: Optional[str] = None

    def build(self) -> ExtractionPattern:
        """Compile into an ExtractionPattern.

        Raises:
            BuildError: invalid regex, unknown kind, or unknown polarity.
        """
        try:
            regex = re.compile(self.pattern)
        except re.error as exc:
            raise BuildError("regex", self.name, str(exc)) from exc
        if self.kind not in VALID_CARD_KINDS:
            raise BuildError("kind", self.name, self.kind)
        if self.polarity is not None and self.polarity not in VALID_POLARITIES:
            raise BuildError("polarity", self.name, self.polarity)
        return ExtractionPattern(
            name=self.name,
            regex=regex,
            kind=self.kind,  # type: ignore[arg-type]
            entity=self.entity,
            slot=self.slot,
            value=self.value,
            polarity=self.polarity,  # type: ignore[arg-type]
        )

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> PatternDef:
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


@dataclass
class ExtractionPattern:
    """A compiled extraction rule."""

    name: str
    regex: Pattern[str]
    kind: CardKind
    entity: str
    slot: str
    value: str
    polarity: Optional[Polarity] = None

    @property
    def literal_entity(self) -> bool:
        return "$" not in self.entity

    @property
    def literal_slot(self) -> bool:
        return "$" not in self.slot


def expand_template(template: str, match: "re.Match[str]") -> str:
    """Replace ``$1``..``$9`` with captured groups, then strip.

    Placeholders whose group did not participate are left as-is.
    """
    def repl(m: "re.Match[str]") -> str:
        idx = int(m.group(1))
        if idx > (match.re.groups or 0):
            return m.group(0)
        captured = match.group(idx)
        return m.group(0) if captured is None else captured

    return _PLACEHOLDER_RE.sub(repl, template).strip()


# ---------------------------------------------------------------------------
# Default rule set (Chinese + English)
# ---------------------------------------------------------------------------

def default_patterns() -> List[PatternDef]:
    """Built-in rules: identity, location, devices, preferences, work,
    education, relationships, and a few English statements."""
    return [
        # Identity
        PatternDef(
            "user_identity_statement", "user_identity",
            r"(?i)我(?:是|算)(?:一个)?(.{1,20})(?:用户|玩机党|开发者|学生|工程师|设计师|产品经理)",
            "profile", "user", "user_type", "$1用户",
        ),
        PatternDef(
            "user_identity_simple", "user_identity_simple",
            r"(?i)我(?:是|属于)(.{1,30})",
            "profile", "user", "identity", "$1",
        ),
        # Location
        PatternDef(
            "location_live_in", "location_live",
            r"(?i)我(?:住|居住|生活在|在)(.{1,50})(?:省|市|区|县|镇|村)?",
            "fact", "user", "location", "$1",
        ),
        PatternDef(
            "location_moved_to", "location_moved",
            r"(?i)我(?:搬|搬迁|迁移)(?:到|去了|去)(.{1,50})",
            "event", "user", "location", "$1",
        ),
        # Devices
        PatternDef(
            "device_ownership", "device_own",
            r"(?i)(?:我|我的)(.{1,10})(?:手机|电脑|设备|平板|笔记本)(?:是|：|:)?\s*(.{1,30})",
            "fact", "user", "device_$1", "$2",
        ),
        PatternDef(
            "phone_model", "phone_model",
            r"(?i)我(?:的)?(?:手机|电话|机子)(?:是|：|:)?\s*([a-zA-Z0-9一-鿿]{1,30})",
            "fact", "user.phone", "model", "$1",
        ),
        # Preferences
        PatternDef(
            "preference_like", "preference_like",
            r"(?i)我(?:喜欢|爱|偏爱|偏好)(.{1,50})",
            "preference", "user", "preference", "$1", "positive",
        ),
        PatternDef(
            "preference_dislike", "preference_dislike",
            r"(?i)我(?:讨厌|不喜欢|厌恶|反感)(.{1,50})",
            "preference", "user", "preference", "$1", "negative",
        ),
        # Work / education
        PatternDef(
            "work_company", "work_company",
            r"(?i)我(?:在)?(?:就职|工作|任职)(?:于|在)?(.{1,50})(?:公司|厂|局|所|部)?",
            "fact", "user", "workplace", "$1",
        ),
        PatternDef(
            "education_school", "education_school",
            r"(?i)我(?:就读|毕业于|在)(.{1,50})(?:大学|学院|学校|中学|小学)?",
            "profile", "user", "education", "$1",
        ),
        # Relationships
        PatternDef(
            "relationship_family", "relationship_family",
            r"(?i)我(?:的)?(.{1,10})(?:是|叫)(.{1,20})",
            "relationship", "user", "family_$1", "$2",
        ),
        # English
        PatternDef(
            "en_identity", "en_identity",
            r"(?i)I am a? (.{1,30})",
            "profile", "user", "identity", "$1",
        ),
        PatternDef(
            "en_location", "en_location",
            r"(?i)I live in (.{1,50})",
            "fact", "user", "location", "$1",
        ),
        PatternDef(
            "en_work", "en_work",
            r"(?i)I work at (.{1,50})",
            "fact", "user", "workplace", "$1",
        ),
    ]


@dataclass
class PatternSet:
    """A versioned collection of rule definitions."""

    version: str = DEFAULT_PATTERN_SET_VERSION
    patterns: List[PatternDef] = field(default_factory=default_patterns)

    def compile(self) -> List[ExtractionPattern]:
        """Compile every rule (all-or-nothing)."""
        return [p.build() for p in self.patterns]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "patterns": [p.to_dict() for p in self.patterns],
        }


def load_patterns(path: str) -> PatternSet:
    """Load a pattern set from JSON and compile-check it.

    Format: ``{"version": "1.1.0", "patterns": [{id, name, pattern, kind,
    entity, slot, value, polarity?}, ...]}``

    Raises:
        BuildError: a rule fails to compile.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    pset = PatternSet(
        version=str(data.get("version", DEFAULT_PATTERN_SET_VERSION)),
        patterns=[PatternDef.from_dict(p) for p in data.get("patterns", [])],
    )
    pset.compile()
    logger.info(
        f"Loaded pattern set v{pset.version} ({len(pset.patterns)} rules) from {path}"
    )
    return pset


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ExtractionEngine:
    """Applies a compiled rule set to text, producing MemoryCards."""

    def __init__(
        self,
        patterns: Optional[Iterable[PatternDef]] = None,
        config: Optional[ExtractionConfig] = None,
        *,
        version: str = DEFAULT_PATTERN_SET_VERSION,
    ):
        self.config = config or ExtractionConfig()
        defs = list(patterns) if patterns is not None else default_patterns()
        # Fail fast: every rule compiles before anything runs
        self._patterns: List[ExtractionPattern] = [d.build() for d in defs]
        self.pattern_set_version = version
        logger.debug(f"ExtractionEngine ready with {len(self._patterns)} rules")

    @classmethod
    def from_config(cls, config: ExtractionConfig) -> ExtractionEngine:
        """Engine using ``config.patterns_path`` if set, else the defaults."""
        if config.patterns_path:
            pset = load_patterns(config.patterns_path)
            return cls(pset.patterns, config, version=pset.version)
        return cls(None, config)

    @property
    def patterns(self) -> List[ExtractionPattern]:
        return list(self._patterns)

    @property
    def engine_kind(self) -> str:
        return self.config.engine_kind

    @property
    def engine_version(self) -> str:
        """Version stamped on cards and enrichment runs.

        ``config.engine_version`` when set, else the rule set's own version,
        so loading a new rule set queues every memory for re-enrichment.
        """
        return self.config.engine_version or self.pattern_set_version

    @staticmethod
    def confidence_for(pattern: ExtractionPattern, match_len: int, text_len: int) -> float:
        confidence = 0.5
        if text_len > 0:
            confidence += 0.3 * match_len / text_len
        if pattern.literal_entity:
            confidence += 0.1
        if pattern.literal_slot:
            confidence += 0.1
        return min(confidence, 1.0)

    def _apply(self, pattern: ExtractionPattern, text: str, user_scope: str) -> Optional[MemoryCard]:
        match = pattern.regex.search(text)
        if match is None:
            return None
        value = expand_template(pattern.value, match)
        if not value:
            return None
        return MemoryCard(
            user_scope=user_scope,
            kind=pattern.kind,
            entity=expand_template(pattern.entity, match),
            slot=expand_template(pattern.slot, match),
            value=value,
            polarity=pattern.polarity,
            engine=self.engine_kind,
            engine_version=self.engine_version,
            confidence=self.confidence_for(pattern, len(match.group(0)), len(text)),
        )

    def extract(self, text: str, user_scope: str) -> List[MemoryCard]:
        """Apply every rule independently; keep cards above min_confidence."""
        cards: List[MemoryCard] = []
        for pattern in self._patterns:
            card = self._apply(pattern, text, user_scope)
            if card is None:
                continue
            if card.confidence is not None and card.confidence < self.config.min_confidence:
                continue
            cards.append(card)
        return cards

    def extract_from_summary(
        self, summary: str, user_scope: str, source_memory_id: str,
    ) -> List[MemoryCard]:
        """Extract cards from a memory summary, linking them to the memory."""
        cards = self.extract(summary, user_scope)
        for card in cards:
            card.source_memory_id = source_memory_id
        return cards
