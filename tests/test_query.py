"""
Tests for memrecall.query — intent detection and query expansion.
"""

import json

import pytest

from memrecall.errors import BuildError
from memrecall.query import (
    IntentPattern,
    QueryExpander,
    QuestionTypeDetector,
    is_cjk,
    load_intent_patterns,
    tokenize,
)


# ── Intent detection ───────────────────────────────────────────────────────


class TestDetector:
    @pytest.fixture
    def detector(self):
        return QuestionTypeDetector()

    @pytest.mark.parametrize("query,expected", [
        ("我是什么用户", "what_kind"),
        ("What kind of user am I?", "what_kind"),
        ("我现在住哪", "recency"),
        ("what is the latest news", "recency"),
        ("我有多少台设备", "how_many"),
        ("How many cats do I have?", "how_many"),
        ("我住哪", "where"),
        ("Where do I live?", "where"),
        ("我什么时候生日", "when"),
        ("我喜欢什么", "preference"),
        ("你会游泳吗", "can"),
        ("hello there", "generic"),
    ])
    def test_detect(self, detector, query, expected):
        assert detector.detect(query) == expected

    def test_priority_order(self, detector):
        # both what_kind (100) and recency (80) match; higher wins
        assert detector.detect("现在我是什么用户") == "what_kind"

    def test_is_type(self, detector):
        assert detector.is_type("我住哪", "where")
        assert not detector.is_type("我住哪", "when")

    def test_disabled(self):
        assert QuestionTypeDetector(enabled=False).detect("我住哪") == "generic"

    def test_add_pattern(self, detector):
        detector.add_pattern("favourite colour", "preference", 200)
        assert detector.detect("Favourite colour?") == "preference"
        assert detector.patterns[0].priority == 200

    def test_equal_priority_keeps_insertion_order(self):
        detector = QuestionTypeDetector([
            IntentPattern("foo", "when", 10),
            IntentPattern("foo", "where", 10),
        ])
        assert detector.detect("foo") == "when"

    def test_bad_regex(self, detector):
        with pytest.raises(BuildError) as exc:
            detector.add_pattern("(unclosed", "where")
        assert exc.value.kind == "regex"

    def test_unknown_question_type(self):
        with pytest.raises(BuildError):
            IntentPattern("foo", "whatever")

    def test_plain_substring(self):
        p = IntentPattern("hometown", "where")
        assert not p.is_regex
        assert p.matches("My HOMETOWN is")


class TestLoadIntentPatterns:
    def test_load(self, tmp_path):
        path = tmp_path / "intents.json"
        path.write_text(json.dumps({
            "version": "2",
            "patterns": [{"pattern": "(?i)(gift)", "question_type": "preference", "priority": 5}],
        }), encoding="utf-8")
        rules = load_intent_patterns(str(path))
        assert len(rules) == 1
        assert QuestionTypeDetector(rules).detect("a GIFT idea") == "preference"

    def test_bad_rule_fails_at_load(self, tmp_path):
        path = tmp_path / "intents.json"
        path.write_text(json.dumps({
            "patterns": [{"pattern": "(broken", "question_type": "where"}],
        }), encoding="utf-8")
        with pytest.raises(BuildError):
            load_intent_patterns(str(path))


# ── Tokenizer ──────────────────────────────────────────────────────────────


class TestTokenize:
    def test_whitespace(self):
        assert tokenize("hello world") == ["hello", "world"]

    def test_unsegmented_cjk_single_token(self):
        assert tokenize("我是什么用户") == ["我是什么用户"]

    def test_ideographic_space_only(self):
        assert tokenize("\u3000\u3000") == ["\u3000", "\u3000"]

    def test_blank_kept_whole(self):
        assert tokenize("") == [""]

    def test_segmented_cjk_kept(self):
        assert tokenize("北京 天气") == ["北京", "天气"]

    def test_unsegmented_latin_single_token(self):
        assert tokenize("hello") == ["hello"]

    def test_is_cjk(self):
        assert is_cjk("中")
        assert is_cjk("。")
        assert not is_cjk("a")


# ── Expansion ──────────────────────────────────────────────────────────────


class TestExpander:
    @pytest.fixture
    def expander(self):
        return QueryExpander()

    def test_remove_english_stopwords(self, expander):
        assert expander.remove_stopwords("what is my user type") == "my user type"

    def test_unsegmented_cjk_fully_removed(self, expander):
        assert expander.remove_stopwords("我是什么用户") is None

    def test_remove_segmented_cjk_stopwords(self, expander):
        assert expander.remove_stopwords("我 是 什么 用户") == "用户"

    def test_nothing_removed(self, expander):
        assert expander.remove_stopwords("user type") is None

    def test_everything_removed(self, expander):
        assert expander.remove_stopwords("what is the") is None

    def test_cjk_token_containing_stopword(self, expander):
        assert expander.is_stopword("我的")
        assert not expander.is_stopword("北京")

    def test_containment_applies_to_latin(self, expander):
        assert expander.is_stopword("island")
        assert not expander.is_stopword("tokyo")

    def test_add_stopword(self, expander):
        expander.add_stopword("Please")
        assert expander.is_stopword("please")
        assert expander.remove_stopwords("please sun") == "sun"

    def test_expand(self, expander):
        out = expander.expand("where is Tokyo")
        assert len(out) == 1
        assert out[0].query == "Tokyo"
        assert out[0].expansion_type == "stopwords"

    def test_expand_disabled(self):
        assert QueryExpander(enabled=False).expand("where is Tokyo") == []

    def test_expansion_terms(self, expander):
        assert expander.expansion_terms("我 住 哪") == ["住", "哪"]

    def test_expansion_terms_unsegmented(self, expander):
        assert expander.expansion_terms("我住哪") == []

    def test_variants(self, expander):
        assert expander.expand_variants("设备 用户们") == ["用户", "用户们", "设备", "设备们"]

    def test_variants_skip_stopwords(self, expander):
        assert expander.expand_variants("what devices") == ["devices"]

    def test_custom_stopwords(self):
        expander = QueryExpander(["foo"])
        assert expander.stopwords == ["foo"]
        assert expander.remove_stopwords("foo bar") == "bar"

    def test_to_dict(self, expander):
        d = expander.to_dict()
        assert d["enabled"] is True
        assert "what" in d["stopwords"]
