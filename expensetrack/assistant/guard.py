"""Keyword pre-filter that rejects obviously off-topic messages without a model call."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Pattern, Sequence, Tuple


class Topic(str, Enum):
    RELEVANT = "relevant"
    OFF_TOPIC = "off_topic"


@dataclass(frozen=True)
class TopicRule:
    name: str
    pattern: Pattern[str]

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


def _rules(entries: Iterable[Tuple[str, str]]) -> Tuple[TopicRule, ...]:
    return tuple(TopicRule(name=name, pattern=re.compile(regex)) for name, regex in entries)


ALLOW_RULES: Tuple[TopicRule, ...] = _rules(
    [
        ("greeting", r"^h(i|ello|ey)\b"),
        ("greeting", r"^good\s+(morning|afternoon|evening)"),
        ("meta", r"\bwhat can you (do|help)"),
        ("meta", r"\bhow (do|can) (i|you)"),
        ("spending", r"\bexpense"),
        ("spending", r"\bspend"),
        ("spending", r"\bspent"),
        ("spending", r"\bbought"),
        ("spending", r"\bpurchase"),
        ("documents", r"\bbill"),
        ("documents", r"\binvoice"),
        ("documents", r"\breceipt"),
        ("planning", r"\bbudget"),
        ("planning", r"\bsav(e|ing|ings)"),
        ("money", r"\bfinance"),
        ("money", r"\bmoney"),
        ("money", r"\bcash"),
        ("money", r"\bpay(ment|ing|ed)?\b"),
        ("money", r"\bcost"),
        ("money", r"\bprice"),
        ("money", r"\bamount"),
        ("money", r"\btotal"),
        ("reporting", r"\bsummar(y|ise|ize)"),
        ("reporting", r"\bchart"),
        ("reporting", r"\bgraph"),
        ("reporting", r"\breport"),
        ("reporting", r"\binsight"),
        ("reporting", r"\bcategor(y|ies)"),
        ("records", r"\bdelete\s+(expense|record)"),
        ("records", r"\bremove\s+(expense|record)"),
        ("currency", r"\binr\b"),
        ("currency", r"₹"),
        ("currency", r"\brupee"),
        ("category", r"\bdining"),
        ("category", r"\bshopping"),
        ("category", r"\btransport"),
        ("category", r"\butilities"),
        ("category", r"\bhealth\s+expense"),
        ("category", r"\beducation\s+expense"),
        ("records", r"\btracking"),
        ("records", r"\btransaction"),
    ]
)

BLOCK_RULES: Tuple[TopicRule, ...] = _rules(
    [
        (
            "creative",
            r"\bwrite (me )?(a |an )?(poem|story|essay|code|function|script|email(?! expense)|letter|song|blog)",
        ),
        ("cooking", r"\b(recipe|how (to )?cook|bake|ingredient|meal (plan|prep))\b"),
        ("weather", r"\b(weather|forecast|temperature|climate)\b"),
        (
            "coding",
            r"\b(debug|fix (my )?code|coding|programming|javascript|python|typescript|react|nodejs"
            r"|sql(?! expense)|algorithm|data structure)\b",
        ),
        (
            "trivia",
            r"\b(capital of|president of|who (invented|discovered|wrote)|history of|tell me about"
            r"|explain (quantum|relativity|photosynthesis))\b",
        ),
        ("entertainment", r"\b(movie|film|series|tv show|song|music|lyrics|actor|actress|celebrity|anime)\b"),
        ("translation", r"\b(translate (this|to|into)|in (french|spanish|german|japanese|arabic|chinese|korean))\b"),
        ("games", r"\b(joke|riddle|fun fact|trivia|play (a\s+)?(game|quiz))\b"),
        ("sports", r"\b(sport|cricket|football|basketball|tennis|ipl|fifa)\b(?!.*expense)(?!.*spend)"),
        ("crypto", r"\b(how (does )?bitcoin work|what is ethereum|nft|blockchain)\b(?!.*expense)"),
        ("medical", r"\b(diagnose|symptom|medicine|dosage|workout routine|exercise plan)\b(?!.*expense)"),
        (
            "travel",
            r"\b(best (place|destination) to (visit|travel)|tourist spot|visa requirements)\b(?!.*expense)",
        ),
    ]
)


class TopicGuard:
    """Classify a message as relevant or off-topic.

    Allow rules are checked first and win immediately; block rules are only
    consulted when no allow rule matched. Anything matching neither list is
    treated as relevant and left to the model's system instruction.
    """

    def __init__(
        self,
        allow_rules: Sequence[TopicRule] = ALLOW_RULES,
        block_rules: Sequence[TopicRule] = BLOCK_RULES,
    ) -> None:
        self.allow_rules = tuple(allow_rules)
        self.block_rules = tuple(block_rules)

    def match(self, text: str) -> Tuple[Topic, Optional[TopicRule]]:
        lowered = text.lower().strip()
        for rule in self.allow_rules:
            if rule.matches(lowered):
                return Topic.RELEVANT, rule
        for rule in self.block_rules:
            if rule.matches(lowered):
                return Topic.OFF_TOPIC, rule
        return Topic.RELEVANT, None

    def classify(self, text: str) -> Topic:
        return self.match(text)[0]

    def is_relevant(self, text: str) -> bool:
        return self.classify(text) is Topic.RELEVANT


__all__ = ["ALLOW_RULES", "BLOCK_RULES", "Topic", "TopicGuard", "TopicRule"]
