"""Keyword-based intent classification for user prompts."""

import re

from pydantic import BaseModel, Field

from agentrace.core.models import IntentLabel

INTENT_KEYWORDS: dict[IntentLabel, dict[str, float]] = {
    IntentLabel.BUGFIX: {
        "bug": 2.0,
        "fix": 2.0,
        "broken": 1.5,
        "error": 1.0,
        "crash": 1.5,
        "fails": 1.0,
        "failing": 1.0,
        "regression": 1.5,
        "traceback": 1.5,
    },
    IntentLabel.FEATURE: {
        "add": 1.5,
        "implement": 2.0,
        "feature": 2.0,
        "support": 1.0,
        "create": 1.0,
        "new": 0.5,
        "build": 1.0,
    },
    IntentLabel.REFACTOR: {
        "refactor": 2.5,
        "rename": 1.5,
        "cleanup": 1.5,
        "clean up": 1.5,
        "simplify": 1.5,
        "extract": 1.0,
        "restructure": 2.0,
        "deduplicate": 1.5,
    },
    IntentLabel.TEST: {
        "test": 2.0,
        "tests": 2.0,
        "pytest": 2.0,
        "coverage": 1.5,
        "unit test": 1.0,
        "fixture": 1.0,
    },
    IntentLabel.DOCS: {
        "docs": 2.0,
        "documentation": 2.0,
        "readme": 2.0,
        "docstring": 2.0,
        "comment": 1.0,
        "changelog": 1.5,
    },
    IntentLabel.QUESTION: {
        "why": 1.5,
        "how does": 2.0,
        "what is": 1.5,
        "explain": 2.0,
        "where is": 1.5,
        "?": 1.0,
    },
    IntentLabel.REVIEW: {
        "review": 2.5,
        "pr": 1.0,
        "pull request": 1.5,
        "feedback": 1.0,
        "look over": 1.5,
    },
    IntentLabel.OPS: {
        "deploy": 2.0,
        "ci": 1.5,
        "pipeline": 1.5,
        "docker": 1.5,
        "release": 1.5,
        "install": 1.0,
        "config": 1.0,
        "push": 1.0,
    },
}


class IntentResult(BaseModel):
    label: IntentLabel = IntentLabel.UNKNOWN
    confidence: float = 0.0
    signals: list[str] = Field(default_factory=list)


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    if keyword.isalnum() or " " in keyword:
        return re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)
    return re.compile(re.escape(keyword))


_PATTERNS = {
    label: [(keyword, weight, _keyword_pattern(keyword)) for keyword, weight in keywords.items()]
    for label, keywords in INTENT_KEYWORDS.items()
}


def classify_prompt(prompt: str | None) -> IntentResult:
    """Score every label; the winner's share of all matched weight is the confidence."""
    if not prompt or not prompt.strip():
        return IntentResult()

    scores: dict[IntentLabel, float] = {}
    signals: dict[IntentLabel, list[str]] = {}
    for label, patterns in _PATTERNS.items():
        for keyword, weight, pattern in patterns:
            if pattern.search(prompt):
                scores[label] = scores.get(label, 0.0) + weight
                signals.setdefault(label, []).append(keyword)

    total = sum(scores.values())
    if not total:
        return IntentResult()

    # ties resolve in INTENT_KEYWORDS order
    winner = max(scores, key=lambda label: scores[label])
    return IntentResult(label=winner, confidence=round(scores[winner] / total, 4), signals=signals[winner])
