import pytest

from agentrace.core.intent import classify_prompt
from agentrace.core.models.session import IntentLabel


@pytest.mark.parametrize(
    "prompt,expected",
    [
        ("Fix the crash when the cache is empty", IntentLabel.BUGFIX),
        ("Implement a new export feature", IntentLabel.FEATURE),
        ("Refactor the parser and rename helpers", IntentLabel.REFACTOR),
        ("Write pytest coverage for the scheduler", IntentLabel.TEST),
        ("Update the README and changelog", IntentLabel.DOCS),
        ("How does the cooldown work?", IntentLabel.QUESTION),
        ("Please review this pull request", IntentLabel.REVIEW),
        ("Deploy the release pipeline", IntentLabel.OPS),
    ],
)
def test_classify_prompt__picks_highest_scoring_label(prompt, expected):
    assert classify_prompt(prompt).label == expected


def test_classify_prompt__confidence_is_share_of_matched_weight():
    result = classify_prompt("fix the failing test")

    # bugfix: fix 2.0 + failing 1.0, test: test 2.0
    assert result.label == IntentLabel.BUGFIX
    assert result.confidence == pytest.approx(0.6)
    assert result.signals == ["fix", "failing"]


def test_classify_prompt__whole_words_only():
    assert classify_prompt("prefix suffix").label == IntentLabel.UNKNOWN


@pytest.mark.parametrize("prompt", [None, "", "   ", "hello there"])
def test_classify_prompt__unknown_without_signals(prompt):
    result = classify_prompt(prompt)

    assert result.label == IntentLabel.UNKNOWN
    assert result.confidence == 0.0
    assert result.signals == []
