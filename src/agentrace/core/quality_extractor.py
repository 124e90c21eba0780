"""Harvest code quality signals from check run output and PR comments.

Analysis bots (SonarCloud and friends) report quality gates as markdown.
Extraction is a table of regex rules: per field the rules are tried in
priority order and the first one that yields a valid value wins.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import NamedTuple

from pydantic import BaseModel

from agentrace.core.database import EventDatabase
from agentrace.core.host_client import HostClient
from agentrace.core.models import CheckRun, QualityMetric, QualityProvenance
from agentrace.core.timestamps import utcnow

logger = logging.getLogger(__name__)

RAW_SNIPPET_MAX_CHARS = 2000

QUALITY_CHECK_HINTS = re.compile(r"sonar|quality|codacy|codeclimate|deepsource|coverage", re.IGNORECASE)

RATING_VALUES = {"A": 1, "B": 2, "C": 3, "D": 4, "E": 5}
DEBT_UNIT_MINUTES = {"min": 1, "h": 60, "d": 480}


class QualityRule(NamedTuple):
    field: str
    pattern: str
    priority: int
    kind: str


_COUNT = r"(\d[\d,]*)"
_PERCENT = r"(\d+(?:\.\d+)?)\s?%"

QUALITY_RULES: list[QualityRule] = [
    QualityRule("quality_gate_status", r"Quality\s+Gate\s+(passed|failed)", 10, "status"),
    QualityRule("quality_gate_status", r"quality[_ ]gate[_ ]status\W+(OK|ERROR|PASSED|FAILED)", 20, "status"),
    QualityRule("bugs_total", rf"\[{_COUNT}\s+(?:New\s+)?Bugs?\]\(", 10, "int"),
    QualityRule("bugs_total", rf"\[{_COUNT}\s+(?:New\s+)?issues?\]\(", 20, "int"),
    QualityRule("bugs_total", rf"\b{_COUNT}\s+(?:New\s+)?Bugs?\b", 30, "int"),
    QualityRule("bugs_total", rf"\b{_COUNT}\s+New\s+issues?\b", 40, "int"),
    QualityRule("vulnerabilities_total", rf"\[{_COUNT}\s+(?:New\s+)?Vulnerabilit(?:y|ies)\]\(", 10, "int"),
    QualityRule("vulnerabilities_total", rf"\b{_COUNT}\s+(?:New\s+)?Vulnerabilit(?:y|ies)\b", 30, "int"),
    QualityRule("security_hotspots_total", rf"\[{_COUNT}\s+(?:New\s+)?Security\s+Hotspots?\]\(", 10, "int"),
    QualityRule("security_hotspots_total", rf"\b{_COUNT}\s+(?:New\s+)?Security\s+Hotspots?\b", 30, "int"),
    QualityRule("code_smells_total", rf"\[{_COUNT}\s+(?:New\s+)?Code\s+Smells?\]\(", 10, "int"),
    QualityRule("code_smells_total", rf"\b{_COUNT}\s+(?:New\s+)?Code\s+Smells?\b", 30, "int"),
    QualityRule("duplicated_lines_density", rf"\[{_PERCENT}\s+Duplicat\w*[^\]]*\]\(", 10, "float"),
    QualityRule("duplicated_lines_density", rf"{_PERCENT}\s+Duplicat", 30, "float"),
    QualityRule("duplicated_lines_density", r"Duplicat\w*[^\d\n]{0,30}(\d+(?:\.\d+)?)\s?%", 40, "float"),
    QualityRule("coverage_percent", rf"\[{_PERCENT}\s+Coverage[^\]]*\]\(", 10, "float"),
    QualityRule("coverage_percent", rf"{_PERCENT}\s+Coverage", 30, "float"),
    QualityRule("coverage_percent", r"Coverage[^\d\n]{0,30}(\d+(?:\.\d+)?)\s?%", 40, "float"),
    QualityRule("technical_debt_minutes", r"(?:Technical\s+)?Debt\W{0,5}(\d+)\s*(min|h|d)\b", 10, "duration"),
    QualityRule("technical_debt_minutes", r"\b(\d+)\s*(min|h|d)\s+(?:of\s+)?(?:technical\s+)?debt", 20, "duration"),
    QualityRule("reliability_rating", r"Reliability\s+Rating(?:\s+on\s+New\s+Code)?\W{0,5}([A-E])\b", 10, "rating"),
    QualityRule("security_rating", r"Security\s+Rating(?:\s+on\s+New\s+Code)?\W{0,5}([A-E])\b", 10, "rating"),
    QualityRule(
        "maintainability_rating", r"Maintainability\s+Rating(?:\s+on\s+New\s+Code)?\W{0,5}([A-E])\b", 10, "rating"
    ),
]


class ExtractedQuality(BaseModel):
    """Metrics found in one text blob. Missing metrics stay None."""

    quality_gate_status: str | None = None
    bugs_total: int | None = None
    vulnerabilities_total: int | None = None
    security_hotspots_total: int | None = None
    code_smells_total: int | None = None
    duplicated_lines_density: float | None = None
    coverage_percent: float | None = None
    technical_debt_minutes: int | None = None
    reliability_rating: int | None = None
    security_rating: int | None = None
    maintainability_rating: int | None = None

    def has_any(self) -> bool:
        return any(value is not None for value in self.model_dump().values())


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning(f"Skipping invalid quality rule {pattern!r}: {e}")
        return None


def _convert(kind: str, match: re.Match[str]) -> str | int | float | None:
    raw = match.group(1)
    match kind:
        case "int":
            return int(raw.replace(",", ""))
        case "float":
            return float(raw)
        case "status":
            return "PASSED" if raw.upper() in ("PASSED", "OK") else "FAILED"
        case "rating":
            return RATING_VALUES[raw.upper()]
        case "duration":
            return int(raw) * DEBT_UNIT_MINUTES[match.group(2).lower()]
        case _:
            raise ValueError(f"unknown rule kind {kind}")


def extract_quality_metrics(text: str | None, rules: list[QualityRule] | None = None) -> ExtractedQuality:
    """Apply ``rules`` to ``text``. Never raises; misses are None."""
    extracted = ExtractedQuality()
    if not text:
        return extracted

    by_field: dict[str, list[QualityRule]] = {}
    for rule in rules if rules is not None else QUALITY_RULES:
        by_field.setdefault(rule.field, []).append(rule)

    values = {}
    for field, field_rules in by_field.items():
        if field not in ExtractedQuality.model_fields:
            logger.warning(f"Skipping quality rule for unknown field {field}")
            continue
        for rule in sorted(field_rules, key=lambda r: r.priority):
            compiled = _compile(rule.pattern)
            if compiled is None:
                continue
            match = compiled.search(text)
            if not match:
                continue
            try:
                values[field] = _convert(rule.kind, match)
                break
            except (ValueError, KeyError, IndexError) as e:
                logger.debug(f"Discarding capture {match.group(0)!r} for {field}: {e}")

    return extracted.model_copy(update=values)


class QualityCollector:
    """Finds quality signals for a PR and stores the first provenance that has any."""

    def __init__(self, db: EventDatabase, host: HostClient):
        self.db = db
        self.host = host

    def collect(
        self,
        cwd: Path | str,
        repository: str,
        pr_number: int,
        head_sha: str | None,
        session_id: str | None = None,
        check_runs: list[CheckRun] | None = None,
    ) -> QualityMetric | None:
        if check_runs is None:
            check_runs = self.host.check_runs_for_commit(cwd, head_sha) if head_sha else []

        found = self._from_check_runs(cwd, check_runs)
        if found is None:
            found = self._from_comments(cwd, pr_number)
        if found is None:
            logger.debug(f"No quality signals for {repository}#{pr_number}")
            return None

        provenance, extracted, snippet = found
        metric = QualityMetric(
            repository=repository,
            pr_number=pr_number,
            commit_sha=head_sha,
            session_id=session_id,
            source=provenance,
            raw_snippet=snippet[:RAW_SNIPPET_MAX_CHARS],
            captured_at=utcnow(),
            **extracted.model_dump(),
        )
        self.db.run_transaction(lambda conn: self.db.upsert_quality_metric(conn, metric))
        logger.info(f"Stored quality metrics for {repository}#{pr_number} from {provenance.value}")
        return metric

    def _from_check_runs(
        self, cwd: Path | str, check_runs: list[CheckRun]
    ) -> tuple[QualityProvenance, ExtractedQuality, str] | None:
        ordered = sorted(check_runs, key=lambda run: 0 if QUALITY_CHECK_HINTS.search(run.name) else 1)
        for run in ordered:
            payload = run.output_payload
            extracted = extract_quality_metrics(payload)
            if extracted.has_any():
                return QualityProvenance.CHECK_RUN_OUTPUT, extracted, payload

            if run.check_run_id is None or not QUALITY_CHECK_HINTS.search(run.name):
                continue
            annotations = "\n".join(self.host.check_run_annotations(cwd, run.check_run_id))
            extracted = extract_quality_metrics(annotations)
            if extracted.has_any():
                return QualityProvenance.ANNOTATION, extracted, annotations
        return None

    def _from_comments(
        self, cwd: Path | str, pr_number: int
    ) -> tuple[QualityProvenance, ExtractedQuality, str] | None:
        for body in self.host.issue_comments(cwd, pr_number):
            extracted = extract_quality_metrics(body)
            if extracted.has_any():
                return QualityProvenance.COMMENT, extracted, body
        return None
