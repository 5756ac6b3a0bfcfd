"""Turn free-form completion text into a validated weekly plan.

The text cascade short-circuits on the first strategy that yields a JSON
value:

1. strict parse of the trimmed text
2. strict parse after stripping markdown fences
3. strict parse of the first balanced ``{...}``
4. lenient (JSON5) parse of that object
5. truncation repair of the object tail, then lenient parse
6. the first balanced ``[...]`` array, strict then lenient
7. the ordered ``TEXT_FIXUPS`` pipeline, then lenient parse

Structural repair of the parsed value lives in ``plan_structure``.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import json5

from plan_engine.core.errors import ParseError
from plan_engine.services import json_fixups
from plan_engine.services.plan_structure import (
    PlanConstraints,
    RepairReport,
    find_semantic_issues,
    merge_redo_sections,
    repair_plan,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParseOutcome:
    value: Any
    strategy: str


def _strict(text: str) -> Any:
    return json.loads(text)


def _lenient(text: str) -> Any:
    return json5.loads(text)


def _attempt(parser: Callable[[str], Any], text: Optional[str]) -> Tuple[bool, Any]:
    if not text:
        return False, None
    try:
        return True, parser(text)
    except (ValueError, RecursionError):
        return False, None


def parse_json_response(text: str) -> ParseOutcome:
    """Run the repair cascade and return the first value it produces.

    Raises ``ParseError`` when no strategy yields JSON.
    """
    if not text or not text.strip():
        raise ParseError("Completion text is empty")

    trimmed = text.strip()
    ok, value = _attempt(_strict, trimmed)
    if ok:
        return ParseOutcome(value, "strict")

    cleaned = json_fixups.strip_code_fences(trimmed)
    ok, value = _attempt(_strict, cleaned)
    if ok:
        return ParseOutcome(value, "fenced")

    candidate = json_fixups.find_balanced(cleaned, "{")
    ok, value = _attempt(_strict, candidate)
    if ok:
        return ParseOutcome(value, "balanced_object")
    ok, value = _attempt(_lenient, candidate)
    if ok:
        return ParseOutcome(value, "lenient_object")

    start = cleaned.find("{")
    if start != -1:
        tail = candidate if candidate is not None else cleaned[start:]
        repaired = json_fixups.close_truncated_json(tail)
        if repaired != tail:
            logger.debug("Closed truncated JSON by appending %r", repaired[len(tail) :][-40:])
        ok, value = _attempt(_lenient, repaired)
        if ok:
            return ParseOutcome(value, "truncation_repair")

    array = json_fixups.find_balanced(cleaned, "[")
    ok, value = _attempt(_strict, array)
    if not ok:
        ok, value = _attempt(_lenient, array)
    if ok:
        return ParseOutcome(value, "balanced_array")

    fixed = json_fixups.apply_text_fixups(cleaned)
    for candidate in (fixed, json_fixups.find_balanced(fixed, "{"), json_fixups.find_balanced(fixed, "[")):
        ok, value = _attempt(_lenient, candidate)
        if ok:
            return ParseOutcome(value, "text_fixups")

    logger.warning("No JSON structure recovered from %s chars of completion text", len(text))
    raise ParseError("Failed to parse JSON from completion text", detail=text[:500])


def parse_and_validate(
    raw_text: str,
    constraints: PlanConstraints,
    *,
    base_days: Optional[Dict[str, Any]] = None,
    redo_type: str = "both",
) -> Tuple[Dict[str, Any], RepairReport]:
    """Parse completion text into seven repaired day plans plus a repair report.

    With ``base_days`` the parsed week is a redo: only the ``redo_type``
    sections are taken from it and merged over ``base_days`` before repair.

    Raises ``ParseError`` when no JSON is found and ``ValidationError`` when the
    structure cannot be repaired into a complete week.
    """
    outcome = parse_json_response(raw_text)
    value = outcome.value
    if base_days:
        value = merge_redo_sections(base_days, value, redo_type)
    days, fixes = repair_plan(value, constraints)
    report = RepairReport(
        parse_strategy=outcome.strategy,
        structural_fixes=fixes,
        semantic_issues=find_semantic_issues(days, constraints),
    )
    if report.structural_fixes:
        logger.info("Applied %s structural repairs (strategy=%s)", len(report.structural_fixes), outcome.strategy)
    if report.semantic_issues:
        logger.warning("Plan has %s unresolved constraint violations", len(report.semantic_issues))
    return days, report
