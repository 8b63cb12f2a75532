"""Quality gate: grade generated markup and request a bounded number of repairs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from generation import GenerateFn, json_repairer, parse_json_response, sanitize_html

LOGGER = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 90
DEFAULT_MAX_ITERATIONS = 1
MIN_REPAIR_RATIO = 0.5
_MAX_ISSUES = 20
_ISSUE_MAX_LEN = 300


@dataclass(slots=True)
class QualityResult:
    content: str
    score: int | None = None
    iterations: int = 0
    issues: list[str] = field(default_factory=list)


def _truncate(text: str, max_len: int = _ISSUE_MAX_LEN) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 1] + "…"


def normalize_grade(raw: Any) -> dict[str, Any]:
    """Guarantee a well-typed grade dict.

    - ``score`` is coerced to int in 0..100, or None when unusable.
    - ``issues`` is a list of non-empty strings, capped in count and length.
    """
    data = raw if isinstance(raw, dict) else {}

    try:
        score: int | None = max(0, min(100, int(float(data.get("score")))))
    except (TypeError, ValueError):
        score = None

    issues_raw = data.get("issues")
    if isinstance(issues_raw, str):
        issues_raw = [issues_raw]
    if not isinstance(issues_raw, list):
        issues_raw = []
    issues = [_truncate(item.strip()) for item in issues_raw if isinstance(item, str) and item.strip()]

    return {"score": score, "issues": issues[:_MAX_ISSUES]}


def refine(
    markup: str,
    generate: GenerateFn,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    threshold: int = DEFAULT_THRESHOLD,
) -> QualityResult:
    """Grade, then repair until the score meets ``threshold`` or the budget runs out.

    A repair is accepted only when it is at least half as long as the content
    it replaces. Any failure ends the loop and returns the best content so far.
    """
    result = QualityResult(content=markup)
    repair = json_repairer(generate)

    while result.iterations < max_iterations:
        try:
            grade = normalize_grade(
                parse_json_response(generate("content_grader", [result.content], "json"), repair)
            )
            result.score = grade["score"]
            result.issues = grade["issues"]
            if result.score is not None and result.score >= threshold:
                LOGGER.info("Quality gate passed: score=%s", result.score)
                break

            LOGGER.info(
                "Quality gate score=%s below %s, requesting repair (%s issues)",
                result.score,
                threshold,
                len(result.issues),
            )
            repaired = sanitize_html(generate("content_repair", [result.content, result.issues], "html"))
            result.iterations += 1
            if len(repaired) >= len(result.content) * MIN_REPAIR_RATIO:
                result.content = repaired
            else:
                LOGGER.warning(
                    "Rejected repair: %s chars vs %s current",
                    len(repaired),
                    len(result.content),
                )
        except Exception as exc:
            LOGGER.warning("Quality loop stopped after %s iterations: %s", result.iterations, exc)
            break

    return result
