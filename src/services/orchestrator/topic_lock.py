"""Post-generation validation of an output against its locked context."""

from __future__ import annotations

import re

from schemas.orchestrator import (
    ContentFormat,
    EntityPresenceCheck,
    FormatComplianceCheck,
    LockedContext,
    TopicDriftCheck,
    TopicLockValidation,
)
from services.orchestrator.locked_context import detect_format, get_critical_entities


# Minimum share of the top source keywords that must reappear in the output
TOPIC_DRIFT_THRESHOLD = 0.5
TOP_KEYWORDS_FOR_DRIFT = 15
# Drift scores at or above this are near-misses worth retrying
RECOVERABLE_DRIFT_SCORE = 0.3

_NON_WORD = re.compile(r"[^\w\s]")

_COMPATIBLE_LISTS = {
    frozenset({ContentFormat.BULLET_LIST, ContentFormat.NUMBERED_LIST}),
}


def _output_words(output: str) -> set[str]:
    return {w for w in _NON_WORD.sub(" ", output.lower()).split() if len(w) >= 3}


def _percent(value: float) -> int:
    return round(value * 100)


def validate_entity_presence(context: LockedContext, output: str) -> EntityPresenceCheck:
    critical = get_critical_entities(context)
    if not critical:
        return EntityPresenceCheck(
            passed=True, score=1.0, details="No critical entities to validate"
        )

    haystack = output.lower()
    present = [e.value for e in critical if e.value.lower() in haystack]
    missing = [e.value for e in critical if e.value.lower() not in haystack]
    passed = not missing

    if passed:
        details = f"All {len(critical)} critical entities present"
    else:
        details = (
            f"Missing {len(missing)} of {len(critical)} critical entities: "
            f"{', '.join(missing)}"
        )
    return EntityPresenceCheck(
        passed=passed,
        score=len(present) / len(critical),
        details=details,
        missing_entities=missing,
        present_entities=present,
    )


def validate_topic_drift(context: LockedContext, output: str) -> TopicDriftCheck:
    """Keyword overlap between the top source keywords and the output tokens."""
    keywords = context.topic_keywords[:TOP_KEYWORDS_FOR_DRIFT]
    output_words = _output_words(output)
    drift_keywords = [k for k in keywords if k.lower() not in output_words]
    overlap = (
        (len(keywords) - len(drift_keywords)) / len(keywords) if keywords else 1.0
    )
    passed = overlap >= TOPIC_DRIFT_THRESHOLD

    if passed:
        details = f"Topic maintained with {_percent(overlap)}% keyword overlap"
    else:
        details = (
            f"Topic drift detected: {_percent(overlap)}% overlap "
            f"(threshold: {_percent(TOPIC_DRIFT_THRESHOLD)}%)"
        )
    return TopicDriftCheck(
        passed=passed,
        score=overlap,
        details=details,
        keyword_overlap=overlap,
        drift_keywords=drift_keywords,
    )


def formats_compatible(expected: ContentFormat, actual: ContentFormat) -> bool:
    if expected is actual:
        return True
    if ContentFormat.MIXED in (expected, actual):
        return True
    return frozenset({expected, actual}) in _COMPATIBLE_LISTS


def validate_format_compliance(context: LockedContext, output: str) -> FormatComplianceCheck:
    if context.required_format is None:
        return FormatComplianceCheck(passed=True, score=1.0, details="No format requirement")

    detected = detect_format(output)
    compatible = formats_compatible(context.required_format, detected)
    if compatible:
        details = f"Format maintained: {detected.value}"
    else:
        details = (
            f"Format mismatch: expected {context.required_format.value}, got {detected.value}"
        )
    return FormatComplianceCheck(
        passed=compatible,
        score=1.0 if compatible else 0.0,
        details=details,
        expected_format=context.required_format,
        detected_format=detected,
    )


def validate_topic_lock(context: LockedContext, output: str) -> TopicLockValidation:
    """Run entity presence, topic drift and format checks; overall pass needs all three.

    Args:
        context: Locked context extracted from the source.
        output: Candidate model output.

    Returns:
        The combined `TopicLockValidation`.
    """
    entity_presence = validate_entity_presence(context, output)
    topic_drift = validate_topic_drift(context, output)
    format_compliance = validate_format_compliance(context, output)
    return TopicLockValidation(
        overall_passed=(
            entity_presence.passed and topic_drift.passed and format_compliance.passed
        ),
        entity_presence=entity_presence,
        topic_drift=topic_drift,
        format_compliance=format_compliance,
    )


def is_recoverable(validation: TopicLockValidation) -> bool:
    """Whether a stricter retry might fix the failure.

    Entity and format failures are recoverable, as is a near-miss drift
    score; decisively off-topic output is not.
    """
    if not validation.entity_presence.passed:
        return True
    if (
        not validation.topic_drift.passed
        and validation.topic_drift.score >= RECOVERABLE_DRIFT_SCORE
    ):
        return True
    return not validation.format_compliance.passed


def get_validation_summary(validation: TopicLockValidation) -> str:
    if validation.overall_passed:
        return "All checks passed"

    failures: list[str] = []
    if not validation.entity_presence.passed:
        failures.append(f"Missing: {', '.join(validation.entity_presence.missing_entities)}")
    if not validation.topic_drift.passed:
        failures.append(
            f"Topic drift: {_percent(validation.topic_drift.keyword_overlap)}% overlap"
        )
    if not validation.format_compliance.passed:
        expected = validation.format_compliance.expected_format
        failures.append(f"Format: expected {expected.value if expected else 'none'}")
    return "; ".join(failures)
