"""Parser for model responses: extract, repair and normalize threat arrays."""

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from .errors import RecoveryError, ThreatValidationError
from .schemas import SEVERITIES, STRIDE_CATEGORIES, DesignEnhancement, Mitigation, PreCodeRisk, ThreatRecord

logger = logging.getLogger(__name__)

DEFAULT_STRIDE = 'Information Disclosure'
DEFAULT_SEVERITY = 'Medium'
IMPLEMENTATION_PHASES = ('pre-code', 'during-code')

_FENCE = re.compile(r'```(?:json)?\s*([\s\S]*?)```')


def strip_code_fence(text: str) -> str:
    """Return the contents of the first fenced block, or the trimmed text."""
    text = text.strip()
    match = _FENCE.search(text)
    if match:
        return match.group(1).strip()
    return text


def extract_array_text(text: str) -> str:
    """Slice from the first '[' to the last ']', or to the end if the array was cut off."""
    start = text.find('[')
    end = text.rfind(']')
    if start != -1 and end > start:
        return text[start:end + 1]
    if start != -1:
        return text[start:]
    return text


def repair_truncated_array(text: str) -> str:
    """Cut a truncated JSON array after its last complete top-level object and close it.

    Brackets inside string literals are ignored, so depth tracking follows the
    JSON structure only. Raises RecoveryError when no element is complete.
    """
    depth = 0
    in_string = False
    escape = False
    last_complete_end = -1

    for i, ch in enumerate(text):
        if escape:
            escape = False
            continue
        if in_string:
            if ch == '\\':
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in '[{':
            depth += 1
        elif ch in ']}':
            depth -= 1
            if depth == 1 and ch == '}':
                last_complete_end = i

    if last_complete_end == -1:
        raise RecoveryError("Could not find any complete objects in truncated JSON")
    return text[:last_complete_end + 1] + ']'


def _as_text(value: Any, fallback: str) -> str:
    if value is None or value == '' or isinstance(value, (dict, list)):
        return fallback
    return str(value)


def _as_text_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and not isinstance(item, (dict, list))]


def _normalize_mitigation(raw: Any) -> Mitigation | None:
    if isinstance(raw, str):
        return Mitigation(description=raw) if raw.strip() else None
    if not isinstance(raw, dict):
        return None
    code_line = raw.get('codeLine')
    return Mitigation(
        description=_as_text(raw.get('description'), 'No description'),
        codeFile=str(raw['codeFile']) if raw.get('codeFile') else None,
        codeLine=code_line if isinstance(code_line, int) and not isinstance(code_line, bool) else None,
        codeOriginal=str(raw['codeOriginal']) if raw.get('codeOriginal') else None,
        codeFixed=str(raw['codeFixed']) if raw.get('codeFixed') else None,
    )


def normalize_threat(raw: Any) -> ThreatRecord:
    """Coerce one raw element into a ThreatRecord.

    Enumerations outside their allow-list get defaults, text fields get
    placeholders, and any upstream severity is discarded: the record derives
    its own severity from the OWASP factors.
    """
    if not isinstance(raw, dict):
        raise ThreatValidationError(f"Expected a JSON object, got {type(raw).__name__}")

    stride = raw.get('strideCategory')
    if stride not in STRIDE_CATEGORIES:
        stride = DEFAULT_STRIDE

    impacted = _as_text_list(raw.get('impactedAssets')) if isinstance(raw.get('impactedAssets'), list) else ['Application']
    mitigations = raw.get('mitigations') if isinstance(raw.get('mitigations'), list) else []

    try:
        return ThreatRecord(
            title=_as_text(raw.get('title'), 'Untitled Threat'),
            strideCategory=stride,
            threatSource=_as_text(raw.get('threatSource'), 'Unknown actor'),
            prerequisites=_as_text(raw.get('prerequisites'), 'None specified'),
            threatAction=_as_text(raw.get('threatAction'), 'Unknown action'),
            threatImpact=_as_text(raw.get('threatImpact'), 'Unknown impact'),
            impactedAssets=impacted,
            trustBoundary=_as_text(raw.get('trustBoundary'), 'Unknown boundary'),
            assumptions=_as_text_list(raw.get('assumptions')),
            mitigations=[m for m in (_normalize_mitigation(item) for item in mitigations) if m is not None],
            relatedCve=str(raw['relatedCve']) if raw.get('relatedCve') else None,
            owaspLikelihood=raw.get('owaspLikelihood'),
            owaspImpact=raw.get('owaspImpact'),
        )
    except ValidationError as e:
        raise ThreatValidationError(f"Invalid threat element: {e}") from e


def _normalize_each(elements: list, normalize, kind: str) -> list:
    """Normalize each element independently, dropping the ones that fail."""
    items = []
    for index, element in enumerate(elements):
        try:
            items.append(normalize(element))
        except ThreatValidationError as e:
            logger.warning("Dropping %s element %d: %s", kind, index, e)
    return items


def normalize_threats(elements: list) -> list[ThreatRecord]:
    return _normalize_each(elements, normalize_threat, 'threat')


def _allowed(value: Any, allowed: tuple[str, ...], default: str) -> str:
    return value if value in allowed else default


def normalize_enhancement(raw: Any) -> DesignEnhancement:
    """Coerce one raw element into a DesignEnhancement, defaulting what is missing."""
    if not isinstance(raw, dict):
        raise ThreatValidationError(f"Expected a JSON object, got {type(raw).__name__}")
    return DesignEnhancement(
        section=_as_text(raw.get('section'), 'General'),
        gap=_as_text(raw.get('gap'), 'Unspecified gap'),
        suggestion=_as_text(raw.get('suggestion'), 'No suggestion provided'),
        rationale=_as_text(raw.get('rationale'), 'No rationale provided'),
        severity=_allowed(raw.get('severity'), SEVERITIES, DEFAULT_SEVERITY),
        strideCategory=_allowed(raw.get('strideCategory'), STRIDE_CATEGORIES, DEFAULT_STRIDE),
    )


def normalize_pre_code_risk(raw: Any) -> PreCodeRisk:
    """Coerce one raw element into a PreCodeRisk, defaulting what is missing."""
    if not isinstance(raw, dict):
        raise ThreatValidationError(f"Expected a JSON object, got {type(raw).__name__}")
    return PreCodeRisk(
        title=_as_text(raw.get('title'), 'Untitled Risk'),
        category=_allowed(raw.get('category'), STRIDE_CATEGORIES, DEFAULT_STRIDE),
        severity=_allowed(raw.get('severity'), SEVERITIES, DEFAULT_SEVERITY),
        component=_as_text(raw.get('component'), 'Unspecified component'),
        designDecision=_as_text(raw.get('designDecision'), 'Unspecified decision'),
        recommendation=_as_text(raw.get('recommendation'), 'No recommendation provided'),
        implementationPhase=_allowed(raw.get('implementationPhase'), IMPLEMENTATION_PHASES, 'pre-code'),
    )


def _load_array(text: str) -> list:
    parsed = json.loads(text)
    if not isinstance(parsed, list):
        raise ValueError("Expected JSON array")
    return parsed


def parse_json_array(text: str, kind: str = 'threat') -> list:
    """Extract the JSON array from a model response, repairing truncated output.

    Raises RecoveryError when neither the text nor its repaired form parses.
    """
    cleaned = strip_code_fence(text or '')
    json_str = extract_array_text(cleaned)

    try:
        elements = _load_array(json_str)
    except ValueError as first_error:
        logger.info("%s response did not parse (%s); attempting truncated JSON recovery", kind.capitalize(), first_error)
        # Repair from the opener to the end of the text: a ']' inside the last
        # complete element would otherwise cut that element short.
        start = cleaned.find('[')
        tail = cleaned[start:] if start != -1 else cleaned
        try:
            elements = _load_array(repair_truncated_array(tail))
        except RecoveryError:
            logger.error("Unrecoverable %s response: %.500s", kind, text)
            raise
        except ValueError as repair_error:
            logger.error("Unrecoverable %s response: %.500s", kind, text)
            raise RecoveryError(f"Failed to parse {kind} response: {first_error}") from repair_error
        logger.info("Recovered %d %s elements from truncated response", len(elements), kind)
    return elements


def parse_threats_response(text: str) -> list[ThreatRecord]:
    """Parse a model response into threat records, repairing truncated output."""
    return normalize_threats(parse_json_array(text, 'threat'))


def parse_enhancements_response(text: str) -> list[DesignEnhancement]:
    return _normalize_each(parse_json_array(text, 'enhancement'), normalize_enhancement, 'enhancement')


def parse_pre_code_risks_response(text: str) -> list[PreCodeRisk]:
    return _normalize_each(parse_json_array(text, 'risk'), normalize_pre_code_risk, 'risk')
