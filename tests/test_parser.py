"""Tests for model response parsing and truncated-array recovery."""

import json

import pytest

from threatscope.errors import RecoveryError, ThreatValidationError
from threatscope.parser import (
    extract_array_text,
    normalize_threat,
    parse_threats_response,
    repair_truncated_array,
    strip_code_fence,
)


def _element(title, **extra):
    data = {
        'title': title,
        'strideCategory': 'Tampering',
        'threatSource': 'An external attacker',
        'prerequisites': 'network access',
        'threatAction': 'modify requests',
        'threatImpact': 'data corruption',
        'impactedAssets': ['Database'],
        'trustBoundary': 'External',
        'assumptions': ['No WAF'],
        'mitigations': [{'description': 'Validate input'}],
    }
    data.update(extra)
    return data


def test_strip_code_fence():
    assert strip_code_fence('```json\n[1, 2]\n```') == '[1, 2]'
    assert strip_code_fence('  [1]  ') == '[1]'


def test_extract_array_text():
    assert extract_array_text('Here you go: [{"a": 1}] thanks') == '[{"a": 1}]'
    assert extract_array_text('prefix [{"a": 1}, {"b"') == '[{"a": 1}, {"b"'


def test_parses_plain_array():
    text = json.dumps([_element('One'), _element('Two')])
    threats = parse_threats_response(text)
    assert [t.title for t in threats] == ['One', 'Two']


def test_parses_fenced_array_with_prose():
    text = 'Sure!\n```json\n' + json.dumps([_element('Fenced')]) + '\n```\nDone.'
    threats = parse_threats_response(text)
    assert len(threats) == 1
    assert threats[0].title == 'Fenced'


@pytest.mark.parametrize("complete", [1, 2, 3])
def test_truncated_array_recovers_complete_elements(complete):
    elements = [json.dumps(_element(f'T{i}')) for i in range(complete)]
    partial = json.dumps(_element('Partial'))[:40]
    text = '[' + ', '.join(elements) + ', ' + partial
    threats = parse_threats_response(text)
    assert [t.title for t in threats] == [f'T{i}' for i in range(complete)]


def test_truncation_inside_nested_field_discards_partial_element():
    first = json.dumps(_element('Complete'))
    text = '[' + first + ', {"title": "Cut", "mitigations": [{"description": "half'
    threats = parse_threats_response(text)
    assert [t.title for t in threats] == ['Complete']


def test_truncation_before_first_element_completes_raises():
    with pytest.raises(RecoveryError):
        parse_threats_response('[{"title": "never finished", "strideCategory": "Spo')


def test_brackets_inside_strings_are_ignored():
    tricky = _element('Handles } and ] in "strings"', threatAction='inject {"$ne": null} or [1]')
    text = '[' + json.dumps(tricky) + ', {"title": "cut'
    threats = parse_threats_response(text)
    assert len(threats) == 1
    assert threats[0].title == 'Handles } and ] in "strings"'
    assert threats[0].threatAction == 'inject {"$ne": null} or [1]'


def test_repair_tracks_escaped_quotes():
    text = '[{"a": "quote \\" } ]"}, {"b": "x'
    assert json.loads(repair_truncated_array(text)) == [{'a': 'quote " } ]'}]


def test_repair_without_complete_element_raises():
    with pytest.raises(RecoveryError):
        repair_truncated_array('[{"a": [1, 2')


def test_no_array_at_all_raises():
    with pytest.raises(RecoveryError):
        parse_threats_response('I cannot help with that.')


def test_upstream_severity_is_ignored():
    element = _element(
        'Claims critical',
        severity='Critical',
        owaspLikelihood={k: 0 for k in ('skillLevel', 'motive', 'opportunity', 'size')},
        owaspImpact={'confidentiality': 1, 'integrity': 1, 'availability': 1, 'accountability': 1},
    )
    threat = parse_threats_response(json.dumps([element]))[0]
    # likelihood (0*4 + 5*4) / 8 = 2.5 LOW, impact 1.0 LOW
    assert threat.riskRating.riskSeverity == 'Note'
    assert threat.severity == 'Low'


def test_missing_factors_default_to_neutral():
    threat = parse_threats_response(json.dumps([_element('No factors')]))[0]
    assert threat.riskRating.likelihoodScore == 5.0
    assert threat.severity == 'Medium'


def test_normalize_applies_defaults():
    threat = normalize_threat({'strideCategory': 'Made Up', 'impactedAssets': 'not a list', 'assumptions': 'nope'})
    assert threat.title == 'Untitled Threat'
    assert threat.strideCategory == 'Information Disclosure'
    assert threat.threatSource == 'Unknown actor'
    assert threat.prerequisites == 'None specified'
    assert threat.threatAction == 'Unknown action'
    assert threat.threatImpact == 'Unknown impact'
    assert threat.trustBoundary == 'Unknown boundary'
    assert threat.impactedAssets == ['Application']
    assert threat.assumptions == []
    assert threat.mitigations == []


def test_normalize_mitigations():
    threat = normalize_threat(_element('Mits', mitigations=[
        {'description': 'Use prepared statements', 'codeFile': 'db.py', 'codeLine': 12},
        {'description': 'Bad line', 'codeLine': 'twelve'},
        'Rotate credentials',
        42,
    ]))
    assert [m.description for m in threat.mitigations] == [
        'Use prepared statements', 'Bad line', 'Rotate credentials',
    ]
    assert threat.mitigations[0].codeLine == 12
    assert threat.mitigations[1].codeLine is None


def test_normalize_rejects_non_object():
    with pytest.raises(ThreatValidationError):
        normalize_threat(['not', 'an', 'object'])


def test_bad_elements_are_dropped_not_fatal():
    text = json.dumps([_element('Good'), 'a string', 7, _element('Also good')])
    threats = parse_threats_response(text)
    assert [t.title for t in threats] == ['Good', 'Also good']


def test_object_instead_of_array_raises():
    with pytest.raises(RecoveryError):
        parse_threats_response('{"title": "single object"}')
