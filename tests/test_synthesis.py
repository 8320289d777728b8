"""Tests for the threat synthesizers."""

import json

import pytest

from threatscope.collector import collect_local
from threatscope.config import Settings
from threatscope.errors import RecoveryError
from threatscope.extractor import ArchitectureExtractor
from threatscope.prompts import OWASP_ADDENDUM, PROSE_EVIDENCE_RULE
from threatscope.risk_engine import calculate_risk_rating
from threatscope.scanner import PatternScanner
from threatscope.schemas import STRIDE_CATEGORIES, AnalysisResult, Finding, ThreatRecord
from threatscope.synthesis import (
    ARCHITECTURE_TEMPLATES,
    SEVERITY_PROFILES,
    ModelSynthesizer,
    RuleBasedSynthesizer,
    finalize_threats,
    select_synthesizer,
)


class FakeClient:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def complete(self, system_prompt, user_prompt, max_tokens=4096):
        self.calls.append({'system': system_prompt, 'user': user_prompt, 'max_tokens': max_tokens})
        return self.response


def _sample_analysis(root):
    with collect_local(root) as source:
        return ArchitectureExtractor().analyze(source, PatternScanner().scan(source))


def _model_threat(title):
    return {
        'title': title,
        'strideCategory': 'Spoofing',
        'severity': 'Critical',
        'threatSource': 'An external attacker',
        'prerequisites': 'a stolen session cookie',
        'threatAction': 'replay the session',
        'threatImpact': 'account takeover',
        'impactedAssets': ['API Server'],
        'trustBoundary': 'External',
        'mitigations': [{'description': 'Bind sessions to the client'}],
        'owaspLikelihood': {'skillLevel': 9, 'motive': 9, 'opportunity': 9, 'size': 9,
                            'easeOfDiscovery': 9, 'easeOfExploit': 9, 'awareness': 9, 'intrusionDetection': 9},
        'owaspImpact': {'confidentiality': 2, 'integrity': 2, 'availability': 2, 'accountability': 2},
    }


@pytest.mark.parametrize("severity", ['Critical', 'High', 'Medium', 'Low'])
def test_severity_profiles_land_on_their_severity(severity):
    profile = SEVERITY_PROFILES[severity]
    assert calculate_risk_rating(profile['likelihood'], profile['impact']).severity == severity


def test_rule_based_over_sample_repo(sample_repo):
    analysis = _sample_analysis(sample_repo)
    threats = RuleBasedSynthesizer().synthesize(analysis)

    assert len(threats) == 8
    secret, sql = threats[0], threats[1]
    assert secret.title == 'Hardcoded Secret in .env'
    assert secret.strideCategory == 'Information Disclosure'
    assert sql.title == 'SQL Injection via String Concatenation in users.js'
    assert sql.strideCategory == 'Tampering'
    assert sql.severity == 'Critical'
    assert sql.threatAction == 'exploit sql concatenation at routes/users.js:5'
    assert sql.impactedAssets[0] == 'routes/users.js'
    assert sql.trustBoundary == 'Application Boundary'
    mitigation = sql.mitigations[0]
    assert (mitigation.codeFile, mitigation.codeLine) == ('routes/users.js', 5)
    assert 'SELECT * FROM users' in mitigation.codeOriginal

    assert [t.title for t in threats[2:]] == [t['title'] for t in ARCHITECTURE_TEMPLATES]
    assert [t.severity for t in threats[2:]] == [t['severity'] for t in ARCHITECTURE_TEMPLATES]


def test_every_threat_severity_matches_its_factors(sample_repo):
    threats = RuleBasedSynthesizer().synthesize(_sample_analysis(sample_repo))
    for threat in threats:
        rating = calculate_risk_rating(threat.owaspLikelihood, threat.owaspImpact)
        assert threat.severity == rating.severity
        assert threat.riskRating == rating


def test_architecture_threats_have_a_floor():
    findings = [Finding(file=f'src/m{i}.py', line=1, pattern='eval_usage', severity='High') for i in range(7)]
    threats = RuleBasedSynthesizer().synthesize(AnalysisResult(securityFindings=findings))
    assert len(threats) == 9
    assert [t.title for t in threats[7:]] == [t['title'] for t in ARCHITECTURE_TEMPLATES[:2]]


def test_empty_analysis_still_yields_threats():
    threats = RuleBasedSynthesizer().synthesize(AnalysisResult())
    assert len(threats) == len(ARCHITECTURE_TEMPLATES)
    assert all(t.impactedAssets == ['Application'] for t in threats)


def test_unknown_pattern_uses_default_template():
    finding = Finding(file='app.py', line=3, pattern='something_new', severity='Low')
    threat = RuleBasedSynthesizer().synthesize(AnalysisResult(securityFindings=[finding]))[0]
    assert threat.title == 'Insecure Pattern in app.py'
    assert threat.severity == 'Low'


def test_owasp_framework_prefixes_titles(sample_repo):
    threats = RuleBasedSynthesizer().synthesize(_sample_analysis(sample_repo), 'OWASP Top 10')
    assert threats[0].title == '[A02] Hardcoded Secret in .env'
    assert threats[1].title.startswith('[A03] ')
    assert all(t.title.startswith('[A') for t in threats)


def test_unknown_framework_rejected():
    with pytest.raises(ValueError):
        RuleBasedSynthesizer().synthesize(AnalysisResult(), 'PASTA')
    with pytest.raises(ValueError):
        RuleBasedSynthesizer().synthesize_document('text', 'doc.md', 'PASTA')


def test_rule_based_document_threats():
    threats = RuleBasedSynthesizer().synthesize_document('# Design\n', 'design.md')
    assert len(threats) == 6
    assert {t.strideCategory for t in threats} == set(STRIDE_CATEGORIES)
    assert [t.severity for t in threats] == ['High', 'High', 'Medium', 'Critical', 'High', 'Critical']
    for threat in threats:
        assert threat.assumptions[0] == 'Derived from design document design.md'
        assert all(m.codeFile is None for m in threat.mitigations)
    assert threats[0].statement().startswith('An external attacker with access to the public-facing endpoints')


def test_model_synthesizer_recomputes_severity():
    client = FakeClient(json.dumps([_model_threat('Session replay')]))
    threats = ModelSynthesizer(client, Settings()).synthesize(AnalysisResult(source='acme/shop'))

    assert [t.title for t in threats] == ['Session replay']
    # likelihood 9 HIGH, impact 2 LOW
    assert threats[0].riskRating.riskSeverity == 'Medium'
    assert threats[0].severity == 'Medium'
    call = client.calls[0]
    assert call['max_tokens'] == Settings().max_output_tokens
    assert '## Repository: acme/shop' in call['user']


def test_model_synthesizer_passes_framework_prompt():
    client = FakeClient('[]')
    ModelSynthesizer(client, Settings()).synthesize(AnalysisResult(), 'OWASP Top 10')
    assert OWASP_ADDENDUM.strip() in client.calls[0]['system']
    assert '## Framework: OWASP Top 10' in client.calls[0]['user']


def test_model_synthesizer_document_prompt():
    client = FakeClient('```json\n' + json.dumps([_model_threat('Doc threat')]) + '\n```')
    settings = Settings(max_document_chars=10)
    threats = ModelSynthesizer(client, settings).synthesize_document('0123456789ABCDEF', 'checkout.md')
    assert [t.title for t in threats] == ['Doc threat']
    call = client.calls[0]
    assert PROSE_EVIDENCE_RULE in call['system']
    assert '0123456789\n' in call['user']
    assert 'ABCDEF' not in call['user']


def test_model_synthesizer_propagates_unrecoverable_response():
    client = FakeClient('Sorry, I cannot produce a threat model.')
    with pytest.raises(RecoveryError):
        ModelSynthesizer(client, Settings()).synthesize(AnalysisResult())


def test_select_synthesizer_without_key():
    assert isinstance(select_synthesizer(Settings()), RuleBasedSynthesizer)


def test_select_synthesizer_offline_wins_over_key(monkeypatch):
    monkeypatch.setenv('THREATSCOPE_API_KEY', 'sk-test')
    assert isinstance(select_synthesizer(Settings(force_offline=True)), RuleBasedSynthesizer)


def test_select_synthesizer_with_key(monkeypatch):
    monkeypatch.setenv('OPENAI_API_KEY', 'sk-test')
    monkeypatch.setenv('THREATSCOPE_MODEL', 'gpt-4o')
    synthesizer = select_synthesizer(Settings())
    assert isinstance(synthesizer, ModelSynthesizer)
    assert synthesizer.name == 'model'
    assert synthesizer.client.model == 'gpt-4o'


def test_finalize_threats_assigns_ids_in_order():
    threats = RuleBasedSynthesizer().synthesize(AnalysisResult())
    final = finalize_threats(threats)
    assert [t.id for t in final] == [f'THR-{i:03d}' for i in range(1, 7)]
    assert all(t.id == '' for t in threats)
    assert [t.severity for t in final] == [t.severity for t in threats]


def test_finalize_threats_empty():
    assert finalize_threats([]) == []


def test_threat_record_roundtrip_keeps_derived_fields():
    threat = RuleBasedSynthesizer().synthesize_document('x', 'd.md')[3]
    data = threat.model_dump(mode='json')
    assert data['severity'] == 'Critical'
    restored = ThreatRecord.model_validate({k: v for k, v in data.items() if k not in ('severity', 'riskRating')})
    assert restored.severity == 'Critical'
