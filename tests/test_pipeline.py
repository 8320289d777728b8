"""End-to-end tests for the threat modeling pipeline."""

import json

import pytest

from threatscope import collector
from threatscope.config import Settings
from threatscope.design_review import ModelDesignReviewer, RuleBasedDesignReviewer
from threatscope.errors import CollectionError, ModelError, RecoveryError
from threatscope.pipeline import ThreatModelPipeline
from threatscope.risk_engine import calculate_risk_rating
from threatscope.synthesis import ModelSynthesizer, RuleBasedSynthesizer


class FakeClient:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.prompts = []

    def complete(self, system_prompt, user_prompt, max_tokens=4096):
        self.prompts.append(user_prompt)
        if self.error:
            raise self.error
        return self.response


def test_offline_run_over_sample_repo(sample_repo, offline_settings):
    pipeline = ThreatModelPipeline(offline_settings)
    assert isinstance(pipeline.synthesizer, RuleBasedSynthesizer)

    run = pipeline.run(str(sample_repo))

    assert run.synthesizer == 'rule-based'
    assert run.framework == 'STRIDE'
    assert run.analysis.source == str(sample_repo)
    assert [c.name for c in run.analysis.components] == ['API Server', 'Infrastructure', 'End User']
    assert '  N2 -->|HTTPS| N0' in run.diagram.split('\n')
    assert [t.id for t in run.threats] == [f'THR-{i:03d}' for i in range(1, 9)]
    assert [t.strideCategory for t in run.threats[:2]] == ['Information Disclosure', 'Tampering']
    assert [t.severity for t in run.threats[:2]] == ['Critical', 'Critical']
    for threat in run.threats:
        assert threat.severity == calculate_risk_rating(threat.owaspLikelihood, threat.owaspImpact).severity


def test_run_is_deterministic_apart_from_timestamp(sample_repo, offline_settings):
    pipeline = ThreatModelPipeline(offline_settings)
    first = pipeline.run_path(sample_repo)
    second = pipeline.run_path(sample_repo)
    assert first.diagram == second.diagram
    assert first.model_dump(exclude={'generatedAt'}) == second.model_dump(exclude={'generatedAt'})


def test_unknown_framework_rejected_before_collection(sample_repo, offline_settings):
    with pytest.raises(ValueError):
        ThreatModelPipeline(offline_settings).run_path(sample_repo, 'PASTA')


def test_missing_path_is_collection_error(tmp_path, offline_settings):
    with pytest.raises(CollectionError):
        ThreatModelPipeline(offline_settings).run_path(tmp_path / 'missing')


def test_remote_locator_is_cloned(monkeypatch, offline_settings):
    def fake_clone(url, dest):
        dest.mkdir(parents=True)
        (dest / 'server.py').write_text('app.run(debug=True)\n', encoding='utf-8')

    monkeypatch.setattr(collector, 'clone_repository', fake_clone)
    run = ThreatModelPipeline(offline_settings).run('github.com/acme/shop', 'OWASP Top 10')
    assert run.analysis.source == 'github.com/acme/shop'
    assert [f.pattern for f in run.analysis.securityFindings] == ['debug_enabled']
    assert run.threats[0].title == '[A05] Debug Mode Enabled in server.py'


def test_model_path_uses_injected_synthesizer(sample_repo):
    element = {
        'title': 'SQL injection in user lookup',
        'strideCategory': 'Tampering',
        'threatSource': 'An external attacker',
        'prerequisites': 'access to GET /users/:id',
        'threatAction': 'inject SQL through the id parameter',
        'threatImpact': 'reading or altering the users table',
        'impactedAssets': ['Database'],
        'trustBoundary': 'External',
    }
    client = FakeClient(response=json.dumps([element, element]))
    pipeline = ThreatModelPipeline(Settings(), synthesizer=ModelSynthesizer(client, Settings()))

    run = pipeline.run_path(sample_repo)

    assert run.synthesizer == 'model'
    assert [t.id for t in run.threats] == ['THR-001', 'THR-002']
    assert run.threats[0].severity == 'Medium'
    assert '**sql_concatenation** [Critical] in `routes/users.js:5`' in client.prompts[0]


def test_model_failure_is_fatal(sample_repo):
    client = FakeClient(error=ModelError('Model call failed after 4 attempts'))
    pipeline = ThreatModelPipeline(Settings(), synthesizer=ModelSynthesizer(client, Settings()))
    with pytest.raises(ModelError):
        pipeline.run_path(sample_repo)


def test_run_document(offline_settings):
    pipeline = ThreatModelPipeline(offline_settings)
    assert isinstance(pipeline.reviewer, RuleBasedDesignReviewer)
    run = pipeline.run_document('# Checkout service\n', 'checkout.md')
    assert run.analysis.source == 'checkout.md'
    assert run.analysis.components == []
    assert run.diagram == 'graph LR\n  A[No components detected]'
    assert len(run.threats) == 6
    assert run.threats[-1].id == 'THR-006'

    review = run.designReview
    assert len(review.enhancements) == 5
    assert len(review.preCodeRisks) == 5
    assert review.contextLayer.startswith('# Security Context: checkout.md\n')
    assert f'- {run.threats[0].title} [{run.threats[0].strideCategory}]' in review.contextLayer


def test_repository_runs_have_no_design_review(sample_repo, offline_settings):
    assert ThreatModelPipeline(offline_settings).run_path(sample_repo).designReview is None


def test_run_document_with_model_reviews_through_the_same_client():
    threat = {
        'title': 'Card data replay',
        'strideCategory': 'Spoofing',
        'threatSource': 'An external attacker',
        'prerequisites': 'a captured payment request',
        'threatAction': 'replay the request',
        'threatImpact': 'duplicate charges',
        'trustBoundary': 'External',
    }
    responses = iter([
        json.dumps([threat]),
        json.dumps([{'section': 'Payments', 'gap': 'No idempotency keys', 'suggestion': 'Add them',
                     'rationale': 'Replays', 'severity': 'High', 'strideCategory': 'Tampering'}]),
        json.dumps([{'title': 'Shared database', 'category': 'Elevation of Privilege', 'severity': 'Critical',
                     'component': 'Orders DB', 'designDecision': 'One schema for all services',
                     'recommendation': 'Split schemas', 'implementationPhase': 'during-code'}]),
        '```markdown\n# Security Context\n\n## 1. Project Security Overview\nPayments.\n```',
    ])

    class SequencedClient(FakeClient):
        def complete(self, system_prompt, user_prompt, max_tokens=4096):
            self.prompts.append(user_prompt)
            return next(responses)

    client = SequencedClient()
    pipeline = ThreatModelPipeline(Settings(), synthesizer=ModelSynthesizer(client, Settings()))
    run = pipeline.run_document('# Payments\n', 'payments.md')

    assert isinstance(pipeline.reviewer, ModelDesignReviewer)
    assert [t.title for t in run.threats] == ['Card data replay']
    assert [e.gap for e in run.designReview.enhancements] == ['No idempotency keys']
    assert run.designReview.preCodeRisks[0].implementationPhase == 'during-code'
    assert run.designReview.contextLayer == '# Security Context\n\n## 1. Project Security Overview\nPayments.'
    assert len(client.prompts) == 4
    assert '- Card data replay [Spoofing]' in client.prompts[3]
    assert '- [Payments] No idempotency keys -> Add them' in client.prompts[3]


def test_document_review_failure_is_fatal():
    client = FakeClient(response='[]')
    reviewer = ModelDesignReviewer(FakeClient(response='no JSON here'), Settings())
    pipeline = ThreatModelPipeline(Settings(), synthesizer=ModelSynthesizer(client, Settings()), reviewer=reviewer)
    with pytest.raises(RecoveryError):
        pipeline.run_document('# Doc\n', 'doc.md')


def test_scanner_workers_come_from_settings():
    pipeline = ThreatModelPipeline(Settings(force_offline=True, scan_workers=3, max_findings_per_file=4))
    assert pipeline.scanner.workers == 3
    assert pipeline.scanner.max_per_file == 4
