"""Tests for prompt construction."""

import pytest

from threatscope.prompts import (
    CODE_EVIDENCE_RULE,
    GRAMMAR_ADDENDUM,
    OWASP_ADDENDUM,
    PROSE_EVIDENCE_RULE,
    build_document_prompt,
    build_repository_prompt,
    build_system_prompt,
    validate_framework,
)
from threatscope.schemas import AnalysisResult, Component, DataFlow, Finding


def test_validate_framework():
    assert validate_framework('AWS Threat Grammar') == 'AWS Threat Grammar'
    with pytest.raises(ValueError, match='PASTA'):
        validate_framework('PASTA')


def test_system_prompt_variants():
    stride = build_system_prompt('STRIDE')
    assert CODE_EVIDENCE_RULE in stride
    assert OWASP_ADDENDUM not in stride
    assert '"owaspLikelihood"' in stride

    assert OWASP_ADDENDUM in build_system_prompt('OWASP Top 10')
    assert GRAMMAR_ADDENDUM in build_system_prompt('AWS Threat Grammar')

    document = build_system_prompt('STRIDE', document=True)
    assert PROSE_EVIDENCE_RULE in document
    assert CODE_EVIDENCE_RULE not in document


def test_repository_prompt_sections():
    analysis = AnalysisResult(
        source='acme/shop',
        languages=['Python'],
        components=[
            Component(name='API Server', type='api', files=[f'routes/r{i}.py' for i in range(7)]),
            Component(name='End User', type='external'),
        ],
        dataFlows=[
            DataFlow(source='End User', target='API Server', protocol='HTTPS', dataType='API Requests'),
            DataFlow(source='API Server', target='Ghost', protocol='TCP'),
        ],
        securityFindings=[
            Finding(file='a.py', line=2, pattern='debug_enabled', snippet='DEBUG = True', severity='Low'),
            Finding(file='b.py', line=9, pattern='eval_usage', snippet='eval(x)', severity='High'),
        ],
        entryPoints=[f'main{i}.py' for i in range(20)],
    )
    prompt = build_repository_prompt(analysis, 'STRIDE', findings_limit=1, entry_points_limit=3)

    assert prompt.startswith('## Repository: acme/shop\n## Framework: STRIDE')
    assert 'Files: routes/r0.py, routes/r1.py, routes/r2.py, routes/r3.py, routes/r4.py (+2 more)' in prompt
    assert '## Data Flows (1)' in prompt
    assert 'Ghost' not in prompt
    assert '## Security Findings from Code Scan (2)' in prompt
    assert '**eval_usage** [High] in `b.py:9`' in prompt
    assert 'debug_enabled' not in prompt
    assert 'main2.py' in prompt
    assert 'main3.py' not in prompt
    assert 'Frameworks Detected\nNone specifically detected' in prompt


def test_repository_prompt_without_findings():
    prompt = build_repository_prompt(AnalysisResult(), 'OWASP Top 10')
    assert 'No specific patterns detected by static scan' in prompt
    assert 'assess relevant OWASP Top 10 threats' in prompt


def test_document_prompt_truncates():
    prompt = build_document_prompt('x' * 50, 'design.md', 'STRIDE', max_chars=20)
    assert prompt.startswith('## Design Document: design.md')
    assert 'x' * 20 + '\n' in prompt
    assert 'x' * 21 not in prompt
    assert 'Do NOT include codeFile' in prompt
