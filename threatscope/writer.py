"""Writes the artefacts of a threat model run to an output folder."""

import json
import logging
from pathlib import Path

import yaml

from .insights import compute_insights
from .report_generator import ReportGenerator
from .schemas import ThreatModelRun

logger = logging.getLogger(__name__)


class ThreatModelWriter:
    """Writes analysis, threats, diagram and report files for one run."""

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)

    def write(self, run: ThreatModelRun) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._write_analysis(run)
        self._write_threats_yaml(run)
        self._write_threats_json(run)
        self._write_diagram(run)
        if run.designReview is not None:
            self._write_design_review(run)
        ReportGenerator().generate_to_file(run, self.output_dir / 'report.html')
        logger.info("Wrote threat model for %s to %s", run.analysis.source, self.output_dir)
        return self.output_dir

    def _write_analysis(self, run: ThreatModelRun) -> None:
        data = {
            'source': run.analysis.source,
            'framework': run.framework,
            'synthesizer': run.synthesizer,
            'generatedAt': run.generatedAt.isoformat(),
            **{k: v for k, v in run.analysis.model_dump(mode='json', by_alias=True).items() if k != 'source'},
        }
        with open(self.output_dir / 'analysis.yaml', 'w', encoding='utf-8') as f:
            yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    def _write_threats_yaml(self, run: ThreatModelRun) -> None:
        threats = [t.model_dump(mode='json', exclude_none=True) for t in run.threats]
        with open(self.output_dir / 'threats.yaml', 'w', encoding='utf-8') as f:
            yaml.dump({'threats': threats}, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    def _write_threats_json(self, run: ThreatModelRun) -> None:
        data = {
            'source': run.analysis.source,
            'framework': run.framework,
            'generatedAt': run.generatedAt.isoformat(),
            'insights': compute_insights(run.threats).model_dump(mode='json'),
            'threats': [t.model_dump(mode='json') for t in run.threats],
        }
        with open(self.output_dir / 'threats.json', 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

    def _write_diagram(self, run: ThreatModelRun) -> None:
        with open(self.output_dir / 'dfd.mmd', 'w', encoding='utf-8') as f:
            f.write(run.diagram + '\n')

    def _write_design_review(self, run: ThreatModelRun) -> None:
        review = run.designReview
        data = {
            'source': run.analysis.source,
            'framework': run.framework,
            'enhancements': [e.model_dump(mode='json') for e in review.enhancements],
            'preCodeRisks': [r.model_dump(mode='json') for r in review.preCodeRisks],
        }
        with open(self.output_dir / 'design-review.yaml', 'w', encoding='utf-8') as f:
            yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
        # Markdown for coding agents, usable as an AGENTS.md
        with open(self.output_dir / 'security-context.md', 'w', encoding='utf-8') as f:
            f.write(review.contextLayer.rstrip('\n') + '\n')
