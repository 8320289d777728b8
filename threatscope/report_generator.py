"""HTML report generator for threat model runs."""

from pathlib import Path
from typing import Optional
from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

from .insights import compute_insights
from .risk_engine import SEVERITY_RANK, get_severity_color
from .scanner import sort_findings
from .schemas import ThreatModelRun


class ReportGenerator:
    """Generates static HTML reports from threat model runs."""

    def __init__(self, template_dir: Optional[Path] = None):
        if template_dir is None:
            template_dir = Path(__file__).parent / 'templates'
        self.env = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=select_autoescape(['html', 'xml'])
        )
        self.env.filters['severity_color'] = get_severity_color

    def _threats_by_risk(self, run: ThreatModelRun) -> list[dict]:
        threats = []
        for threat in run.threats:
            t = threat.model_dump()
            t['statement'] = threat.statement()
            threats.append(t)
        # highest overall score first, severity rank breaks ties
        threats.sort(key=lambda t: (-t['riskRating']['overallRiskScore'], SEVERITY_RANK[t['severity']]))
        return threats

    def generate(self, run: ThreatModelRun) -> str:
        analysis = run.analysis
        context = {
            'run': run,
            'analysis': analysis,
            'generation_timestamp': run.generatedAt.strftime('%Y-%m-%d %H:%M:%S UTC'),
            # Mermaid source must reach the browser unescaped
            'dfd_mermaid': Markup(run.diagram),
            'has_components': bool(analysis.components),
            'data_flows': analysis.valid_data_flows(),
            'insights': compute_insights(run.threats),
            'threats': self._threats_by_risk(run),
            'findings': sort_findings(analysis.securityFindings),
        }
        template = self.env.get_template('report.html')
        return template.render(**context)

    def generate_to_file(self, run: ThreatModelRun, output_path: Path) -> Path:
        html_content = self.generate(run)
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(html_content)
        return output_path


def generate_report(run: ThreatModelRun, output_path: Optional[Path] = None) -> str:
    """Generate an HTML report from a threat model run."""
    generator = ReportGenerator()
    if output_path:
        generator.generate_to_file(run, output_path)
    return generator.generate(run)
