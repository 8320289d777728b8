"""threatscope - Command Line Interface."""

import json
import sys
from pathlib import Path
import click

from . import __version__
from .collector import collect_local
from .config import get_settings
from .dfd_generator import DFDGenerator
from .document import extract_text_from_file
from .errors import ThreatScopeError
from .extractor import ArchitectureExtractor
from .logging_config import bind_run_context, configure_logging
from .pipeline import ThreatModelPipeline
from .risk_engine import IMPACT_FACTORS, LIKELIHOOD_FACTORS, calculate_risk_rating, get_severity_color
from .scanner import PatternScanner, sort_findings
from .schemas import FRAMEWORKS
from .writer import ThreatModelWriter

SEVERITY_COLORS = {'Critical': 'red', 'High': 'red', 'Medium': 'yellow', 'Low': 'green'}


def _configure_logging(verbose: bool, json_logs: bool) -> None:
    settings = get_settings()
    configure_logging(
        log_level="debug" if verbose else settings.log_level,
        json_output=json_logs or settings.json_logs,
    )


def _fail(message: str) -> None:
    click.echo(click.style(message, fg='red'), err=True)
    sys.exit(1)


def _build_pipeline(offline: bool, workers: int | None) -> ThreatModelPipeline:
    settings = get_settings()
    update = {}
    if offline:
        update['force_offline'] = True
    if workers:
        update['scan_workers'] = workers
    if update:
        settings = settings.model_copy(update=update)
    return ThreatModelPipeline(settings)


def _print_summary(run, output_dir: Path) -> None:
    click.echo(click.style('Threat model generated!', fg='green'))
    click.echo(f'  Source: {run.analysis.source}')
    click.echo(f'  Synthesizer: {run.synthesizer}')
    click.echo(f'  Components: {len(run.analysis.components)}')
    click.echo(f'  Findings: {len(run.analysis.securityFindings)}')
    click.echo(f'  Threats: {len(run.threats)}')
    for threat in run.threats:
        severity = click.style(f'{threat.severity:<8}', fg=SEVERITY_COLORS[threat.severity])
        click.echo(f'    {threat.id} {severity} {threat.title}')
    if run.designReview is not None:
        click.echo(f'  Design enhancements: {len(run.designReview.enhancements)}')
        click.echo(f'  Pre-code risks: {len(run.designReview.preCodeRisks)}')
    click.echo(f'  Output: {output_dir}')


def _parse_factors(pairs: tuple[str, ...], allowed: tuple[str, ...]) -> dict:
    factors = {}
    for pair in pairs:
        name, sep, value = pair.partition('=')
        if not sep or name not in allowed:
            raise click.BadParameter(f"'{pair}' is not NAME=VALUE with NAME in: {', '.join(allowed)}")
        factors[name] = value
    return factors


@click.group()
@click.version_option(version=__version__)
def cli():
    """threatscope - Repository threat modeling with OWASP risk rating."""
    pass


@cli.command()
@click.argument('locator')
@click.option('--framework', '-f', type=click.Choice(FRAMEWORKS), default='STRIDE', show_default=True)
@click.option('--output-dir', '-o', type=click.Path(file_okay=False), default='threat-model', show_default=True)
@click.option('--offline', is_flag=True, help='Use the rule-based synthesizer even if an API key is configured')
@click.option('--workers', type=click.IntRange(min=1), help='Number of scanner threads')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--json-logs', is_flag=True, help='Emit log records as JSON lines on stderr')
def analyze(locator: str, framework: str, output_dir: str, offline: bool, workers: int, verbose: bool,
            json_logs: bool):
    """Threat-model a local directory or a git repository URL."""
    _configure_logging(verbose, json_logs)
    bind_run_context(locator, framework)
    try:
        pipeline = _build_pipeline(offline, workers)
        run = pipeline.run(locator, framework)
        written = ThreatModelWriter(Path(output_dir)).write(run)
        _print_summary(run, written)
    except ThreatScopeError as e:
        _fail(f'Analysis failed: {e}')


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--framework', '-f', type=click.Choice(FRAMEWORKS), default='STRIDE', show_default=True)
@click.option('--output-dir', '-o', type=click.Path(file_okay=False), default='threat-model', show_default=True)
@click.option('--offline', is_flag=True, help='Use the rule-based synthesizer even if an API key is configured')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--json-logs', is_flag=True, help='Emit log records as JSON lines on stderr')
def document(file_path: str, framework: str, output_dir: str, offline: bool, verbose: bool, json_logs: bool):
    """Threat-model a design document (Markdown or text)."""
    _configure_logging(verbose, json_logs)
    bind_run_context(Path(file_path).name, framework)
    try:
        content = extract_text_from_file(file_path)
        pipeline = _build_pipeline(offline, None)
        run = pipeline.run_document(content, Path(file_path).name, framework)
        written = ThreatModelWriter(Path(output_dir)).write(run)
        _print_summary(run, written)
    except ThreatScopeError as e:
        _fail(f'Document analysis failed: {e}')


@cli.command()
@click.argument('path', type=click.Path(exists=True, file_okay=False, dir_okay=True))
@click.option('--json', 'as_json', is_flag=True, help='Print findings as JSON')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--json-logs', is_flag=True, help='Emit log records as JSON lines on stderr')
def scan(path: str, as_json: bool, verbose: bool, json_logs: bool):
    """Run the security pattern scanner over a directory."""
    _configure_logging(verbose, json_logs)
    settings = get_settings()
    try:
        with collect_local(path, settings.max_files, settings.max_file_size) as source:
            scanner = PatternScanner(max_per_file=settings.max_findings_per_file, workers=settings.scan_workers)
            findings = sort_findings(scanner.scan(source))
    except ThreatScopeError as e:
        _fail(f'Scan failed: {e}')
        return

    if as_json:
        click.echo(json.dumps([f.model_dump() for f in findings], indent=2))
        return
    if not findings:
        click.echo(click.style('No findings.', fg='green'))
        return
    click.echo(f'Found {len(findings)} finding(s):')
    for f in findings:
        severity = click.style(f'{f.severity:<8}', fg=SEVERITY_COLORS[f.severity])
        click.echo(f'  {severity} {f.pattern:<25} {f.file}:{f.line}')
        click.echo(f'           {f.snippet}')


@cli.command()
@click.argument('path', type=click.Path(exists=True, file_okay=False, dir_okay=True))
@click.option('--format', '-f', 'fmt', type=click.Choice(['mermaid', 'dot']), default='mermaid', show_default=True)
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write the diagram to a file')
def dfd(path: str, fmt: str, output: str):
    """Generate a Data Flow Diagram description for a directory."""
    settings = get_settings()
    try:
        with collect_local(path, settings.max_files, settings.max_file_size) as source:
            analysis = ArchitectureExtractor(file_tree_limit=settings.file_tree_limit).analyze(source, [])
    except ThreatScopeError as e:
        _fail(f'DFD generation failed: {e}')
        return

    generator = DFDGenerator(analysis)
    text = generator.to_mermaid() if fmt == 'mermaid' else generator.to_dot()
    if output:
        Path(output).write_text(text + '\n', encoding='utf-8')
        click.echo(click.style(f'DFD written to: {output}', fg='green'))
    else:
        click.echo(text)


@cli.command()
@click.option('--likelihood', '-l', multiple=True, metavar='FACTOR=VALUE',
              help=f"Likelihood factor (0-9): {', '.join(LIKELIHOOD_FACTORS)}")
@click.option('--impact', '-i', multiple=True, metavar='FACTOR=VALUE',
              help=f"Impact factor (0-9): {', '.join(IMPACT_FACTORS)}")
@click.option('--json', 'as_json', is_flag=True, help='Print the rating as JSON')
def risk(likelihood: tuple[str, ...], impact: tuple[str, ...], as_json: bool):
    """Calculate an OWASP risk rating. Unspecified factors default to 5."""
    rating = calculate_risk_rating(
        _parse_factors(likelihood, LIKELIHOOD_FACTORS),
        _parse_factors(impact, IMPACT_FACTORS),
    )
    if as_json:
        click.echo(json.dumps(rating.model_dump(), indent=2))
        return
    click.echo(f'Likelihood: {rating.likelihoodScore} ({rating.likelihoodLevel})')
    click.echo(f'Impact: {rating.impactScore} ({rating.impactLevel})')
    click.echo(f'Overall risk score: {rating.overallRiskScore}')
    click.echo(f'Severity: {rating.riskSeverity} ({get_severity_color(rating.riskSeverity)})')


def main():
    cli()


if __name__ == '__main__':
    main()
