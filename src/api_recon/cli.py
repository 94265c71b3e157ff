"""CLI entry point for api-recon."""

import logging
from pathlib import Path

import click

from api_recon.analysis.classifier import DataClassifier
from api_recon.analysis.flows import analyze
from api_recon.config import OUTPUT_FORMATS, app_config
from api_recon.parser.base import OpenApiSpec
from api_recon.parser.errors import SpecLoadError
from api_recon.parser.openapi import parse_location
from api_recon.report.export import build_summary, dump_flows, dump_spec


def _load_spec(source: str) -> OpenApiSpec:
    """Parse a document from a path or URL, turning load failures into a CLI error."""
    try:
        return parse_location(source, app_config)
    except SpecLoadError as e:
        raise click.ClickException(f"Could not load API description [{e.kind}]: {e}") from e


def _write_output(text: str, output: Path | None) -> None:
    if output is None:
        click.echo(text, nl=False)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")
    click.echo(f"Saved to {output}", err=True)


format_option = click.option(
    "--format",
    "fmt",
    default=app_config.output_format,
    type=click.Choice(OUTPUT_FORMATS),
    help="Output document format.",
)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """API Recon: classify sensitive data and infer call flows from OpenAPI documents."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.argument("source")
@click.option("-o", "--output", default=None, type=click.Path(path_type=Path), help="Output file (default: stdout).")
@format_option
def classify(source: str, output: Path | None, fmt: str):
    """Classify every parameter and request-body field of an API description."""
    spec = DataClassifier().classify_spec(_load_spec(source))
    _write_output(dump_spec(spec, fmt), output)


@main.command()
@click.argument("source")
@click.option("-o", "--output", default=None, type=click.Path(path_type=Path), help="Output file (default: stdout).")
@click.option("--classify/--no-classify", "do_classify", default=True, help="Classify endpoints before flow analysis.")
@format_option
def flows(source: str, output: Path | None, do_classify: bool, fmt: str):
    """Infer auth, CRUD and linked call flows from an API description."""
    spec = _load_spec(source)
    if do_classify:
        spec = DataClassifier().classify_spec(spec)
    _write_output(dump_flows(analyze(spec), fmt), output)


@main.command()
@click.argument("source")
def summary(source: str):
    """Print a short overview of sensitive endpoints and detected flows."""
    spec = DataClassifier().classify_spec(_load_spec(source))
    click.echo(build_summary(spec, analyze(spec)))


@main.command()
@click.argument("source")
@click.option("-o", "--output", required=True, type=click.Path(path_type=Path), help="Output directory for all generated files.")
@format_option
def run(source: str, output: Path, fmt: str):
    """Full pipeline: parse doc -> classify -> analyze flows -> write results."""
    # Step 1: Parse
    click.echo(f"Parsing {source}...")
    spec = _load_spec(source)
    click.echo(f"Found {len(spec.endpoints)} endpoints.")

    # Step 2: Classify
    spec = DataClassifier().classify_spec(spec)

    # Step 3: Flows
    detected = analyze(spec)
    click.echo(f"Detected {len(detected)} flows.")

    output.mkdir(parents=True, exist_ok=True)
    spec_path = output / f"spec.{fmt}"
    spec_path.write_text(dump_spec(spec, fmt), encoding="utf-8")
    click.echo(f"  Classified spec saved to {spec_path}")

    flows_path = output / f"flows.{fmt}"
    flows_path.write_text(dump_flows(detected, fmt), encoding="utf-8")
    click.echo(f"  Flows saved to {flows_path}")

    click.echo("")
    click.echo(build_summary(spec, detected))
