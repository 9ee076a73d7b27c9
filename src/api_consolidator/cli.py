"""CLI entry point for api-consolidator."""

from pathlib import Path

import click
import yaml

from api_consolidator.config import DEFAULT_SPEC_NAME, load_settings
from api_consolidator.engine.refs import bundle as bundle_documents
from api_consolidator.engine.validator import Thresholds, validate_document
from api_consolidator.errors import ConsolidatorError
from api_consolidator.log import configure_logging
from api_consolidator.parser.base import ConsolidationFlags, ConsolidationRule, EndpointRef
from api_consolidator.parser.rules import load_rules
from api_consolidator.parser.swagger import load_raw_document
from api_consolidator.session import MergeSession


def _load_session(ctx: click.Context, doc_paths: tuple[Path, ...]) -> MergeSession:
    """Parse documents in argument order; their position is the document index."""
    session = MergeSession(policy=ctx.obj["settings"].policy)
    for doc_path in doc_paths:
        session.load(doc_path)
    return session


def _dump(data) -> str:
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)


def _write_output(data, output: Path | None) -> None:
    if output is None:
        click.echo(_dump(data), nl=False)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(_dump(data), encoding="utf-8")
    click.echo(f"Saved to {output}")


class _Group(click.Group):
    """Reports engine errors as CLI errors instead of tracebacks."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except ConsolidatorError as e:
            raise click.ClickException(str(e)) from e


@click.group(cls=_Group)
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, path_type=Path), help="YAML settings file.")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None):
    """API Consolidator: bundle, merge and consolidate OpenAPI documents."""
    settings = load_settings(config_path)
    configure_logging(settings.log_level, settings.json_logs)
    ctx.obj = {"settings": settings}


@main.command()
@click.argument("main_path", type=click.Path(exists=True, path_type=Path))
@click.argument("sibling_paths", nargs=-1, type=click.Path(exists=True, path_type=Path))
@click.option("-o", "--output", default=None, type=click.Path(path_type=Path), help="Output file (stdout if omitted).")
@click.pass_context
def bundle(ctx: click.Context, main_path: Path, sibling_paths: tuple[Path, ...], output: Path | None):
    """Inline $ref pointers into one self-contained document."""
    click.echo(f"Bundling {main_path} with {len(sibling_paths)} sibling document(s)...", err=True)
    result = bundle_documents(main_path, list(sibling_paths), ctx.obj["settings"].policy)
    _write_output(result, output)


@main.command()
@click.argument("doc_paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("-o", "--output", default=None, type=click.Path(path_type=Path), help="Output file (stdout if omitted).")
@click.option("--name", default=DEFAULT_SPEC_NAME, help="Title of the unified document.")
@click.option("--tracking", is_flag=True, help="Attach x-co2-impact estimates.")
@click.option("--rules", "rules_path", default=None, type=click.Path(exists=True, path_type=Path), help="Consolidation rule file.")
@click.pass_context
def aggregate(ctx: click.Context, doc_paths: tuple[Path, ...], output: Path | None, name: str, tracking: bool, rules_path: Path | None):
    """Merge all documents into one unified OpenAPI document."""
    session = _load_session(ctx, doc_paths)
    click.echo(f"Loaded {len(session.documents)} document(s).", err=True)
    if rules_path is not None:
        session.add_rules(load_rules(rules_path))
        click.echo(
            f"Applying {len(session.consolidation_rules)} consolidation rule(s) and "
            f"{len(session.aggregation_mappings)} aggregation mapping(s)...",
            err=True,
        )
    result = session.aggregate(name=name, enable_tracking=tracking)
    _write_output(result, output)


@main.command()
@click.argument("doc_paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("--first", "first_ref", required=True, help="First endpoint, as index:method:path.")
@click.option("--second", "second_ref", required=True, help="Second endpoint, as index:method:path.")
@click.option("--path", "target_path", required=True, help="Path of the consolidated endpoint.")
@click.option("--method", default="GET", help="HTTP method of the consolidated endpoint.")
@click.option("--parallel/--sequential", default=False, help="Execution hint recorded in x-consolidation.")
@click.option("--track-sources", is_flag=True, help="Rename colliding body properties per source.")
@click.option("--co2", is_flag=True, help="Attach an x-co2-impact estimate.")
@click.option("-o", "--output", default=None, type=click.Path(path_type=Path), help="Output file (stdout if omitted).")
@click.pass_context
def consolidate(
    ctx: click.Context,
    doc_paths: tuple[Path, ...],
    first_ref: str,
    second_ref: str,
    target_path: str,
    method: str,
    parallel: bool,
    track_sources: bool,
    co2: bool,
    output: Path | None,
):
    """Synthesize one endpoint that calls two existing endpoints."""
    session = _load_session(ctx, doc_paths)
    rule = ConsolidationRule(
        endpoint1_ref=EndpointRef.parse(first_ref),
        endpoint2_ref=EndpointRef.parse(second_ref),
        path=target_path,
        method=method,
        rules=ConsolidationFlags(parallel_calls=parallel, add_source_tracking=track_sources),
    )
    operation = session.consolidate(rule, co2_enabled=co2)
    if operation is None:
        raise click.ClickException(f"Cannot resolve {first_ref} and {second_ref} against the loaded documents")
    _write_output({rule.path: {rule.method.lower(): operation}}, output)


@main.command()
@click.argument("doc_paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("--source", "sources", multiple=True, required=True, help="Source endpoint, as index:method:path (repeatable).")
@click.option("-o", "--output", default=None, type=click.Path(path_type=Path), help="Output file (stdout if omitted).")
@click.pass_context
def preview(ctx: click.Context, doc_paths: tuple[Path, ...], sources: tuple[str, ...], output: Path | None):
    """Show the combined parameter/payload/response view of several endpoints."""
    session = _load_session(ctx, doc_paths)
    view = session.view(list(sources))
    _write_output(view.model_dump(by_alias=True, exclude_none=True), output)


@main.command()
@click.argument("doc_paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.pass_context
def duplicates(ctx: click.Context, doc_paths: tuple[Path, ...]):
    """List endpoints declared by more than one document."""
    session = _load_session(ctx, doc_paths)
    found = session.duplicates()
    if not found:
        click.echo("No duplicate endpoints.")
        return
    for endpoint, refs in found.items():
        titles = ", ".join(session.documents[ref.document_index].title for ref in refs)
        click.echo(f"{endpoint}: {titles}")
    click.echo(f"{len(found)} duplicate endpoint(s).")


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, path_type=Path))
@click.option("--co2-error", default=50.0, show_default=True, help="Grams per request treated as an error.")
@click.option("--co2-warning", default=30.0, show_default=True, help="Grams per request treated as a warning.")
def validate(spec_path: Path, co2_error: float, co2_warning: float):
    """Check x-co2-impact / x-consolidation metadata of a merged document."""
    report = validate_document(load_raw_document(spec_path), Thresholds(co2_error=co2_error, co2_warning=co2_warning))
    for warning in report.warnings:
        click.echo(f"WARNING: {warning}")
    for error in report.errors:
        click.echo(f"ERROR: {error}")
    if not report.ok:
        raise click.ClickException(f"{len(report.errors)} error(s) in {spec_path}")
    click.echo(f"{spec_path} OK ({len(report.warnings)} warning(s))")
