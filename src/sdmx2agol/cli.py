import json
import logging
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
import yaml
from dotenv import load_dotenv

# Load environment variables BEFORE importing local modules that use them
load_dotenv()

from .config.settings import Config, ConfigurationError
from .domain.enums import SourceFormat
from .domain.models import PublishRequest, SeriesMetadata
from .pipeline.export import generate_export_filename, write_geojson
from .pipeline.orchestrator import SdmxPipeline
from .pipeline.parse import detect_format
from .pipeline.publish import ItemPublisher
from .types import ParseError, PipelineResult
from .utils import setup_logging

app = typer.Typer(help="SDMX to ArcGIS Online: Parse -> Build -> Join -> Publish/Export")


def load_series_metadata(path: Optional[Path]) -> Optional[SeriesMetadata]:
    """
    Load goal/target/indicator/series metadata from a YAML file.

    Expected keys match SeriesMetadata, e.g.:

        goal_code: "1"
        goal_description: No poverty
        series_code: SI_POV_DAY1
        tags: [SDG, poverty]
    """
    if path is None:
        return None
    if not path.exists():
        raise FileNotFoundError(f"Metadata file not found: {path}")

    with open(path, encoding="utf-8") as f:
        content = yaml.safe_load(f) or {}
    if not isinstance(content, dict):
        raise ValueError(f"Metadata file must contain a mapping: {path}")
    return SeriesMetadata(**content)


def resolve_format(input_path: Optional[Path], fmt: Optional[SourceFormat]) -> SourceFormat:
    """Explicit --format wins; otherwise infer from the file extension (SDMX-JSON for API queries)."""
    if fmt is not None:
        return fmt
    if input_path is not None:
        return detect_format(input_path)
    return SourceFormat.SDMX_JSON


def build_request(
    input_path: Optional[Path],
    sdmx_api: Optional[str],
    fmt: Optional[SourceFormat],
    title: Optional[str],
    join: bool,
    sdmx_field: Optional[str],
    geo_field: Optional[str],
    geographies_url: Optional[str],
    geographies_file: Optional[Path],
    **options: Any,
) -> PublishRequest:
    values: dict[str, Any] = {
        "source_format": resolve_format(input_path, fmt),
        "input_path": input_path,
        "sdmx_api": sdmx_api,
        "join_to_geographies": join,
        "sdmx_field": sdmx_field,
        "geo_field": geo_field,
        "geographies_url": geographies_url,
        "geographies_path": geographies_file,
        **options,
    }
    if title:
        values["title"] = title
    return PublishRequest(**values)


def report(result: PipelineResult) -> None:
    """Print the structured result and exit non-zero on failure."""
    typer.echo(json.dumps(result.to_dict(), indent=2, default=str))
    if not result.success:
        typer.echo(f"ERROR: [{result.error_kind}] at {result.stage}: {result.message}", err=True)
        raise typer.Exit(1)


def fail(message: str) -> None:
    typer.echo(f"ERROR: {message}", err=True)
    raise typer.Exit(1)


@app.command("convert")
def convert(
    input_path: Annotated[Path, typer.Argument(help="SDMX-JSON, SDMX-ML or CSV file")],
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Output GeoJSON path (defaults to <title>.geojson)")] = None,
    fmt: Annotated[Optional[SourceFormat], typer.Option("--format", "-f", help="Input format (inferred from extension if omitted)")] = None,
    title: Annotated[Optional[str], typer.Option("--title", "-t", help="Layer name written to the collection metadata")] = None,
    join: Annotated[bool, typer.Option("--join/--no-join", help="Join features to boundary geometries")] = False,
    sdmx_field: Annotated[Optional[str], typer.Option("--sdmx-field", help="Feature property holding the join key, e.g. REF_AREA_CODE")] = None,
    geo_field: Annotated[Optional[str], typer.Option("--geo-field", help="Geometry attribute holding the join key, e.g. ISO3CD")] = None,
    geographies_url: Annotated[Optional[str], typer.Option("--geographies-url", help="Feature service layer URL with boundary geometries")] = None,
    geographies_file: Annotated[Optional[Path], typer.Option("--geographies-file", help="Local GeoJSON file with boundary geometries")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable detailed logging output")] = False,
    log_to_file: Annotated[bool, typer.Option("--log-to-file", help="Create timestamped log files")] = False,
):
    """
    Convert an SDMX or CSV file to a GeoJSON FeatureCollection without publishing.

    Examples:
        sdmx2agol convert data.json -o poverty.geojson
        sdmx2agol convert data.xml --join --sdmx-field REF_AREA_CODE --geo-field ISO3CD --geographies-file countries.geojson
    """
    setup_logging(verbose, "convert", title or input_path.stem, log_to_file)

    try:
        config = Config(require_agol=False)
        logging.debug(f"Loaded {config!r}: {config.get_security_summary()}")
        request = build_request(
            input_path, None, fmt, title, join, sdmx_field, geo_field, geographies_url, geographies_file,
            dry_run=True,
        )
    except (ConfigurationError, ParseError, ValueError) as e:
        fail(str(e))

    result = SdmxPipeline(config).run(request)
    if not result.success:
        report(result)

    collection = result.collection
    if title:
        collection["metadata"]["name"] = title
    output = output or Path(generate_export_filename(title or input_path.stem))
    write_geojson(collection, output)

    if result.join and result.join.unmatched:
        typer.echo(f"WARNING: {result.join.summary()}", err=True)
    typer.echo(f"Wrote {result.feature_count:,} features to {output}")


@app.command("publish")
def publish(
    input_path: Annotated[Optional[Path], typer.Argument(help="SDMX-JSON, SDMX-ML or CSV file (omit with --sdmx-api)")] = None,
    sdmx_api: Annotated[Optional[str], typer.Option("--sdmx-api", help="SDMX REST data query URL")] = None,
    fmt: Annotated[Optional[SourceFormat], typer.Option("--format", "-f", help="Input format (inferred from extension if omitted)")] = None,
    title: Annotated[Optional[str], typer.Option("--title", "-t", help="Item and service title (default fromSDMX_<timestamp>)")] = None,
    join: Annotated[bool, typer.Option("--join/--no-join", help="Join features to boundary geometries")] = False,
    sdmx_field: Annotated[Optional[str], typer.Option("--sdmx-field", help="Feature property holding the join key, e.g. REF_AREA_CODE")] = None,
    geo_field: Annotated[Optional[str], typer.Option("--geo-field", help="Geometry attribute holding the join key, e.g. ISO3CD")] = None,
    geographies_url: Annotated[Optional[str], typer.Option("--geographies-url", help="Feature service layer URL with boundary geometries")] = None,
    geographies_file: Annotated[Optional[Path], typer.Option("--geographies-file", help="Local GeoJSON file with boundary geometries")] = None,
    metadata: Annotated[Optional[Path], typer.Option("--metadata", "-m", help="YAML file with goal/target/indicator/series metadata")] = None,
    token: Annotated[Optional[str], typer.Option("--token", help="ArcGIS Online token (overrides configured credentials)")] = None,
    user_content_url: Annotated[Optional[str], typer.Option("--user-content-url", help="User content URL matching --token")] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Build and join without uploading")] = False,
    cleanup_input: Annotated[bool, typer.Option("--cleanup-input", help="Delete the input file after a successful publish")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable detailed logging output")] = False,
    log_to_file: Annotated[bool, typer.Option("--log-to-file", help="Create timestamped log files")] = False,
):
    """
    Publish SDMX data to ArcGIS Online as a hosted feature service.

    Examples:
        sdmx2agol publish data.json --title "Poverty headcount"
        sdmx2agol publish --sdmx-api "https://.../data/DF_SDG_GLH/..." --join \\
            --sdmx-field REF_AREA_CODE --geo-field ISO3CD --geographies-url https://.../FeatureServer/0
    """
    setup_logging(verbose, "publish", title, log_to_file)

    if bool(token) != bool(user_content_url):
        fail("--token and --user-content-url must be given together")

    try:
        config = Config(require_agol=not (dry_run or token))
        logging.debug(f"Loaded {config!r}: {config.get_security_summary()}")
        series_metadata = load_series_metadata(metadata)
        request = build_request(
            input_path, sdmx_api, fmt, title, join, sdmx_field, geo_field, geographies_url, geographies_file,
            metadata=series_metadata,
            dry_run=dry_run,
            cleanup_paths=[input_path] if cleanup_input and input_path else [],
        )
    except (ConfigurationError, ParseError, FileNotFoundError, ValueError) as e:
        fail(str(e))

    publisher = None
    if token:
        publisher = ItemPublisher(token, user_content_url, config.publish, config.remote)

    logging.info(f"Publishing '{request.title}' to ArcGIS Online")
    result = SdmxPipeline(config, publisher=publisher).run(request)
    report(result)


@app.command("fields")
def fields(
    input_path: Annotated[Path, typer.Argument(help="SDMX-JSON, SDMX-ML or CSV file")],
    fmt: Annotated[Optional[SourceFormat], typer.Option("--format", "-f", help="Input format (inferred from extension if omitted)")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable detailed logging output")] = False,
):
    """List the layer fields an input would publish."""
    setup_logging(verbose)

    try:
        request = build_request(input_path, None, fmt, None, False, None, None, None, None, fields_only=True)
    except (ParseError, ValueError) as e:
        fail(str(e))

    result = SdmxPipeline().run(request)
    if not result.success:
        report(result)

    typer.echo(json.dumps({"success": True, "fields": result.fields}, indent=2))


@app.command("version")
def version():
    """Display version information."""
    try:
        from . import __version__
        typer.echo(f"sdmx2agol version: {__version__}")
    except ImportError:
        typer.echo("sdmx2agol (development version)")


if __name__ == "__main__":
    app()
