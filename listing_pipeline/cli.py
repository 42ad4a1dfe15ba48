from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, NoReturn, TypeVar

import typer
import uvicorn

from listing_pipeline.annotations.normalizer import build_annotation_bundle
from listing_pipeline.annotations.provider import VideoIntelligenceProvider
from listing_pipeline.config import Settings, load_settings
from listing_pipeline.errors import ListingPipelineError
from listing_pipeline.logging_config import configure_logging
from listing_pipeline.models import QueueJob
from listing_pipeline.pipeline import PipelineContext, log_analysis_summary, process_video, summarize_bundle
from listing_pipeline.server import create_app
from listing_pipeline.storage.record_store import RecordStore
from listing_pipeline.summarize.summary_builder import render_prompt

app = typer.Typer(help="Property-listing video pipeline.")
config_app = typer.Typer(help="Configuration commands.")

app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIG_OPTION_HELP = "Path to YAML configuration file."


def _run_with_progress(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    typer.echo(f"[{step_index}/{total_steps}] {label}...", err=True)
    started_at = perf_counter()
    try:
        result = work()
    except Exception:
        elapsed = perf_counter() - started_at
        typer.echo(f"[{step_index}/{total_steps}] {label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"[{step_index}/{total_steps}] {label} done in {elapsed:.1f}s", err=True)
    return result


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _fail(exc: Exception) -> NoReturn:
    logger.error("Command failed: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1) from exc


@config_app.command("show")
def show_config(
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="LISTING_PIPELINE_CONFIG",
        help=CONFIG_OPTION_HELP,
    )
) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@app.command()
def serve(
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="LISTING_PIPELINE_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
    host: str | None = typer.Option(None, help="Bind address. Defaults to server.host."),
    port: int | None = typer.Option(None, help="Bind port. Defaults to server.port."),
) -> None:
    """Run the HTTP ingress service with its single-flight processing queue."""

    settings = _bootstrap(config_path)
    resolved_host = host or settings.server.host
    resolved_port = port or settings.server.port
    logger.info("Video processor service listening on %s:%d", resolved_host, resolved_port)
    uvicorn.run(create_app(settings), host=resolved_host, port=resolved_port, log_config=None)


@app.command("process")
def process_one(
    bucket: str,
    name: str,
    drive_file_id: str | None = typer.Option(None, help="Optional source drive file id stored with the records."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="LISTING_PIPELINE_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Process one stored video immediately, bypassing the queue, and print the result JSON."""

    settings = _bootstrap(config_path)
    context = PipelineContext(
        settings=settings,
        provider=VideoIntelligenceProvider(settings.video),
        store=RecordStore(settings.storage),
    )
    job = QueueJob(bucket=bucket, file_name=name, drive_file_id=drive_file_id)

    try:
        result = _run_with_progress(1, 1, f"Process {name}", lambda: asyncio.run(process_video(job, context)))
    except (ListingPipelineError, RuntimeError, ValueError) as exc:
        _fail(exc)

    typer.echo(json.dumps(result, indent=2, ensure_ascii=False))


@app.command()
def summarize(
    annotations_path: Path,
    show_prompt: bool = typer.Option(False, "--prompt", help="Print the rendered model prompt instead of the summary."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="LISTING_PIPELINE_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Normalize, aggregate and categorize a saved annotation response offline."""

    settings = _bootstrap(config_path)
    total_steps = 3

    try:
        results = _run_with_progress(1, total_steps, "Load annotations", lambda: _load_annotation_results(annotations_path))
        bundle = _run_with_progress(2, total_steps, "Normalize annotations", lambda: build_annotation_bundle(results))
        log_analysis_summary(annotations_path.name, bundle)
        summary = _run_with_progress(3, total_steps, "Summarize", lambda: summarize_bundle(bundle, settings.aggregation))
    except (ListingPipelineError, RuntimeError, ValueError) as exc:
        _fail(exc)

    if show_prompt:
        typer.echo(render_prompt(summary))
        return
    typer.echo(json.dumps(summary, indent=2, ensure_ascii=False))


def _load_annotation_results(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ValueError(f"Annotation file not found: {path}")

    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Annotation file must contain a JSON object.")

    # accept a full response or a single annotation result
    results = payload.get("annotationResults") if "annotationResults" in payload else [payload]
    if not isinstance(results, list) or not results:
        raise ValueError("Annotation file contains no annotation results.")

    merged: dict[str, Any] = {}
    for result in results:
        for key, value in result.items():
            if isinstance(value, list):
                merged.setdefault(key, []).extend(value)
            else:
                merged.setdefault(key, value)
    return {kind: merged for kind in ("transcript", "objects", "labels", "text")}


if __name__ == "__main__":
    app()
