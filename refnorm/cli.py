"""Command-line interface for the normalization core."""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from .benchmark import BenchmarkHistory, ModelBenchmarkHarness, ModelPriorityStore
from .classification import (
    HierarchicalClassifier,
    JSONTaxonomySource,
    LLMLevelBackend,
    PrioritizedBackend,
)
from .config import ConfigManager, RefnormConfig
from .deduplication import DuplicateAnalyzer, merged_count
from .errors import BaseRefnormError, ConfigurationError
from .llm import LLMClient, create_llm_provider
from .logging_config import setup_logging
from .models import Record
from .pipeline import NormalizationPipeline

console = Console()
err_console = Console(stderr=True)


def load_records(path: str) -> List[Record]:
    """Load records from a JSON file holding a list (or ``{"records": [...]}``)."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("records", [])
    return [Record.from_dict(entry) for entry in data]


def load_samples(path: str) -> List[str]:
    """One sample per line; a JSON list is accepted too."""
    text = Path(path).read_text(encoding="utf-8")
    if text.lstrip().startswith("["):
        return [str(item) for item in json.loads(text)]
    return [line.strip() for line in text.splitlines() if line.strip()]


def build_level_backend(config: RefnormConfig, model: str) -> LLMLevelBackend:
    """Backend bound to a single model."""
    llm = config.llm
    try:
        provider = create_llm_provider(
            llm.provider,
            api_key=llm.api_key,
            model=model,
            base_url=llm.base_url,
            timeout=llm.request_timeout,
        )
    except Exception as e:
        raise ConfigurationError(f"Cannot create {llm.provider} provider for {model}: {e}", cause=e) from e
    return LLMLevelBackend(LLMClient(provider, llm))


def build_classifier(
    config: RefnormConfig,
    models: List[str],
    priority_store: Optional[ModelPriorityStore] = None,
) -> HierarchicalClassifier:
    """Classifier over the configured taxonomy; several models are tried in priority order."""
    taxonomy_path = config.classifier.taxonomy_path
    if not taxonomy_path:
        raise ConfigurationError("Taxonomy path not configured (set REFNORM_TAXONOMY_PATH)")

    if len(models) == 1:
        backend = build_level_backend(config, models[0])
    else:
        backend = PrioritizedBackend(
            {model: build_level_backend(config, model) for model in models},
            order_fn=priority_store.ordered if priority_store else None,
        )

    return HierarchicalClassifier.create(
        JSONTaxonomySource(taxonomy_path),
        backend,
        settings=config.classifier,
        request_timeout=config.llm.request_timeout,
    )


def _candidate_models(config: RefnormConfig, model: Optional[str]) -> List[str]:
    if model:
        return [model]
    models = [config.llm.model]
    for name in config.benchmark.models:
        if name not in models:
            models.append(name)
    return models


def _print_json(payload: Any) -> None:
    console.print_json(data=payload, ensure_ascii=False)


def cmd_dedupe(args, config: RefnormConfig) -> int:
    records = load_records(args.records)
    analyzer = DuplicateAnalyzer(legal_form_tokens=config.deduplication.legal_form_tokens)
    groups = analyzer.analyze(records)
    summary = analyzer.summarize(groups)

    if args.json:
        _print_json({
            "groups": [dict(g.to_dict(), merged_count=merged_count(g)) for g in groups],
            "summary": summary,
        })
        return 0

    table = Table(title=f"Duplicate groups ({len(records)} records)", box=box.ROUNDED)
    table.add_column("Key", style="cyan")
    table.add_column("Key type")
    table.add_column("Records", justify="right")
    table.add_column("Merged", justify="right")
    table.add_column("Master", style="green")
    for group in groups:
        master = group.master_item
        table.add_row(
            group.key,
            group.key_type,
            str(len(group.items)),
            str(merged_count(group)),
            f"{master.name} (#{master.id})" if master else "-",
        )
    console.print(table)
    console.print(
        f"[bold]{summary['total_groups']}[/bold] groups, "
        f"{summary['total_duplicates']} records "
        f"(inn_kpp: {summary['duplicates_by_inn_kpp']}, "
        f"bin: {summary['duplicates_by_bin']}, "
        f"both: {summary['duplicates_by_both']})"
    )
    return 0


def cmd_classify(args, config: RefnormConfig) -> int:
    store = ModelPriorityStore(config.benchmark.priority_store)
    classifier = build_classifier(config, _candidate_models(config, args.model), store)
    category = args.category or config.pipeline.default_category
    result = asyncio.run(classifier.classify(args.name, category))

    if args.json:
        _print_json(result.to_dict())
        return 0

    table = Table(title=args.name, box=box.ROUNDED)
    table.add_column("Level", justify="right")
    table.add_column("Code", style="cyan")
    table.add_column("Name")
    table.add_column("Source")
    table.add_column("Confidence", justify="right")
    for step in result.steps:
        table.add_row(str(step.level), step.code, step.name, step.source.value, f"{step.confidence:.2f}")
    console.print(table)
    console.print(
        f"[bold green]{result.code}[/bold green] {result.name} "
        f"(confidence {result.confidence:.2f}, via {result.path_source.value}"
        + (f"/{result.fallback_method}" if result.fallback_method else "")
        + (", [yellow]manual review[/yellow]" if result.manual_review_required else "")
        + ")"
    )
    return 0


def cmd_benchmark(args, config: RefnormConfig) -> int:
    store = ModelPriorityStore(config.benchmark.priority_store)
    history_path = args.history or config.benchmark.history_path
    history = BenchmarkHistory(history_path) if history_path else None

    if args.show_history:
        if history is None:
            raise ConfigurationError("No benchmark history path configured")
        entries = history.recent(limit=args.limit, model=args.model_filter)
        _print_json({"history": entries, "total": len(entries)})
        return 0

    harness = ModelBenchmarkHarness(
        lambda model: build_classifier(config, [model]),
        settings=config.benchmark,
        priority_store=store,
        history=history,
    )
    samples = load_samples(args.samples_file) if args.samples_file else None
    report = asyncio.run(harness.run(
        models=args.models or config.benchmark.models,
        samples=samples,
        max_retries=args.max_retries,
        retry_delay_ms=args.retry_delay_ms,
        update_priorities=args.update_priorities,
    ))

    if args.json:
        _print_json(report.to_dict(include_samples=args.verbose))
        return 0

    table = Table(title=f"Model benchmark ({report.test_count} samples)", box=box.ROUNDED)
    for column in ("Priority", "Model", "Status", "Success", "Rate %", "Speed/s", "Avg ms", "Median ms", "P95 ms"):
        table.add_column(column, justify="left" if column in ("Model", "Status") else "right")
    for run in report.runs:
        table.add_row(
            str(run.priority),
            run.model,
            run.status,
            f"{run.success_count}/{run.total_requests}",
            f"{run.success_rate:.1f}",
            f"{run.speed:.2f}",
            f"{run.avg_response_time_ms:.0f}",
            f"{run.median_response_time_ms:.0f}",
            f"{run.p95_response_time_ms:.0f}",
        )
    console.print(table)
    if report.priorities_updated:
        console.print(f"Priorities written to {store.path}")
    return 0


def cmd_pipeline(args, config: RefnormConfig) -> int:
    records = load_records(args.records)
    store = ModelPriorityStore(config.benchmark.priority_store)
    classifier = build_classifier(config, _candidate_models(config, args.model), store)
    pipeline = NormalizationPipeline(
        DuplicateAnalyzer(legal_form_tokens=config.deduplication.legal_form_tokens),
        classifier,
        settings=config.pipeline,
    )
    result = asyncio.run(pipeline.run(records))

    if args.json:
        _print_json(result.to_dict())
        return 0

    table = Table(title="Pipeline stages", box=box.ROUNDED)
    table.add_column("#", justify="right")
    table.add_column("Stage")
    table.add_column("Completed", justify="right")
    table.add_column("Progress", justify="right")
    for stage in result.stages["stages"]:
        table.add_row(str(stage["number"]), stage["name"], str(stage["completed"]), f"{stage['progress']:.0f}%")
    console.print(table)
    console.print(
        f"{result.summary['total_groups']} duplicate groups, "
        f"{len(result.assignments)} records classified, "
        f"{result.stages['manual_review_required']} need manual review, "
        f"avg confidence {result.stages['avg_confidence']:.2f}"
    )
    return 0


def cmd_generate_config(args, config_manager: ConfigManager) -> int:
    output = args.output or "refnorm.json"
    config_manager.save_template(output)
    console.print(f"Configuration template saved to: {output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="refnorm",
        description="Reference-data normalization: deduplication, classification, model benchmarking",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Find duplicate counterparties
  python -m refnorm dedupe counterparties.json

  # Classify one item
  python -m refnorm classify "Болт М8х20" --category "крепеж"

  # Benchmark models and store the resulting priorities
  python -m refnorm benchmark --models GLM-4.5-Air GLM-4.5 --update-priorities

  # Run the whole pipeline
  python -m refnorm pipeline nomenclature.json --json
""",
    )
    parser.add_argument("-c", "--config", help="Path to configuration file")
    parser.add_argument("--log-level", help="Logging level (overrides config)")
    parser.add_argument("--log-format", choices=("console", "json"), help="Log output format")
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    dedupe_parser = subparsers.add_parser("dedupe", help="Find duplicate records by identity keys")
    dedupe_parser.add_argument("records", help="JSON file with records")

    classify_parser = subparsers.add_parser("classify", help="Classify a single item name")
    classify_parser.add_argument("name", help="Normalized item name")
    classify_parser.add_argument("--category", help="Category hint")
    classify_parser.add_argument("--model", help="Use only this model")

    bench_parser = subparsers.add_parser("benchmark", help="Benchmark AI models")
    bench_parser.add_argument("--models", nargs="+", help="Models to benchmark")
    bench_parser.add_argument("--samples-file", help="File with sample names (one per line or JSON list)")
    bench_parser.add_argument("--max-retries", type=int, default=0, help="Attempts per sample")
    bench_parser.add_argument("--retry-delay-ms", type=int, default=0, help="Base retry delay in milliseconds")
    bench_parser.add_argument("--update-priorities", action="store_true", help="Write model priorities")
    bench_parser.add_argument("--history", help="Benchmark history file (JSON Lines)")
    bench_parser.add_argument("--show-history", action="store_true", help="Print stored history and exit")
    bench_parser.add_argument("--limit", type=int, default=100, help="History entries to show")
    bench_parser.add_argument("--model-filter", help="Only show history for this model")

    pipeline_parser = subparsers.add_parser("pipeline", help="Deduplicate and classify records")
    pipeline_parser.add_argument("records", help="JSON file with records")
    pipeline_parser.add_argument("--model", help="Use only this model")

    config_parser = subparsers.add_parser("generate-config", help="Generate configuration template")
    config_parser.add_argument("-o", "--output", help="Output path (default: refnorm.json)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config_manager = ConfigManager(args.config)

    try:
        if args.command == "generate-config":
            return cmd_generate_config(args, config_manager)

        config = config_manager.load()
        setup_logging(
            level=args.log_level or ("DEBUG" if args.verbose else config.log_level),
            format=args.log_format or config.log_format,
        )

        commands: Dict[str, Any] = {
            "dedupe": cmd_dedupe,
            "classify": cmd_classify,
            "benchmark": cmd_benchmark,
            "pipeline": cmd_pipeline,
        }
        return commands[args.command](args, config)
    except KeyboardInterrupt:
        err_console.print("\n⚠️  Interrupted by user")
        return 1
    except (BaseRefnormError, OSError, ValueError) as e:
        err_console.print(f"[red]❌ Error:[/red] {e}")
        if args.verbose:
            err_console.print_exception()
        return 1


if __name__ == "__main__":
    sys.exit(main())
