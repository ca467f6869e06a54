"""Command-line interface for PRD refinement and validation."""

from __future__ import annotations

import json
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.table import Table

from prd_refinery import __version__
from prd_refinery.agent.autofix import AutoFixEngine, FixContext
from prd_refinery.agent.cancellation import CancellationToken
from prd_refinery.agent.config import RefineryConfig, load_config
from prd_refinery.agent.config_validation import require_positive_int, validate_choice
from prd_refinery.agent.conversation import ConversationStore
from prd_refinery.agent.documents import PrdSetWriter, load_document, load_documents
from prd_refinery.agent.enhancers import PhaseGenerator
from prd_refinery.agent.errors import ConversationNotFoundError, PipelineCancelled
from prd_refinery.agent.interaction import (
    ConsolePromptSurface,
    PromptSurface,
    ScriptedPromptSurface,
)
from prd_refinery.agent.journal import PromptJournal
from prd_refinery.agent.models import BUILD_MODES, ValidationResult
from prd_refinery.agent.orchestrator import (
    RefinementOptions,
    RefinementOrchestrator,
    validate_set,
)
from prd_refinery.agent.pattern_cache import PatternCache
from prd_refinery.agent.providers import MockProvider, OpenAIProvider, ResilientLLM
from prd_refinery.agent.providers.base import TextGenerator
from prd_refinery.agent.scorer import ExecutabilityScorer
from prd_refinery.logging_utils import configure_logging

app = typer.Typer(add_completion=False, no_args_is_help=True)
conversations_app = typer.Typer(no_args_is_help=True)
console = Console()

app.add_typer(conversations_app, name="conversations", help="Inspect stored conversations.")

EXIT_CANCELLED = 130
PROVIDERS = {"openai", "resilient", "mock"}


def _version_callback(value: bool) -> None:
    """Print package version and exit when requested."""
    if value:
        console.print(__version__)
        raise typer.Exit()


def _config(ctx: typer.Context) -> RefineryConfig:
    """Return the configuration loaded by the root callback."""
    obj = ctx.find_root().obj
    if isinstance(obj, RefineryConfig):
        return obj
    try:
        return load_config()
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _load_mock_responses(mock_responses_file: Path) -> list[Any]:
    """Load queued mock responses from a JSON list."""
    try:
        raw = json.loads(mock_responses_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise typer.BadParameter(f"Could not read --mock-responses-file: {exc}") from exc
    if not isinstance(raw, list):
        raise typer.BadParameter("--mock-responses-file must contain a JSON list.")
    for index, item in enumerate(raw):
        if not isinstance(item, (dict, str)):
            raise typer.BadParameter(f"Mock response index {index} is not an object or string.")
    return raw


def _create_provider(
    provider: str, model: str, mock_responses_file: Path | None
) -> TextGenerator:
    """Create a text generator from CLI options."""
    if provider == "mock":
        if mock_responses_file is None:
            raise typer.BadParameter("--mock-responses-file is required when provider=mock.")
        return MockProvider(_load_mock_responses(mock_responses_file))
    try:
        if provider == "openai":
            return OpenAIProvider(model=model)
        if provider == "resilient":
            return ResilientLLM(OpenAIProvider(model=model))
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    raise typer.BadParameter("provider must be one of: mock, openai, resilient.")


@contextmanager
def _sigint_cancels(token: CancellationToken) -> Iterator[None]:
    """Route the first SIGINT to the token; a second one interrupts immediately."""

    def _handler(signum: int, frame: object) -> None:
        if token.cancelled:
            raise KeyboardInterrupt
        token.cancel("Interrupted by user.")
        console.print(
            "[yellow]Cancelling at the next checkpoint (Ctrl-C again to abort).[/yellow]"
        )

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _print_validation(title: str, validation: ValidationResult) -> None:
    """Render a validation result as rich tables."""
    table = Table(title=title)
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Executable", "yes" if validation.executable else "no")
    table.add_row("Score", f"{validation.score}/100")
    table.add_row("Errors", str(len(validation.errors)))
    table.add_row("Warnings", str(len(validation.warnings)))
    console.print(table)
    if validation.errors:
        errors = Table(title="Errors")
        errors.add_column("Severity")
        errors.add_column("Type")
        errors.add_column("Message")
        for error in validation.errors:
            errors.add_row(error.severity, error.error_type, error.message)
        console.print(errors)
    if validation.warnings:
        warnings = Table(title="Warnings")
        warnings.add_column("Type")
        warnings.add_column("Message")
        for warning in validation.warnings:
            warnings.add_row(warning.warning_type, warning.message)
        console.print(warnings)


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show prd-refinery version and exit.",
            is_eager=True,
            callback=_version_callback,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug logging."),
    ] = False,
    log_file: Annotated[
        Path,
        typer.Option("--log-file", help="Write logs to this file (truncated per run)."),
    ] = Path("prd-refinery.log"),
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to prd-refinery.yml."),
    ] = None,
) -> None:
    """Refine PRDs into executable PRD sets and validate them."""
    configure_logging(log_file=log_file, verbose=verbose)
    try:
        ctx.obj = load_config(config_file)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


@app.command()
def refine(
    ctx: typer.Context,
    prd_file: Annotated[Path, typer.Argument(help="PRD file (markdown, YAML, or JSON).")],
    output_dir: Annotated[
        Path,
        typer.Option(help="Directory receiving <prd_id>/index.md."),
    ] = Path("prd-set"),
    provider: Annotated[
        str,
        typer.Option(help="Text generator to use: openai, resilient, or mock."),
    ] = "openai",
    model: Annotated[
        str,
        typer.Option(help="Model name when using the OpenAI provider."),
    ] = "gpt-4o-mini",
    mock_responses_file: Annotated[
        Path | None,
        typer.Option(help="JSON list of queued responses when provider=mock."),
    ] = None,
    answers_file: Annotated[
        Path | None,
        typer.Option(help="YAML/JSON answers and review decisions for non-interactive runs."),
    ] = None,
    auto_approve: Annotated[
        bool | None,
        typer.Option(
            "--auto-approve/--review",
            help="Approve every phase without prompting (default from config).",
        ),
    ] = None,
    streamline: Annotated[
        bool,
        typer.Option(
            "--streamline/--no-streamline",
            help="With auto-approve, generate each phase once and converge once.",
        ),
    ] = True,
    max_iterations: Annotated[
        int | None,
        typer.Option(help="Auto-fix and refinement budget (default from config)."),
    ] = None,
    strict: Annotated[
        bool | None,
        typer.Option("--strict/--lenient", help="Treat warnings as blocking."),
    ] = None,
    mode: Annotated[
        str,
        typer.Option(help="Build mode: convert, enhance, or create."),
    ] = "convert",
    conversation_id: Annotated[
        str | None,
        typer.Option(help="Resume an existing conversation instead of starting one."),
    ] = None,
    framework: Annotated[
        str | None,
        typer.Option(help="Target framework recorded in the conversation."),
    ] = None,
    codebase_context_file: Annotated[
        Path | None,
        typer.Option(help="Text file describing the target codebase."),
    ] = None,
) -> None:
    """Refine one PRD through the schema, test, and feature phases."""
    config = _config(ctx)
    try:
        validate_choice(provider, "provider", PROVIDERS)
        validate_choice(mode, "mode", set(BUILD_MODES))
        document = load_document(prd_file)
        settings = config.refinement
        options = RefinementOptions(
            max_iterations=require_positive_int(
                max_iterations if max_iterations is not None else settings.max_iterations,
                "max-iterations",
            ),
            auto_approve=settings.auto_approve if auto_approve is None else auto_approve,
            streamline_auto_approve=streamline,
            ask_pre_phase_questions=settings.ask_pre_phase_questions,
            ask_mid_phase_questions=settings.ask_mid_phase_questions,
            ask_post_phase_questions=settings.ask_post_phase_questions,
            show_codebase_insights=settings.show_codebase_insights,
        )
        surface: PromptSurface | None = None
        if answers_file is not None:
            surface = ScriptedPromptSurface.from_file(answers_file)
        elif not options.auto_approve:
            surface = ConsolePromptSurface(console)
        codebase_context = (
            codebase_context_file.read_text(encoding="utf-8")
            if codebase_context_file is not None
            else None
        )
    except (ValueError, OSError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    text_generator = _create_provider(provider, model, mock_responses_file)
    paths = config.paths
    store = ConversationStore(paths.conversations_path)
    try:
        if conversation_id is None:
            conversation_id = store.create(
                mode,  # type: ignore[arg-type]
                {
                    "initial_prompt": document.title or document.prd_id,
                    "framework": framework,
                    "codebase_context": codebase_context,
                },
            )
        else:
            updates: dict[str, Any] = {}
            if framework is not None:
                updates["framework"] = framework
            if codebase_context is not None:
                updates["codebase_context"] = codebase_context
            if updates:
                store.update_context(conversation_id, updates)
        context = store.get_context(conversation_id)
    except ConversationNotFoundError as exc:
        raise typer.BadParameter(str(exc)) from exc

    token = CancellationToken()
    scorer = ExecutabilityScorer(strict=config.refinement.strict if strict is None else strict)
    pattern_cache = PatternCache.load(paths.pattern_cache_path)
    writer = PrdSetWriter(output_dir)
    fix_engine = AutoFixEngine(
        scorer,
        context=FixContext(
            set_id=document.prd_id or None,
            testing_defaults=config.testing.to_testing_config(),
            pattern_cache=pattern_cache,
        ),
        writer=writer,
    )
    orchestrator = RefinementOrchestrator(
        PhaseGenerator(
            text_generator,
            journal=PromptJournal(paths.journal_path),
            cancel_token=token,
        ),
        scorer=scorer,
        fix_engine=fix_engine,
        surface=surface,
        store=store,
        gate_config=config.spec_kit.to_gate_config(),
        cancel_token=token,
    )

    try:
        with _sigint_cancels(token):
            result = orchestrator.refine(
                document, context, options, conversation_id=conversation_id
            )
    except (PipelineCancelled, KeyboardInterrupt) as exc:
        console.print(f"[yellow]Refinement cancelled: {str(exc) or 'interrupted'}[/yellow]")
        console.print(f"Resume with --conversation-id {conversation_id}")
        raise typer.Exit(code=EXIT_CANCELLED) from exc
    finally:
        pattern_cache.persist()

    written = writer.write(result.document)
    table = Table(title="Refinement Summary")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("PRD", result.document.prd_id or "-")
    table.add_row("Conversation", conversation_id)
    table.add_row("Executable", "yes" if result.success else "no")
    table.add_row("Score", f"{result.final_validation.score}/100")
    table.add_row("Iterations", str(result.iterations))
    table.add_row("Fixes Applied", ", ".join(result.fixes_applied) or "-")
    table.add_row("Output", str(written))
    console.print(table)
    console.print(result.summary)
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def validate(
    ctx: typer.Context,
    prd_file: Annotated[Path, typer.Argument(help="PRD file (markdown, YAML, or JSON).")],
    strict: Annotated[
        bool | None,
        typer.Option("--strict/--lenient", help="Treat warnings as blocking."),
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Emit JSON instead of tables.")] = False,
) -> None:
    """Score one PRD against the executability rubric."""
    config = _config(ctx)
    try:
        document = load_document(prd_file)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    scorer = ExecutabilityScorer(strict=config.refinement.strict if strict is None else strict)
    validation = scorer.validate(document)
    if as_json:
        typer.echo(json.dumps(validation.to_dict(), indent=2))
    else:
        _print_validation(f"Validation: {document.prd_id or prd_file.name}", validation)
    if not validation.executable:
        raise typer.Exit(code=1)


@app.command("validate-set")
def validate_set_command(
    prd_root: Annotated[Path, typer.Argument(help="Directory of PRD files, or one PRD file.")],
    as_json: Annotated[bool, typer.Option("--json", help="Emit JSON instead of tables.")] = False,
) -> None:
    """Validate every PRD in a set plus their cross-document dependencies."""
    try:
        documents = load_documents(prd_root)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    if not documents:
        raise typer.BadParameter(f"No PRD files found under {prd_root}.")
    result = validate_set(documents)
    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
    else:
        table = Table(title="PRD Set Validation")
        table.add_column("PRD")
        table.add_column("Status")
        table.add_column("Score")
        table.add_column("Errors")
        for item in result.documents:
            table.add_row(
                item.prd_id or "-",
                "ok" if item.success else "failed",
                str(item.validation.score) if item.validation else "-",
                "; ".join(item.errors) or "-",
            )
        console.print(table)
        for message in (
            *result.dependencies.missing_dependencies,
            *result.dependencies.circular_dependencies,
        ):
            console.print(f"[red]{message}[/red]")
        if result.execution_levels:
            console.print("Execution levels:")
            for index, level in enumerate(result.execution_levels, start=1):
                console.print(f"  {index}. {', '.join(level)}")
    if not result.success:
        raise typer.Exit(code=1)


def _store(ctx: typer.Context) -> ConversationStore:
    return ConversationStore(_config(ctx).paths.conversations_path)


@conversations_app.command("list")
def conversations_list(ctx: typer.Context) -> None:
    """List stored conversations, newest first."""
    entries = _store(ctx).list_conversations()
    table = Table(title="Conversations")
    table.add_column("ID")
    table.add_column("Mode")
    table.add_column("State")
    table.add_column("Answers")
    table.add_column("Updated")
    for entry in entries:
        table.add_row(
            entry.conversation_id,
            entry.mode,
            entry.state,
            f"{entry.total_answers}/{entry.total_questions}",
            entry.updated_at,
        )
    console.print(table)


@conversations_app.command("show")
def conversations_show(
    ctx: typer.Context,
    conversation_id: Annotated[str, typer.Argument(help="Conversation id.")],
) -> None:
    """Print a conversation as JSON."""
    try:
        conversation = _store(ctx).get_conversation(conversation_id)
    except ConversationNotFoundError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(json.dumps(conversation.to_dict(), indent=2))


@conversations_app.command("summarize")
def conversations_summarize(
    ctx: typer.Context,
    conversation_id: Annotated[str, typer.Argument(help="Conversation id.")],
    max_recent_items: Annotated[
        int, typer.Option(help="Number of recent items kept verbatim.")
    ] = 10,
) -> None:
    """Print recent items and a digest of older ones."""
    try:
        summary = _store(ctx).summarize(conversation_id, max_recent_items)
    except (ConversationNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    if summary.summarized:
        console.print(summary.summarized)
    for item in summary.recent:
        answer = item.answer.as_text() if item.answer else "-"
        console.print(f"[{item.iteration}] {item.question.text} -> {answer}")


@conversations_app.command("delete")
def conversations_delete(
    ctx: typer.Context,
    conversation_id: Annotated[str, typer.Argument(help="Conversation id.")],
    force: Annotated[bool, typer.Option("--force", help="Skip confirmation.")] = False,
) -> None:
    """Delete a stored conversation."""
    if not force and not typer.confirm(f"Delete conversation {conversation_id}?"):
        raise typer.Exit(code=1)
    try:
        _store(ctx).delete(conversation_id)
    except ConversationNotFoundError as exc:
        raise typer.BadParameter(str(exc)) from exc
    console.print(f"Deleted {conversation_id}")


if __name__ == "__main__":
    app()
