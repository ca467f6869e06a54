"""Phase refinement orchestration: question hooks, generation, approval, convergence."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, fields, replace
from typing import Literal

from prd_refinery.agent.autofix import AutoFixEngine, AutoFixResult, FixContext
from prd_refinery.agent.cancellation import CancellationToken
from prd_refinery.agent.confidence_gate import AutoAnswerConfig, filter_and_auto_apply
from prd_refinery.agent.config_validation import require_positive_int
from prd_refinery.agent.conversation import ConversationStore
from prd_refinery.agent.dependency_graph import CrossDocumentValidator, IntegrationResult
from prd_refinery.agent.enhancers import (
    GenerationRequest,
    PhaseGenerator,
    apply_enhancement,
    merge_refined,
    with_enhancement,
)
from prd_refinery.agent.errors import GenerationFailure, PipelineCancelled
from prd_refinery.agent.gap_analysis import analyze_gaps, enhancement_types_for_gaps
from prd_refinery.agent.interaction import PromptSurface, RefinementDecision, fallback_answer
from prd_refinery.agent.models import (
    PHASE_KINDS,
    Answer,
    AnswerValue,
    ConversationContext,
    Enhancement,
    EnhancementSet,
    PhaseKind,
    PrdDocument,
    Question,
    RubricError,
    ValidationResult,
)
from prd_refinery.agent.questions import (
    CodebaseInsight,
    extract_insights,
    incomplete_item_ids,
    mid_phase_questions,
    post_phase_questions,
    pre_phase_questions,
    weak_item_ids,
)
from prd_refinery.agent.scorer import ExecutabilityScorer

logger = logging.getLogger(__name__)

PhaseStatus = Literal["approved", "rejected", "failed"]


@dataclass(frozen=True)
class RefinementOptions:
    """Switches controlling one refinement run.

    ``phases`` left as None runs every phase, except in enhance mode where
    only the phases that can close a detected gap run.
    """

    max_iterations: int = 5
    auto_approve: bool = False
    streamline_auto_approve: bool = True
    ask_pre_phase_questions: bool = True
    ask_mid_phase_questions: bool = True
    ask_post_phase_questions: bool = True
    show_codebase_insights: bool = True
    phases: tuple[PhaseKind, ...] | None = None

    def __post_init__(self) -> None:
        require_positive_int(self.max_iterations, "max_iterations")
        unknown = [phase for phase in self.phases or () if phase not in PHASE_KINDS]
        if unknown:
            raise ValueError(f"Unknown refinement phase(s): {', '.join(unknown)}.")

    @property
    def streamlined(self) -> bool:
        """Return whether the single-pass auto-approve path applies."""
        return self.auto_approve and self.streamline_auto_approve


@dataclass(frozen=True)
class PhaseResult:
    """Outcome of one enhancement phase."""

    phase: PhaseKind
    status: PhaseStatus
    enhancement: Enhancement | None = None
    validation: ValidationResult | None = None
    refinements: int = 0
    fix_result: AutoFixResult | None = None
    message: str = ""


@dataclass(frozen=True)
class RefinementResult:
    """Outcome of a refinement run over one document."""

    success: bool
    iterations: int
    document: PrdDocument
    final_validation: ValidationResult
    phase_results: list[PhaseResult] = field(default_factory=list)
    summary_lines: list[str] = field(default_factory=list)
    fixes_applied: list[str] = field(default_factory=list)
    enhancements: EnhancementSet = field(default_factory=EnhancementSet)
    conversation_id: str | None = None
    exhausted: bool = False

    @property
    def summary(self) -> str:
        """Return the human-readable build summary."""
        return "\n".join(self.summary_lines)


@dataclass
class _RunProgress:
    """What a run has produced so far, kept so a failed run can still report it."""

    enhancements: EnhancementSet = field(default_factory=EnhancementSet)
    phase_results: list[PhaseResult] = field(default_factory=list)
    summary_lines: list[str] = field(default_factory=list)
    fixes_applied: list[str] = field(default_factory=list)
    validation: ValidationResult | None = None
    iterations: int = 0
    exhausted: bool = False
    fix_iterations: int = 0
    gap_summary: str = ""

    def record_fix(self, fix_result: AutoFixResult) -> None:
        """Fold one convergence run into the progress."""
        self.fixes_applied.extend(fix_result.fixes_applied)
        self.validation = fix_result.final_validation
        self.exhausted = fix_result.exhausted
        self.fix_iterations = fix_result.iterations


def restore_document(document: PrdDocument, snapshot: PrdDocument) -> None:
    """Reset document in place to the state captured in snapshot."""
    for item in fields(document):
        setattr(document, item.name, copy.deepcopy(getattr(snapshot, item.name)))


class RefinementOrchestrator:
    """Drive a document through the schema, test, and feature phases.

    Each phase runs pre-phase questions, generation, mid-phase questions,
    post-phase validation, and approval. Interactive runs converge the
    document after every approved phase; the streamlined auto-approve path
    generates each phase once and converges a single time at the end.
    Generation failures and unexpected errors are reported in the returned
    result. Only cancellation crosses this boundary.
    """

    def __init__(
        self,
        generator: PhaseGenerator,
        *,
        scorer: ExecutabilityScorer | None = None,
        fix_engine: AutoFixEngine | None = None,
        surface: PromptSurface | None = None,
        store: ConversationStore | None = None,
        gate_config: AutoAnswerConfig | None = None,
        fix_context: FixContext | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.generator = generator
        self.scorer = scorer or ExecutabilityScorer()
        self.fix_engine = fix_engine or AutoFixEngine(self.scorer, context=fix_context)
        self.surface = surface
        self.store = store
        self.gate_config = gate_config or AutoAnswerConfig()
        self.cancel_token = cancel_token or CancellationToken()
        if generator.cancel_token is None:
            generator.cancel_token = self.cancel_token

    def refine(
        self,
        document: PrdDocument,
        context: ConversationContext,
        options: RefinementOptions | None = None,
        *,
        conversation_id: str | None = None,
    ) -> RefinementResult:
        """Refine document in place and return the run outcome."""
        settings = options or RefinementOptions()
        if not settings.auto_approve and self.surface is None:
            raise ValueError("A prompt surface is required unless auto_approve is enabled.")
        self._set_state(conversation_id, "refining")
        progress = _RunProgress()
        try:
            phases = self._plan_phases(document, context, settings, progress)
            if settings.streamlined:
                self._refine_streamlined(
                    document, context, settings, conversation_id, phases, progress
                )
            else:
                self._refine_interactive(
                    document, context, settings, conversation_id, phases, progress
                )
        except PipelineCancelled:
            logger.warning("Refinement of %s cancelled", document.prd_id or "PRD")
            self._set_state(conversation_id, "paused")
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Refinement of %s failed", document.prd_id or "PRD")
            self._set_state(conversation_id, "error")
            return self._finish(
                document, progress, conversation_id, failure=f"{type(exc).__name__}: {exc}"
            )
        self._set_state(conversation_id, "complete")
        return self._finish(document, progress, conversation_id)

    def _plan_phases(
        self,
        document: PrdDocument,
        context: ConversationContext,
        settings: RefinementOptions,
        progress: _RunProgress,
    ) -> tuple[PhaseKind, ...]:
        """Pick the phases to run; enhance mode only runs phases that close a gap."""
        analysis = analyze_gaps(document)
        progress.gap_summary = (
            f"Gaps: {len(analysis.gaps)} found ({analysis.critical} critical, "
            f"{analysis.high_priority - analysis.critical} high priority)"
        )
        if settings.phases is not None:
            return settings.phases
        if context.mode == "enhance":
            phases = enhancement_types_for_gaps(analysis.gaps)
            logger.info("Enhance mode: running %s", ", ".join(phases) or "no phases")
            return phases
        return PHASE_KINDS

    # ------------------------------------------------------------------
    # Streamlined auto-approve path
    # ------------------------------------------------------------------

    def _refine_streamlined(
        self,
        document: PrdDocument,
        context: ConversationContext,
        settings: RefinementOptions,
        conversation_id: str | None,
        phases: Sequence[PhaseKind],
        progress: _RunProgress,
    ) -> None:
        """Generate and apply each phase once, then converge a single time."""
        answers = context.answer_values()
        for phase in phases:
            self.cancel_token.raise_if_cancelled()
            logger.info("Phase %s: generating (auto-approve)", phase)
            snapshot = copy.deepcopy(document)
            request = GenerationRequest(
                document=document,
                answers=answers,
                codebase_context=context.codebase_context,
                iteration=1,
                conversation_id=conversation_id,
            )
            try:
                enhancement = self.generator.generate(phase, request)
            except GenerationFailure as exc:
                restore_document(document, snapshot)
                progress.summary_lines.append(f"{phase}: generation failed ({exc})")
                progress.phase_results.append(PhaseResult(phase, "failed", message=str(exc)))
                continue
            apply_enhancement(document, enhancement)
            progress.enhancements = with_enhancement(progress.enhancements, enhancement)
            progress.phase_results.append(PhaseResult(phase, "approved", enhancement))
            progress.summary_lines.append(
                f"{phase}: auto-approved ({len(enhancement.item_ids())} item(s))"
            )

        enhancements = progress.enhancements
        progress.record_fix(
            self.fix_engine.converge(
                document,
                max_iterations=settings.max_iterations,
                enhancements=None if enhancements.is_empty() else enhancements,
                cancel_token=self.cancel_token,
            )
        )
        progress.iterations = 1
        self._set_iteration(conversation_id, 1)

    # ------------------------------------------------------------------
    # Interactive path
    # ------------------------------------------------------------------

    def _refine_interactive(
        self,
        document: PrdDocument,
        context: ConversationContext,
        settings: RefinementOptions,
        conversation_id: str | None,
        phases: Sequence[PhaseKind],
        progress: _RunProgress,
    ) -> None:
        """Run every phase with its question hooks and converge after each approval."""
        answers = context.answer_values()
        iterations = 0

        insights = extract_insights(context, document)
        if settings.show_codebase_insights and insights and self.surface is not None:
            self.surface.show_insights(insights)

        for phase in phases:
            self.cancel_token.raise_if_cancelled()
            logger.info("Phase %s: starting", phase)
            if settings.ask_pre_phase_questions:
                questions = pre_phase_questions(phase, document, context, insights)
                answers.update(self._ask_all(questions, settings, conversation_id, phase))

            snapshot = copy.deepcopy(document)
            outcome = self._run_phase(
                phase,
                document,
                snapshot,
                context,
                answers,
                progress.enhancements,
                settings,
                conversation_id,
                insights,
                iterations,
            )
            iterations += outcome.refinements
            progress.iterations = max(iterations, 1)
            self._set_iteration(conversation_id, iterations)
            progress.phase_results.append(outcome)
            enhancement = outcome.enhancement
            if outcome.status == "failed" or enhancement is None:
                restore_document(document, snapshot)
                message = outcome.message or "no enhancement produced"
                progress.phase_results[-1] = replace(outcome, status="failed", message=message)
                progress.summary_lines.append(f"{phase}: generation failed ({message})")
                continue
            if outcome.status == "rejected":
                restore_document(document, snapshot)
                progress.summary_lines.append(f"{phase}: rejected, document left unchanged")
                continue

            apply_enhancement(document, enhancement)
            progress.enhancements = with_enhancement(progress.enhancements, enhancement)
            fix_result = self.fix_engine.converge(
                document,
                max_iterations=settings.max_iterations,
                enhancements=progress.enhancements,
                cancel_token=self.cancel_token,
            )
            progress.record_fix(fix_result)
            progress.phase_results[-1] = PhaseResult(
                phase,
                "approved",
                enhancement,
                outcome.validation,
                outcome.refinements,
                fix_result,
            )
            line = f"{phase}: approved ({len(enhancement.item_ids())} item(s))"
            if fix_result.fixes_applied:
                line += f", fixes: {', '.join(fix_result.fixes_applied)}"
            progress.summary_lines.append(line)

        enhancements = progress.enhancements
        progress.validation = self.scorer.validate(
            document, None if enhancements.is_empty() else enhancements
        )
        progress.iterations = max(iterations, 1)

    def _run_phase(
        self,
        phase: PhaseKind,
        document: PrdDocument,
        snapshot: PrdDocument,
        context: ConversationContext,
        answers: dict[str, AnswerValue],
        enhancements: EnhancementSet,
        settings: RefinementOptions,
        conversation_id: str | None,
        insights: Sequence[CodebaseInsight],
        iteration_base: int,
    ) -> PhaseResult:
        """Generate one phase, run its question hooks, and collect the approval decision."""
        rounds = 0

        def generate(
            focus_ids: Sequence[str] | None = None, feedback: str | None = None
        ) -> Enhancement:
            """Ask the generator for this phase, counting each call as a round."""
            nonlocal rounds
            rounds += 1
            request = GenerationRequest(
                document=snapshot,
                answers=answers,
                codebase_context=context.codebase_context,
                history=self._history(conversation_id),
                focus_ids=focus_ids,
                feedback=feedback,
                iteration=iteration_base + rounds,
                conversation_id=conversation_id,
            )
            return self.generator.generate(phase, request)

        try:
            enhancement = generate()
        except GenerationFailure as exc:
            return PhaseResult(phase, "failed", refinements=rounds, message=str(exc))

        if settings.ask_mid_phase_questions:
            questions = mid_phase_questions(phase, enhancement)
            mid_answers = self._ask_all(questions, settings, conversation_id, phase)
            if any(_accepts(value) for value in mid_answers.values()):
                enhancement = self._refine_items(
                    phase, enhancement, snapshot, weak_item_ids(enhancement), None, generate
                )

        validation = self._preview(snapshot, enhancements, enhancement)
        if settings.ask_post_phase_questions:
            while rounds < settings.max_iterations:
                self.cancel_token.raise_if_cancelled()
                questions = post_phase_questions(phase, enhancement, validation)
                if not questions:
                    break
                post_answers = self._ask_all(questions, settings, conversation_id, phase)
                selected_errors = _selected(post_answers.get(f"post-{phase}-errors"))
                selected_items = _selected(post_answers.get(f"post-{phase}-incomplete"))
                if not selected_errors and not selected_items:
                    break
                incomplete = incomplete_item_ids(enhancement)
                focus = [item for item in selected_items if item in incomplete]
                feedback = (
                    "Resolve these validation issues:\n" + "\n".join(selected_errors)
                    if selected_errors
                    else None
                )
                before = enhancement
                enhancement = self._refine_items(
                    phase, enhancement, snapshot, focus, feedback, generate
                )
                validation = self._preview(snapshot, enhancements, enhancement)
                if enhancement == before:
                    break

        decision = self._decide(phase, enhancement, validation, settings)
        edits = 0
        while decision.action == "edit" and rounds < settings.max_iterations:
            edits += 1
            logger.info("Phase %s: regenerating with reviewer feedback (round %d)", phase, edits)
            enhancement = self._refine_items(
                phase, enhancement, snapshot, None, decision.feedback or "", generate
            )
            validation = self._preview(snapshot, enhancements, enhancement)
            decision = self._decide(phase, enhancement, validation, settings)
        if decision.action == "reject":
            return PhaseResult(phase, "rejected", enhancement, validation, rounds)
        return PhaseResult(phase, "approved", enhancement, validation, rounds)

    def _refine_items(
        self,
        phase: PhaseKind,
        enhancement: Enhancement,
        document: PrdDocument,
        focus_ids: Sequence[str] | None,
        feedback: str | None,
        generate: Callable[[Sequence[str] | None, str | None], Enhancement],
    ) -> Enhancement:
        """Regenerate, merging focused items back; keep the previous result on failure."""
        try:
            refined = generate(focus_ids or None, feedback)
        except GenerationFailure as exc:
            logger.warning("Phase %s: refinement failed, keeping previous result: %s", phase, exc)
            return enhancement
        if focus_ids:
            return merge_refined(enhancement, refined, document)
        return refined

    def _preview(
        self, snapshot: PrdDocument, enhancements: EnhancementSet, enhancement: Enhancement
    ) -> ValidationResult:
        """Score the snapshot as it would read with enhancement applied."""
        preview = copy.deepcopy(snapshot)
        apply_enhancement(preview, enhancement)
        return self.scorer.validate(preview, with_enhancement(enhancements, enhancement))

    def _decide(
        self,
        phase: PhaseKind,
        enhancement: Enhancement,
        validation: ValidationResult,
        settings: RefinementOptions,
    ) -> RefinementDecision:
        """Auto-approve or ask the surface to approve, edit, or reject the phase."""
        self.cancel_token.raise_if_cancelled()
        if settings.auto_approve or self.surface is None:
            return RefinementDecision("approve")
        return self.surface.present_refinement(phase, enhancement, validation)

    def _ask_all(
        self,
        questions: Sequence[Question],
        settings: RefinementOptions,
        conversation_id: str | None,
        phase: PhaseKind,
    ) -> dict[str, AnswerValue]:
        """Answer questions through the confidence gate, prompting for the rest."""
        if not questions:
            return {}
        gate = filter_and_auto_apply(questions, self.gate_config, log_prefix=f"[refine:{phase}]")
        answers: dict[str, AnswerValue] = dict(gate.answers)
        for question in gate.auto_applied:
            value = gate.answers[question.question_id]
            self._record(conversation_id, question, Answer(question.question_id, value))
        for question in gate.needs_prompt:
            self.cancel_token.raise_if_cancelled()
            if settings.auto_approve or self.surface is None:
                value = fallback_answer(question)
            else:
                value = self.surface.ask(question)
            if value is None:
                skipped = Answer(question.question_id, "", skipped=True)
                self._record(conversation_id, question, skipped)
                continue
            answers[question.question_id] = value
            self._record(conversation_id, question, Answer(question.question_id, value))
        return answers

    # ------------------------------------------------------------------
    # Conversation bookkeeping
    # ------------------------------------------------------------------

    def _record(self, conversation_id: str | None, question: Question, answer: Answer) -> None:
        """Persist an answered question on the conversation, if one is tracked."""
        if self.store is not None and conversation_id is not None:
            self.store.record_question_answer(conversation_id, question, answer)

    def _set_state(self, conversation_id: str | None, state: str) -> None:
        """Move the tracked conversation to state."""
        if self.store is not None and conversation_id is not None:
            self.store.update_state(conversation_id, state)  # type: ignore[arg-type]

    def _set_iteration(self, conversation_id: str | None, iteration: int) -> None:
        """Record the refinement round on the tracked conversation."""
        if self.store is not None and conversation_id is not None:
            self.store.update_iteration(conversation_id, iteration)

    def _history(self, conversation_id: str | None) -> str | None:
        """Return the summarized conversation history for generation prompts."""
        if self.store is None or conversation_id is None:
            return None
        return self.store.summarize(conversation_id).summarized or None

    def _finish(
        self,
        document: PrdDocument,
        progress: _RunProgress,
        conversation_id: str | None,
        *,
        failure: str | None = None,
    ) -> RefinementResult:
        """Build the run result and its summary lines from the recorded progress."""
        final_validation = progress.validation or _failed_validation(failure or "no validation")
        lines = list(progress.summary_lines)
        if progress.gap_summary:
            lines.append(progress.gap_summary)
        fixes_applied = progress.fixes_applied
        lines.append(
            f"Fixes applied: {', '.join(fixes_applied) if fixes_applied else 'none'}"
        )
        if progress.exhausted and not final_validation.executable:
            lines.append(
                f"Convergence budget exhausted after {progress.fix_iterations} fix iteration(s)"
            )
        lines.append(
            f"Score: {final_validation.score}/100, "
            f"{len(final_validation.errors)} error(s), "
            f"{len(final_validation.warnings)} warning(s)"
        )
        lines.extend(f"  - {error.message}" for error in final_validation.errors)
        if failure is not None:
            lines.append(f"Refinement failed: {failure}")
        success = failure is None and final_validation.executable
        lines.append("Executable" if success else "Not executable")
        logger.info(
            "Refinement of %s finished: score=%d executable=%s",
            document.prd_id or "PRD",
            final_validation.score,
            success,
        )
        return RefinementResult(
            success=success,
            iterations=progress.iterations,
            document=document,
            final_validation=final_validation,
            phase_results=list(progress.phase_results),
            summary_lines=lines,
            fixes_applied=list(fixes_applied),
            enhancements=progress.enhancements,
            conversation_id=conversation_id,
            exhausted=progress.exhausted,
        )


def _failed_validation(reason: str) -> ValidationResult:
    """Stand-in validation for a run that failed before the document was scored."""
    error = RubricError("invalid-structure", "critical", f"Refinement failed: {reason}")
    return ValidationResult(
        executable=False,
        score=0,
        errors=(error,),
        warnings=(),
        summary="Refinement failed before validation",
    )


def _accepts(value: AnswerValue) -> bool:
    """Return whether an answer reads as a yes."""
    if isinstance(value, bool):
        return value
    if isinstance(value, list):
        return bool(value)
    return value.strip().lower().startswith("yes")


def _selected(value: AnswerValue | None) -> list[str]:
    """Normalize a single or multi-select answer to its non-empty choices."""
    if isinstance(value, list):
        return [item for item in value if item]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def validate_set(
    documents: Sequence[PrdDocument], scorer: ExecutabilityScorer | None = None
) -> IntegrationResult:
    """Score every document and check the set's cross-document dependencies."""
    rubric = scorer or ExecutabilityScorer()
    validations = {document.prd_id: rubric.validate(document) for document in documents}
    return CrossDocumentValidator().validate_set(documents, validations)
