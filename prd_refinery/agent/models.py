"""Data models for PRD refinement, validation, and conversations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

BuildMode = Literal["convert", "enhance", "create"]
ConversationState = Literal["questioning", "refining", "complete", "paused", "error"]
QuestionType = Literal["multiple-choice", "open-ended", "multi-select", "confirm"]
Severity = Literal["critical", "high", "medium", "low"]
PhaseKind = Literal["schema", "test", "feature"]
AnswerValue = str | list[str] | bool

BUILD_MODES: frozenset[str] = frozenset({"convert", "enhance", "create"})
CONVERSATION_STATES: frozenset[str] = frozenset(
    {"questioning", "refining", "complete", "paused", "error"}
)
QUESTION_TYPES: frozenset[str] = frozenset(
    {"multiple-choice", "open-ended", "multi-select", "confirm"}
)
PHASE_KINDS: tuple[PhaseKind, ...] = ("schema", "test", "feature")
DEFAULT_VERSION = "1.0.0"


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(tz=UTC).isoformat()


def _optional_string(value: Any) -> str:
    """Coerce an optional scalar into a stripped string."""
    if value is None:
        return ""
    return str(value).strip()


def _string_list(value: Any) -> list[str]:
    """Coerce an optional list into a list of strings."""
    if value is None:
        return []
    if not isinstance(value, list):
        return [str(value)]
    return [str(item) for item in value if item is not None]


def _first(data: dict[str, Any], *keys: str) -> Any:
    """Return the first present key value among camelCase/snake_case aliases."""
    for key in keys:
        if key in data:
            return data[key]
    return None


def _require_dict(value: Any, field_name: str) -> dict[str, Any]:
    """Validate and return a dictionary object."""
    if not isinstance(value, dict):
        raise ValueError(f"Expected '{field_name}' to be an object.")
    return value


def _clamp_unit(value: Any) -> float:
    """Clamp a numeric confidence into [0, 1]; malformed values become 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return max(0.0, min(1.0, number))


# ---------------------------------------------------------------------------
# Questions and answers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Question:
    """A clarifying question, optionally carrying an AI-inferred answer."""

    question_id: str
    text: str
    question_type: QuestionType = "open-ended"
    options: tuple[str, ...] = ()
    required: bool = False
    category: str | None = None
    inferred_answer: str | None = None
    inference_source: str | None = None
    confidence: float = 0.0
    default: AnswerValue | None = None
    context: str | None = None
    phase: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return JSON-serializable payload."""
        return {
            "id": self.question_id,
            "text": self.text,
            "type": self.question_type,
            "options": list(self.options),
            "required": self.required,
            "category": self.category,
            "inferred_answer": self.inferred_answer,
            "inference_source": self.inference_source,
            "confidence": self.confidence,
            "default": self.default,
            "context": self.context,
            "phase": self.phase,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Question:
        """Create a question from persisted JSON."""
        question_type = str(data.get("type", "open-ended"))
        if question_type not in QUESTION_TYPES:
            question_type = "open-ended"
        return cls(
            question_id=_optional_string(data.get("id")),
            text=_optional_string(data.get("text")),
            question_type=question_type,  # type: ignore[arg-type]
            options=tuple(_string_list(data.get("options"))),
            required=bool(data.get("required", False)),
            category=data.get("category"),
            inferred_answer=data.get("inferred_answer"),
            inference_source=data.get("inference_source"),
            confidence=_clamp_unit(data.get("confidence", 0.0)),
            default=data.get("default"),
            context=data.get("context"),
            phase=data.get("phase"),
        )


@dataclass(frozen=True)
class Answer:
    """An answer recorded for a question."""

    question_id: str
    value: AnswerValue
    timestamp: str = field(default_factory=utc_now)
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Return JSON-serializable payload."""
        return {
            "question_id": self.question_id,
            "value": self.value,
            "timestamp": self.timestamp,
            "skipped": self.skipped,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Answer:
        """Create an answer from persisted JSON."""
        value = data.get("value", "")
        if isinstance(value, list):
            value = [str(item) for item in value]
        elif not isinstance(value, bool):
            value = str(value)
        return cls(
            question_id=_optional_string(data.get("question_id")),
            value=value,
            timestamp=_optional_string(data.get("timestamp")) or utc_now(),
            skipped=bool(data.get("skipped", False)),
        )

    def as_text(self) -> str:
        """Render the answer value as plain text."""
        if isinstance(self.value, bool):
            return "yes" if self.value else "no"
        if isinstance(self.value, list):
            return ", ".join(self.value)
        return self.value


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


@dataclass
class ConversationMetadata:
    """Lifecycle metadata for a build conversation."""

    conversation_id: str
    mode: BuildMode
    created_at: str
    updated_at: str
    state: ConversationState = "questioning"
    total_questions: int = 0
    total_answers: int = 0
    current_iteration: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return JSON-serializable payload."""
        return {
            "id": self.conversation_id,
            "mode": self.mode,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "state": self.state,
            "total_questions": self.total_questions,
            "total_answers": self.total_answers,
            "current_iteration": self.current_iteration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationMetadata:
        """Create metadata from persisted JSON."""
        return cls(
            conversation_id=_optional_string(data.get("id")),
            mode=data.get("mode", "convert"),
            created_at=_optional_string(data.get("created_at")),
            updated_at=_optional_string(data.get("updated_at")),
            state=data.get("state", "questioning"),
            total_questions=int(data.get("total_questions", 0)),
            total_answers=int(data.get("total_answers", 0)),
            current_iteration=int(data.get("current_iteration", 0)),
        )


@dataclass
class ConversationContext:
    """Accumulated context of a build conversation."""

    mode: BuildMode
    initial_prompt: str | None = None
    collected_answers: dict[str, Answer] = field(default_factory=dict)
    generated_questions: list[Question] = field(default_factory=list)
    current_iteration: int = 0
    feature_types: list[str] = field(default_factory=list)
    framework: str | None = None
    codebase_context: str | None = None

    def answer_values(self) -> dict[str, AnswerValue]:
        """Return answers keyed by question id, skipping skipped answers."""
        return {
            question_id: answer.value
            for question_id, answer in self.collected_answers.items()
            if not answer.skipped
        }

    def to_dict(self) -> dict[str, Any]:
        """Return JSON-serializable payload."""
        return {
            "mode": self.mode,
            "initial_prompt": self.initial_prompt,
            "collected_answers": {
                key: answer.to_dict() for key, answer in self.collected_answers.items()
            },
            "generated_questions": [item.to_dict() for item in self.generated_questions],
            "current_iteration": self.current_iteration,
            "feature_types": self.feature_types,
            "framework": self.framework,
            "codebase_context": self.codebase_context,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationContext:
        """Create context from persisted JSON."""
        answers_raw = data.get("collected_answers") or {}
        return cls(
            mode=data.get("mode", "convert"),
            initial_prompt=data.get("initial_prompt"),
            collected_answers={
                str(key): Answer.from_dict(value)
                for key, value in _require_dict(answers_raw, "collected_answers").items()
            },
            generated_questions=[
                Question.from_dict(item) for item in data.get("generated_questions") or []
            ],
            current_iteration=int(data.get("current_iteration", 0)),
            feature_types=_string_list(data.get("feature_types")),
            framework=data.get("framework"),
            codebase_context=data.get("codebase_context"),
        )


@dataclass(frozen=True)
class ConversationItem:
    """A question with its optional answer, stamped with the iteration."""

    item_id: str
    question: Question
    answer: Answer | None
    timestamp: str
    iteration: int

    def to_dict(self) -> dict[str, Any]:
        """Return JSON-serializable payload."""
        return {
            "id": self.item_id,
            "question": self.question.to_dict(),
            "answer": self.answer.to_dict() if self.answer else None,
            "timestamp": self.timestamp,
            "iteration": self.iteration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationItem:
        """Create an item from persisted JSON."""
        answer_raw = data.get("answer")
        return cls(
            item_id=_optional_string(data.get("id")),
            question=Question.from_dict(_require_dict(data.get("question"), "question")),
            answer=Answer.from_dict(answer_raw) if isinstance(answer_raw, dict) else None,
            timestamp=_optional_string(data.get("timestamp")),
            iteration=int(data.get("iteration", 0)),
        )


@dataclass
class Conversation:
    """Complete persisted conversation."""

    metadata: ConversationMetadata
    context: ConversationContext
    items: list[ConversationItem] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return JSON-serializable payload."""
        return {
            "metadata": self.metadata.to_dict(),
            "context": self.context.to_dict(),
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversation:
        """Create a conversation from persisted JSON."""
        return cls(
            metadata=ConversationMetadata.from_dict(
                _require_dict(data.get("metadata"), "metadata")
            ),
            context=ConversationContext.from_dict(_require_dict(data.get("context"), "context")),
            items=[ConversationItem.from_dict(item) for item in data.get("items") or []],
        )


@dataclass(frozen=True)
class SummarizedContext:
    """Recent items verbatim plus a digest of older items."""

    recent: list[ConversationItem]
    summarized: str
    summary_timestamp: str


# ---------------------------------------------------------------------------
# PRD documents
# ---------------------------------------------------------------------------


@dataclass
class Task:
    """A unit of work inside a phase."""

    task_id: str
    title: str = ""
    description: str = ""
    dependencies: list[str] = field(default_factory=list)
    test_strategy: str = ""
    validation_checklist: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return front-matter shaped payload."""
        payload: dict[str, Any] = {
            "id": self.task_id,
            "title": self.title,
            "description": self.description,
        }
        if self.dependencies:
            payload["dependencies"] = list(self.dependencies)
        if self.test_strategy:
            payload["testStrategy"] = self.test_strategy
        if self.validation_checklist:
            payload["validationChecklist"] = list(self.validation_checklist)
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any], fallback_id: str) -> Task:
        """Create a task from parsed front matter."""
        return cls(
            task_id=_optional_string(data.get("id")) or fallback_id,
            title=_optional_string(data.get("title")),
            description=_optional_string(data.get("description")),
            dependencies=_string_list(data.get("dependencies")),
            test_strategy=_optional_string(_first(data, "testStrategy", "test_strategy")),
            validation_checklist=_string_list(
                _first(data, "validationChecklist", "validation_checklist")
            ),
        )


@dataclass
class Phase:
    """An ordered group of tasks."""

    phase_id: int
    name: str = ""
    description: str = ""
    depends_on: list[int] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return front-matter shaped payload."""
        payload: dict[str, Any] = {"id": self.phase_id, "name": self.name}
        if self.description:
            payload["description"] = self.description
        if self.depends_on:
            payload["dependsOn"] = list(self.depends_on)
        payload["tasks"] = [task.to_dict() for task in self.tasks]
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any], position: int) -> Phase:
        """Create a phase from parsed front matter."""
        try:
            phase_id = int(data.get("id", position))
        except (TypeError, ValueError):
            phase_id = position
        depends_on: list[int] = []
        for item in _first(data, "dependsOn", "depends_on") or []:
            try:
                depends_on.append(int(item))
            except (TypeError, ValueError):
                continue
        tasks_raw = data.get("tasks") or []
        tasks = [
            Task.from_dict(item, fallback_id=f"{phase_id}.{index + 1}")
            for index, item in enumerate(tasks_raw)
            if isinstance(item, dict)
        ]
        return cls(
            phase_id=phase_id,
            name=_optional_string(data.get("name")),
            description=_optional_string(data.get("description")),
            depends_on=depends_on,
            tasks=tasks,
        )


@dataclass
class TestingConfig:
    """Testing descriptor of a PRD."""

    __test__ = False

    directory: str = ""
    framework: str = ""
    runner: str = ""
    command: str = ""

    def to_dict(self) -> dict[str, str]:
        """Return front-matter shaped payload."""
        return {
            key: value
            for key, value in (
                ("directory", self.directory),
                ("framework", self.framework),
                ("runner", self.runner),
                ("command", self.command),
            )
            if value
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestingConfig:
        """Create testing descriptor from parsed front matter."""
        return cls(
            directory=_optional_string(data.get("directory")),
            framework=_optional_string(data.get("framework")),
            runner=_optional_string(data.get("runner")),
            command=_optional_string(data.get("command")),
        )


@dataclass
class DependencyDescriptor:
    """External, cross-PRD, and code dependencies declared by a PRD."""

    prds: list[str] = field(default_factory=list)
    external_modules: list[str] = field(default_factory=list)
    code_requirements: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        """Return front-matter shaped payload."""
        return {
            "prds": list(self.prds),
            "externalModules": list(self.external_modules),
            "codeRequirements": list(self.code_requirements),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DependencyDescriptor:
        """Create dependency descriptor from parsed front matter."""
        prds: list[str] = []
        for item in data.get("prds") or []:
            if isinstance(item, dict):
                prds.append(_optional_string(item.get("prd") or item.get("id")))
            else:
                prds.append(_optional_string(item))
        return cls(
            prds=prds,
            external_modules=_string_list(_first(data, "externalModules", "external_modules")),
            code_requirements=_string_list(
                _first(data, "codeRequirements", "code_requirements")
            ),
        )


@dataclass
class PrdDocument:
    """Structured PRD: phases of tasks plus optional descriptors."""

    prd_id: str
    title: str = ""
    version: str = DEFAULT_VERSION
    status: str = "ready"
    description: str = ""
    phases: list[Phase] = field(default_factory=list)
    id_pattern: str | None = None
    testing: TestingConfig | None = None
    dependencies: DependencyDescriptor | None = None
    config_overlay: dict[str, Any] | None = None
    depends_on: list[str] = field(default_factory=list)
    schemas: list[dict[str, Any]] = field(default_factory=list)
    body: str = ""

    def all_tasks(self) -> list[Task]:
        """Return tasks across all phases in document order."""
        return [task for phase in self.phases for task in phase.tasks]

    def declared_dependencies(self) -> list[str]:
        """Return ids of PRDs this document depends on."""
        declared = list(self.depends_on)
        if self.dependencies is not None:
            declared.extend(self.dependencies.prds)
        seen: set[str] = set()
        ordered: list[str] = []
        for item in declared:
            cleaned = item.strip()
            if not cleaned or cleaned in seen:
                continue
            seen.add(cleaned)
            ordered.append(cleaned)
        return ordered

    def to_dict(self) -> dict[str, Any]:
        """Serialize into the front-matter structure accepted by ``from_dict``."""
        requirements: dict[str, Any] = {"phases": [phase.to_dict() for phase in self.phases]}
        if self.id_pattern:
            requirements["idPattern"] = self.id_pattern
        payload: dict[str, Any] = {
            "prd": {
                "id": self.prd_id,
                "title": self.title,
                "version": self.version,
                "status": self.status,
            },
            "requirements": requirements,
        }
        if self.description:
            payload["prd"]["description"] = self.description
        if self.testing is not None:
            payload["testing"] = self.testing.to_dict()
        if self.dependencies is not None:
            payload["dependencies"] = self.dependencies.to_dict()
        if self.config_overlay is not None:
            payload["config"] = self.config_overlay
        if self.depends_on:
            payload["relationships"] = {"dependsOn": [{"prd": item} for item in self.depends_on]}
        if self.schemas:
            payload["schemas"] = self.schemas
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, body: str = "") -> PrdDocument:
        """Create a document from parsed front matter without enforcing the rubric."""
        prd_raw = data.get("prd") if isinstance(data.get("prd"), dict) else {}
        requirements = data.get("requirements")
        if not isinstance(requirements, dict):
            requirements = {}
        phases_raw = requirements.get("phases", data.get("phases")) or []
        phases = [
            Phase.from_dict(item, position=index + 1)
            for index, item in enumerate(phases_raw)
            if isinstance(item, dict)
        ]
        testing_raw = data.get("testing")
        dependencies_raw = data.get("dependencies")
        overlay_raw = data.get("config", data.get("configOverlay"))
        relationships = data.get("relationships")
        if not isinstance(relationships, dict):
            relationships = {}
        depends_on: list[str] = []
        for item in _first(relationships, "dependsOn", "depends_on") or []:
            if isinstance(item, dict):
                depends_on.append(_optional_string(item.get("prd") or item.get("id")))
            else:
                depends_on.append(_optional_string(item))
        version = prd_raw.get("version", data.get("version"))
        return cls(
            prd_id=_optional_string(prd_raw.get("id", data.get("id"))),
            title=_optional_string(prd_raw.get("title", data.get("title"))),
            version=DEFAULT_VERSION if version is None else _optional_string(version),
            status=_optional_string(prd_raw.get("status")) or "ready",
            description=_optional_string(prd_raw.get("description", data.get("description"))),
            phases=phases,
            id_pattern=_first(requirements, "idPattern", "id_pattern"),
            testing=TestingConfig.from_dict(testing_raw) if isinstance(testing_raw, dict) else None,
            dependencies=(
                DependencyDescriptor.from_dict(dependencies_raw)
                if isinstance(dependencies_raw, dict)
                else None
            ),
            config_overlay=overlay_raw if overlay_raw is not None else None,
            depends_on=depends_on,
            schemas=[item for item in data.get("schemas") or [] if isinstance(item, dict)],
            body=body,
        )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

ErrorType = Literal[
    "missing-schema",
    "missing-test",
    "missing-config",
    "invalid-config",
    "incomplete-phase",
    "invalid-structure",
]
WarningType = Literal["deprecated-pattern", "optimization-opportunity", "missing-optional"]


@dataclass(frozen=True)
class RubricError:
    """A rubric violation that blocks executability."""

    error_type: ErrorType
    severity: Severity
    message: str
    phase: int | None = None
    task: str | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return JSON-serializable payload."""
        return {
            "type": self.error_type,
            "severity": self.severity,
            "message": self.message,
            "phase": self.phase,
            "task": self.task,
            "suggestion": self.suggestion,
        }


@dataclass(frozen=True)
class RubricWarning:
    """A non-blocking rubric observation."""

    warning_type: WarningType
    message: str
    phase: int | None = None
    task: str | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return JSON-serializable payload."""
        return {
            "type": self.warning_type,
            "message": self.message,
            "phase": self.phase,
            "task": self.task,
            "suggestion": self.suggestion,
        }


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of scoring a document against the executability rubric."""

    executable: bool
    score: int
    errors: tuple[RubricError, ...]
    warnings: tuple[RubricWarning, ...]
    summary: str

    def to_dict(self) -> dict[str, Any]:
        """Return JSON-serializable payload."""
        return {
            "executable": self.executable,
            "score": self.score,
            "errors": [item.to_dict() for item in self.errors],
            "warnings": [item.to_dict() for item in self.warnings],
            "summary": self.summary,
        }


GapType = Literal[
    "missing-schema",
    "missing-test",
    "missing-config",
    "incomplete-phase",
    "incomplete-task",
    "missing-dependency",
    "invalid-structure",
]


@dataclass(frozen=True)
class Gap:
    """A detected deficiency with its remediation."""

    gap_type: GapType
    severity: Severity
    description: str
    recommendation: str
    affected_phase: int | None = None
    affected_task: str | None = None


# ---------------------------------------------------------------------------
# Enhancements (tagged union keyed by ``kind``)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SchemaDefinition:
    """A schema proposed for the PRD."""

    schema_id: str
    schema_type: str
    path: str
    content: str
    description: str
    related_schemas: tuple[str, ...] = ()
    confidence: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        """Return JSON-serializable payload."""
        return {
            "id": self.schema_id,
            "type": self.schema_type,
            "path": self.path,
            "content": self.content,
            "description": self.description,
            "relatedSchemas": list(self.related_schemas),
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class SchemaEnhancement:
    """Result of the schema phase."""

    schemas: tuple[SchemaDefinition, ...]
    summary: str
    confidence: float
    kind: Literal["schema"] = "schema"

    def item_ids(self) -> list[str]:
        """Return ids of the generated items."""
        return [item.schema_id for item in self.schemas]


@dataclass(frozen=True)
class TestCase:
    """A single test case in a test plan."""

    __test__ = False

    name: str
    description: str
    steps: tuple[str, ...] = ()
    expected_result: str = ""


@dataclass(frozen=True)
class TestPlan:
    """Test specification for a task."""

    __test__ = False

    plan_id: str
    task_id: str
    phase_id: int
    test_type: str
    description: str
    test_cases: tuple[TestCase, ...] = ()
    priority: Severity = "medium"
    dependencies: tuple[str, ...] = ()


@dataclass(frozen=True)
class TestCoverage:
    """Task coverage achieved by a set of test plans."""

    __test__ = False

    total_tasks: int
    tasks_with_tests: int
    coverage_percentage: int


@dataclass(frozen=True)
class TestEnhancement:
    """Result of the test-planning phase."""

    __test__ = False

    test_plans: tuple[TestPlan, ...]
    summary: str
    coverage: TestCoverage
    kind: Literal["test"] = "test"

    def item_ids(self) -> list[str]:
        """Return ids of the generated items."""
        return [item.task_id for item in self.test_plans]


@dataclass(frozen=True)
class FeatureConfig:
    """A feature-configuration overlay suggestion."""

    feature_type: str
    description: str
    config: dict[str, Any]
    priority: str = "medium"
    confidence: float = 1.0


@dataclass(frozen=True)
class FeatureEnhancement:
    """Result of the feature-configuration phase."""

    enhancements: tuple[FeatureConfig, ...]
    summary: str
    kind: Literal["feature"] = "feature"

    def item_ids(self) -> list[str]:
        """Return ids of the generated items."""
        return [item.feature_type for item in self.enhancements]


Enhancement = SchemaEnhancement | TestEnhancement | FeatureEnhancement


@dataclass(frozen=True)
class EnhancementSet:
    """Enhancements collected across phases, at most one per kind."""

    schema: SchemaEnhancement | None = None
    test: TestEnhancement | None = None
    feature: FeatureEnhancement | None = None

    def is_empty(self) -> bool:
        """Return whether no enhancement is present."""
        return self.schema is None and self.test is None and self.feature is None
