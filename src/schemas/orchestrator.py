"""Data contracts for the transform-orchestration pipeline.

Every model here is a value object created fresh per user action or per
transform attempt. Models are frozen so that a locked context or an output
contract built for one attempt cannot be mutated by a later stage.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ActionType(str, Enum):
    """User intent recognized from free-text input."""

    # Generation
    CREATE_CONTENT = "CREATE_CONTENT"
    BRAINSTORM = "BRAINSTORM"
    OUTLINE = "OUTLINE"
    # Transform
    REWRITE = "REWRITE"
    OPTIMIZE = "OPTIMIZE"
    SHORTEN = "SHORTEN"
    EXPAND = "EXPAND"
    CHANGE_TONE = "CHANGE_TONE"
    TRANSLATE = "TRANSLATE"
    FORMAT_CONVERT = "FORMAT_CONVERT"
    # Evaluation
    EVALUATE = "EVALUATE"
    QA_FIX = "QA_FIX"
    # Meta
    SELECT_SOURCE = "SELECT_SOURCE"
    CLARIFY = "CLARIFY"


class ActionCategory(str, Enum):
    GENERATION = "generation"
    TRANSFORM = "transform"
    EVALUATION = "evaluation"
    META = "meta"


ACTION_CATEGORIES: dict[ActionType, ActionCategory] = {
    ActionType.CREATE_CONTENT: ActionCategory.GENERATION,
    ActionType.BRAINSTORM: ActionCategory.GENERATION,
    ActionType.OUTLINE: ActionCategory.GENERATION,
    ActionType.REWRITE: ActionCategory.TRANSFORM,
    ActionType.OPTIMIZE: ActionCategory.TRANSFORM,
    ActionType.SHORTEN: ActionCategory.TRANSFORM,
    ActionType.EXPAND: ActionCategory.TRANSFORM,
    ActionType.CHANGE_TONE: ActionCategory.TRANSFORM,
    ActionType.TRANSLATE: ActionCategory.TRANSFORM,
    ActionType.FORMAT_CONVERT: ActionCategory.TRANSFORM,
    ActionType.EVALUATE: ActionCategory.EVALUATION,
    ActionType.QA_FIX: ActionCategory.EVALUATION,
    ActionType.SELECT_SOURCE: ActionCategory.META,
    ActionType.CLARIFY: ActionCategory.META,
}

# Actions that cannot run without a source text
SOURCE_REQUIRED_ACTIONS: frozenset[ActionType] = frozenset(
    {
        ActionType.REWRITE,
        ActionType.OPTIMIZE,
        ActionType.SHORTEN,
        ActionType.EXPAND,
        ActionType.CHANGE_TONE,
        ActionType.TRANSLATE,
        ActionType.FORMAT_CONVERT,
        ActionType.EVALUATE,
        ActionType.QA_FIX,
    }
)


class TransformMode(str, Enum):
    """PURE applies only the named operation; DIRECTED adds a style/audience directive."""

    PURE_TRANSFORM = "PURE_TRANSFORM"
    DIRECTED_TRANSFORM = "DIRECTED_TRANSFORM"


class LockMode(str, Enum):
    """Strictness of the constraint block sent to the model."""

    NORMAL = "NORMAL"
    STRICT = "STRICT"
    RELAXED = "RELAXED"


class ResolutionStatus(str, Enum):
    EXPLICIT = "explicit"
    QUOTED = "quoted"
    IMPLICIT = "implicit"
    AMBIGUOUS = "ambiguous"
    NONE = "none"


class LockedEntityType(str, Enum):
    BRAND = "BRAND"
    PERSON = "PERSON"
    ORGANIZATION = "ORGANIZATION"
    NUMBER = "NUMBER"
    PERCENTAGE = "PERCENTAGE"
    DATE = "DATE"
    PRICE = "PRICE"
    LOCATION = "LOCATION"
    PRODUCT = "PRODUCT"
    KEYWORD = "KEYWORD"


class ContentFormat(str, Enum):
    PARAGRAPH = "paragraph"
    BULLET_LIST = "bullet_list"
    NUMBERED_LIST = "numbered_list"
    HEADING_SECTIONS = "heading_sections"
    MIXED = "mixed"


class StructureElement(str, Enum):
    HOOK = "HOOK"
    BODY = "BODY"
    CTA = "CTA"
    HEADING = "HEADING"
    LIST = "LIST"


class ViolationType(str, Enum):
    LENGTH = "LENGTH"
    STRUCTURE = "STRUCTURE"
    TONE = "TONE"
    TOPIC = "TOPIC"


class ViolationSeverity(str, Enum):
    HARD = "HARD"
    SOFT = "SOFT"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


# ============================================================================
# Conversation
# ============================================================================


class MessageMeta(BaseModel):
    """Per-message annotations supplied by the chat surface."""

    is_fallback: bool = Field(
        default=False, description="Message is a rule-based fallback or system warning"
    )
    template_id: str | None = Field(default=None, description="Template used")

    model_config = ConfigDict(frozen=True)


class ChatMessage(BaseModel):
    """One message of the client-side conversation."""

    id: str
    role: MessageRole
    content: str
    timestamp: datetime | None = None
    meta: MessageMeta | None = None

    model_config = ConfigDict(frozen=True)


class OutputReference(BaseModel):
    """Compact pointer to a previous assistant output."""

    message_id: str
    content_preview: str = Field(..., description="First 100 characters")
    timestamp: datetime | None = None
    template_id: str | None = None

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Classification / source resolution
# ============================================================================


class ActionClassification(BaseModel):
    type: ActionType
    category: ActionCategory
    confidence: float = Field(..., ge=0.0, le=1.0)
    signals: list[str] = Field(default_factory=list)
    requires_source: bool = False
    transform_mode: TransformMode | None = None
    directive_signals: list[str] | None = None

    model_config = ConfigDict(frozen=True)


class SourceResolution(BaseModel):
    status: ResolutionStatus
    source_message_id: str | None = None
    source_content: str | None = None
    candidates: list[OutputReference] | None = None
    confidence: float = Field(..., ge=0.0, le=1.0)

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Locked context
# ============================================================================


class LockedEntity(BaseModel):
    """An entity pulled out of the source text.

    Critical entities must reappear verbatim in any transform of the source.
    """

    type: LockedEntityType
    value: str
    critical: bool
    context: str = ""

    model_config = ConfigDict(frozen=True)


class LockedContext(BaseModel):
    entities: list[LockedEntity] = Field(default_factory=list)
    topic_summary: str = ""
    topic_keywords: list[str] = Field(default_factory=list)
    required_format: ContentFormat = ContentFormat.PARAGRAPH
    must_keep: list[str] = Field(default_factory=list)
    source_message_id: str
    extracted_at: datetime

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Output contract
# ============================================================================


class TransformOutputContract(BaseModel):
    """Hard requirements parsed from the user's instruction alone."""

    required_min_words: int | None = None
    required_max_words: int | None = None
    required_tone: str | None = None
    required_structure: list[StructureElement] = Field(default_factory=list)
    is_strict: bool = False
    derived_from: str = Field(default="", description="First 100 chars of instruction")

    model_config = ConfigDict(frozen=True)


class ContractViolation(BaseModel):
    type: ViolationType
    expected: str
    actual: str
    severity: ViolationSeverity

    model_config = ConfigDict(frozen=True)


class ContractValidation(BaseModel):
    passed: bool
    violations: list[ContractViolation] = Field(default_factory=list)
    word_count: int
    structure_detected: list[StructureElement] = Field(default_factory=list)
    can_retry: bool = False

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Topic lock validation
# ============================================================================


class EntityPresenceCheck(BaseModel):
    passed: bool
    score: float = Field(..., ge=0.0, le=1.0)
    details: str
    missing_entities: list[str] = Field(default_factory=list)
    present_entities: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class TopicDriftCheck(BaseModel):
    passed: bool
    score: float = Field(..., ge=0.0, le=1.0)
    details: str
    keyword_overlap: float = Field(..., ge=0.0, le=1.0)
    drift_keywords: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class FormatComplianceCheck(BaseModel):
    passed: bool
    score: float = Field(..., ge=0.0, le=1.0)
    details: str
    expected_format: ContentFormat | None = None
    detected_format: ContentFormat | None = None

    model_config = ConfigDict(frozen=True)


class TopicLockValidation(BaseModel):
    overall_passed: bool
    entity_presence: EntityPresenceCheck
    topic_drift: TopicDriftCheck
    format_compliance: FormatComplianceCheck

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Transform request / result (UI boundary)
# ============================================================================


class TransformRequest(BaseModel):
    action: ActionType
    source_message_id: str = ""
    source_content: str = ""
    user_instruction: str = ""
    template_system_prompt: str | None = None

    model_config = ConfigDict(extra="forbid", frozen=True)


class TransformResult(BaseModel):
    success: bool
    content: str | None = None
    validation: TopicLockValidation | None = None
    contract_validation: ContractValidation | None = None
    retry_used: bool = False
    requires_confirmation: bool = False
    error: str | None = None
    attempts: int = Field(default=0, description="Model calls made")
    used_fallback: bool = False
    transform_mode: TransformMode | None = None

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Persisted conversation state
# ============================================================================


class ConversationState(BaseModel):
    """State the orchestrator keeps between sends in one client session."""

    last_outputs: list[OutputReference] = Field(default_factory=list)
    active_source_id: str | None = None
    active_template_id: str | None = None
    locked_context: LockedContext | None = None
    version: int = 1
    updated_at: datetime | None = None
