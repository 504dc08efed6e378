from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from intelliform.model.form_entities import ExtractionStatus, SessionStatus


# Enums
class FieldTypeEnum(str, Enum):
    """Form field type enumeration"""
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    NUMBER = "number"
    PASSWORD = "password"
    URL = "url"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    SELECT = "select"
    DATE = "date"
    FILE = "file"
    RATING = "rating"
    SLIDER = "slider"
    MATRIX = "matrix"
    AI_CONVERSATION = "ai_conversation"


class ValidationRuleTypeEnum(str, Enum):
    MIN = "min"
    MAX = "max"
    EMAIL = "email"
    URL = "url"
    PATTERN = "pattern"


class ConditionOperatorEnum(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"


# Form definition models. These travel as JSON between the builder UI and the
# store, so they accept the builder's camelCase keys as well as snake_case.
class FormDefinitionModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ValidationRule(FormDefinitionModel):
    type: ValidationRuleTypeEnum
    value: Optional[Union[int, float, str]] = None
    message: str


class ShowIf(FormDefinitionModel):
    field_id: str
    operator: ConditionOperatorEnum = ConditionOperatorEnum.EQUALS
    value: Any = None


class ConditionalLogic(FormDefinitionModel):
    show_if: ShowIf


class FormField(FormDefinitionModel):
    id: str = Field(..., min_length=1)
    type: FieldTypeEnum
    label: str
    placeholder: Optional[str] = None
    required: bool = False
    options: Optional[List[str]] = None
    validation: Optional[List[ValidationRule]] = None
    ai_enabled: bool = False
    conditional: Optional[ConditionalLogic] = None
    matrix_rows: Optional[List[str]] = None
    matrix_columns: Optional[List[str]] = None

    @property
    def is_ai_assisted(self) -> bool:
        """AI sub-conversation fields are AI-enabled textareas"""
        return self.type == FieldTypeEnum.TEXTAREA and self.ai_enabled


class FormSettings(FormDefinitionModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    theme: Optional[Dict[str, Any]] = None
    stepper_mode: Optional[bool] = None
    allow_back: Optional[bool] = None
    show_progress: Optional[bool] = None


# Forms
class FormCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200, description="Form title")
    description: Optional[str] = Field(None, description="Form description")
    fields: List[FormField] = Field(default_factory=list, description="Ordered fields")
    settings: FormSettings = Field(default_factory=FormSettings)
    is_published: bool = False


class FormUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    fields: Optional[List[FormField]] = None
    settings: Optional[FormSettings] = None
    is_published: Optional[bool] = None


class FormDetail(BaseModel):
    form_id: str
    user_id: str
    title: str
    description: Optional[str] = None
    fields: List[FormField] = Field(default_factory=list)
    settings: FormSettings = Field(default_factory=FormSettings)
    is_published: bool
    created_at: datetime
    updated_at: Optional[datetime] = None


class FormSummary(BaseModel):
    form_id: str
    title: str
    description: Optional[str] = None
    is_published: bool
    field_count: int
    submission_count: int
    ai_conversation_count: int
    created_at: datetime
    updated_at: Optional[datetime] = None


class PublicForm(BaseModel):
    """A published form as respondents see it (no owner data)"""
    form_id: str
    title: str
    description: Optional[str] = None
    fields: List[FormField]
    settings: FormSettings


# Submissions and problems
class ProblemModel(BaseModel):
    problem_id: str
    problem: str
    solutions: List[str] = Field(default_factory=list)
    resolved: bool = False
    resolution_comment: Optional[str] = None
    resolved_at: Optional[datetime] = None


class AIMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: str


class AIConversationCreate(BaseModel):
    submission_id: str
    field_id: str = Field(..., min_length=1)
    messages: List[AIMessage] = Field(..., min_length=1)


class AIConversationDetail(BaseModel):
    conversation_id: str
    submission_id: str
    field_id: str
    messages: List[AIMessage]
    created_at: datetime


class SubmissionCreate(BaseModel):
    data: Dict[str, Any] = Field(..., description="fieldId -> answer")
    time_taken: Optional[int] = Field(None, ge=0, description="Seconds")


class SubmissionCreated(BaseModel):
    submission_id: str


class SubmissionDetail(BaseModel):
    submission_id: str
    form_id: str
    data: Dict[str, Any]
    completed_at: datetime
    time_taken: Optional[int] = None
    ip_address: Optional[str] = None
    extraction_status: ExtractionStatus
    extraction_error: Optional[str] = None
    problems: List[ProblemModel] = Field(default_factory=list)
    ai_conversations: List[AIConversationDetail] = Field(default_factory=list)


class RecentSubmission(BaseModel):
    submission_id: str
    form_id: str
    form_title: str
    completed_at: datetime
    time_taken: Optional[int] = None
    problem_count: int
    unresolved_problem_count: int


class RecentSubmissionList(BaseModel):
    total: int
    page: int
    page_size: int
    items: List[RecentSubmission]


class RecentResponse(BaseModel):
    submission_id: str
    completed_at: datetime
    time_taken: Optional[int] = None
    has_ai_interactions: bool


class FormAnalytics(BaseModel):
    form_id: str
    total_responses: int
    completion_rate: int
    ai_interactions: int
    average_time_seconds: int
    open_problems: int
    recent_responses: List[RecentResponse]


class ProblemResolutionUpdate(BaseModel):
    resolved: bool
    resolution_comment: Optional[str] = None


# AI output structures, parsed strictly
class ExtractedProblem(BaseModel):
    problem: str = Field(..., min_length=1, description="One specific issue, in a short phrase")
    solutions: List[str] = Field(default_factory=list, description="Actionable solutions for this issue")


class ProblemExtractionResult(BaseModel):
    problems: List[ExtractedProblem] = Field(default_factory=list,
                                             description="Every distinct issue reported; empty when none")


class RankedProblemGroup(BaseModel):
    problem: str = Field(..., description="Canonical name of the issue")
    count: int = Field(..., ge=0, description="Number of distinct submissions reporting it")
    ids: List[str] = Field(..., description="Submission ids reporting it")
    solutions: List[str] = Field(default_factory=list, description="1 to 3 actionable solutions")


class ProblemRankingResult(BaseModel):
    groups: List[RankedProblemGroup] = Field(default_factory=list)


# Problem groups
class ProblemGroupForm(BaseModel):
    form_id: str
    submission_id: str


class ProblemGroup(BaseModel):
    problem: str
    count: int
    ids: List[str]
    solutions: List[str] = Field(default_factory=list)
    form_names: List[str] = Field(default_factory=list)
    forms: List[ProblemGroupForm] = Field(default_factory=list)


class ResolveGroupRequest(BaseModel):
    problem: str = Field(..., min_length=1, description="Canonical problem name")
    submission_ids: List[str] = Field(..., min_length=1)
    resolution_comment: str = ""


class ResolveGroupResult(BaseModel):
    problem: str
    requested: int
    updated_count: int


# AI chat
class ChatTurn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    history: List[ChatTurn] = Field(default_factory=list)


class ChatReply(BaseModel):
    content: str
    conversation_finished: bool = False


class SummarizeRequest(BaseModel):
    conversation: str = Field(..., min_length=1)


class SummarizeResponse(BaseModel):
    summary: str


# Conversational sessions
class ConversationEntryModel(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: str


class ConversationView(BaseModel):
    session_id: str
    form_id: str
    status: SessionStatus
    mode: str
    active_field: Optional[FormField] = None
    log: List[ConversationEntryModel] = Field(default_factory=list)
    answers: Dict[str, Any] = Field(default_factory=dict)
    submission_id: Optional[str] = None
    ai_turns: int = 0


class AnswerRequest(BaseModel):
    field_id: str
    value: Any = None


class MessageRequest(BaseModel):
    message: str = Field(..., min_length=1)


def parse_form_fields(raw_fields: Optional[List[Dict[str, Any]]]) -> List[FormField]:
    """Stored field JSON to FormField models, in declared order"""
    return [FormField.model_validate(raw) for raw in raw_fields or []]


def dump_form_fields(fields: List[FormField]) -> List[Dict[str, Any]]:
    return [field.model_dump(mode="json", by_alias=True, exclude_none=True) for field in fields]
