import math
import re
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlparse

from intelliform.business.ai_service import render_transcript
from intelliform.model.errors import (
    AIUnavailableError, AlreadySubmittedError, MalformedAIOutputError, SequencerStateError, ValidationError
)
from intelliform.model.form_schemas import (
    ChatReply, ConditionalLogic, ConditionOperatorEnum, FieldTypeEnum, FormField, ValidationRuleTypeEnum
)
from intelliform.utils.logger_config import get_logger

logger = get_logger(__name__)

REQUIRED_MESSAGE = "This field is required."
NUMBER_MESSAGE = "Please enter a valid number."
NUMERIC_FIELD_TYPES = {FieldTypeEnum.NUMBER, FieldTypeEnum.RATING, FieldTypeEnum.SLIDER}
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# (answers, ai_conversations) -> submission id
Finalizer = Callable[[Dict[str, Any], List[Dict[str, Any]]], str]


class SequencerMode(str, Enum):
    STANDARD = "STANDARD"
    AI_CHAT = "AI_CHAT"


class SubmissionState(str, Enum):
    NOT_SUBMITTED = "NOT_SUBMITTED"
    SUBMITTED = "SUBMITTED"


def format_answer(value: Any) -> str:
    """Render an answer as display text"""
    if isinstance(value, (list, tuple)):
        return ", ".join(format_answer(item) for item in value)
    if isinstance(value, dict):
        return ", ".join(f"{key}={format_answer(item)}" for key, item in value.items())
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return "" if value is None else str(value)


def is_empty_answer(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def evaluate_condition(conditional: Optional[ConditionalLogic], answers: Dict[str, Any]) -> bool:
    """Whether a field's display condition holds for the answers gathered so far.

    A condition on a trigger field that has not been answered is false for
    every operator, including ``not_equals``.
    """
    if conditional is None:
        return True

    show_if = conditional.show_if
    if show_if.field_id not in answers or is_empty_answer(answers[show_if.field_id]):
        return False

    answer = answers[show_if.field_id]
    expected = format_answer(show_if.value).strip()

    if show_if.operator == ConditionOperatorEnum.EQUALS:
        return format_answer(answer).strip() == expected
    if show_if.operator == ConditionOperatorEnum.NOT_EQUALS:
        return format_answer(answer).strip() != expected
    if show_if.operator == ConditionOperatorEnum.CONTAINS:
        if isinstance(answer, (list, tuple)):
            return any(format_answer(item).strip() == expected for item in answer)
        return expected in format_answer(answer)
    return False


def get_next_field(answers: Dict[str, Any], fields: Sequence[FormField]) -> Optional[FormField]:
    """First field to present next, or None when the sequence is complete.

    The scan starts after the furthest field already answered, so a field
    passed over because its condition was false is never asked later, even
    if the condition becomes true afterwards.
    """
    start = 0
    for index, field in enumerate(fields):
        if field.id in answers:
            start = index + 1

    for field in fields[start:]:
        if field.id in answers:
            continue
        if evaluate_condition(field.conditional, answers):
            return field
    return None


def _coerce_number(value: Any) -> Any:
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return value
        if math.isfinite(number) and number.is_integer():
            return int(number)
        return number
    return value


def _rule_number(rule_value: Any) -> Optional[float]:
    try:
        return float(rule_value)
    except (TypeError, ValueError):
        return None


def _measure(value: Any) -> Optional[float]:
    """Number compared by min/max rules: the value itself, or a length"""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, (str, list, tuple)):
        return len(value)
    return None


def validate_answer(field: FormField, value: Any) -> Any:
    """Check a raw answer against the field and return the value to store.

    Runs the required check, then every validation rule in order; the first
    failure raises ``ValidationError`` with the rule's own message. Numeric
    fields accept numeric text and store it as a number; anything that is not
    a finite number is rejected before the rules run.
    """
    if is_empty_answer(value):
        if field.required:
            raise ValidationError(REQUIRED_MESSAGE, field_id=field.id)
        return value

    if field.type in NUMERIC_FIELD_TYPES:
        value = _coerce_number(value)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ValidationError(NUMBER_MESSAGE, field_id=field.id)

    for rule in field.validation or []:
        failed = False

        if rule.type in (ValidationRuleTypeEnum.MIN, ValidationRuleTypeEnum.MAX):
            limit = _rule_number(rule.value)
            measured = _measure(value)
            if limit is not None and measured is not None:
                if rule.type == ValidationRuleTypeEnum.MIN:
                    failed = measured < limit
                else:
                    failed = measured > limit

        elif rule.type == ValidationRuleTypeEnum.EMAIL:
            failed = isinstance(value, str) and not EMAIL_PATTERN.match(value.strip())

        elif rule.type == ValidationRuleTypeEnum.URL:
            if isinstance(value, str):
                parsed = urlparse(value.strip())
                failed = parsed.scheme not in ("http", "https") or not parsed.netloc

        elif rule.type == ValidationRuleTypeEnum.PATTERN:
            if isinstance(value, str) and rule.value is not None:
                try:
                    failed = re.search(str(rule.value), value) is None
                except re.error as e:
                    logger.warning(f"⚠️ Field {field.id} has an invalid pattern rule {rule.value!r}: {e}")

        if failed:
            raise ValidationError(rule.message, field_id=field.id)

    return value


def _entry(role: str, content: str) -> Dict[str, str]:
    return {"role": role, "content": content, "timestamp": datetime.utcnow().isoformat()}


class FieldSequencer:
    """Conversational walk through a form's fields, one field at a time.

    In STANDARD mode the respondent answers the active field directly. When
    the next field is an AI-enabled textarea the sequencer switches to AI_CHAT:
    messages go to the AI chat capability until it signals the end (or the
    turn cap is reached), the exchange is summarized, and the summary becomes
    the field's answer. A failing AI call rolls the log back to the point
    where the sub-conversation started and leaves the field unanswered.

    ``ai`` provides ``chat(message, history)`` and ``summarize(transcript)``;
    ``finalizer`` stores the submission and returns its id.
    """

    def __init__(self, fields: Sequence[FormField], ai, finalizer: Finalizer,
                 title: str = "", description: str = None,
                 max_chat_turns: int = 10, history_window: int = 10):
        self.fields = list(fields)
        self.ai = ai
        self.finalizer = finalizer
        self.title = title
        self.description = description
        self.max_chat_turns = max_chat_turns
        self.history_window = history_window

        self.answers: Dict[str, Any] = {}
        self.active_field_id: Optional[str] = None
        self.log: List[Dict[str, str]] = []
        self.mode = SequencerMode.STANDARD
        self.ai_chat_anchor: Optional[int] = None
        self.ai_turns = 0
        self.ai_conversations: List[Dict[str, Any]] = []
        self.submission_state = SubmissionState.NOT_SUBMITTED
        self.submission_id: Optional[str] = None

    @property
    def active_field(self) -> Optional[FormField]:
        if self.active_field_id is None:
            return None
        for field in self.fields:
            if field.id == self.active_field_id:
                return field
        return None

    @property
    def is_submitted(self) -> bool:
        return self.submission_state == SubmissionState.SUBMITTED

    def start(self) -> Optional[FormField]:
        """Greet the respondent and activate the first field"""
        if self.log:
            raise SequencerStateError("Conversation already started")

        greeting = f"Hi! Welcome to {self.title}."
        if self.description:
            greeting += f" {self.description.rstrip('.')}."
        self.log.append(_entry("system", f"{greeting} Let's get started!"))

        first = get_next_field(self.answers, self.fields)
        self._activate(first)
        return first

    def submit_answer(self, field_id: str, value: Any) -> Optional[FormField]:
        """Answer the active (non-AI) field; returns the next active field"""
        self._ensure_not_submitted()
        if self.mode == SequencerMode.AI_CHAT:
            raise SequencerStateError("An AI conversation is in progress for this field")

        field = self.active_field
        if field is None or field.id != field_id:
            raise SequencerStateError(f"Field {field_id} is not the active field")
        if field.is_ai_assisted:
            raise SequencerStateError(f"Field {field_id} is answered through the AI conversation")

        value = validate_answer(field, value)

        self.log.append(_entry("system", field.label))
        self.log.append(_entry("user", format_answer(value)))
        return self._record_answer(field, value)

    def send_message(self, message: str) -> ChatReply:
        """One respondent turn in the AI sub-conversation of the active field"""
        self._ensure_not_submitted()

        field = self.active_field
        if field is None or not field.is_ai_assisted:
            raise SequencerStateError("The active field does not take AI messages")
        if is_empty_answer(message):
            raise ValidationError(REQUIRED_MESSAGE, field_id=field.id)

        if self.mode == SequencerMode.STANDARD:
            # Re-entry after a failed attempt
            self._enter_ai_chat(field)

        history = self._chat_history()
        self.log.append(_entry("user", message))
        self.ai_turns += 1

        summary = None
        try:
            reply = self.ai.chat(message, history)
            self.log.append(_entry("assistant", reply.content))

            finished = reply.conversation_finished
            if not finished and self.ai_turns >= self.max_chat_turns:
                logger.info(f"⏱️ AI conversation for field {field.id} hit the {self.max_chat_turns}-turn cap")
                finished = True

            if finished:
                transcript = render_transcript(self.log[self.ai_chat_anchor:])
                summary = self.ai.summarize(transcript)
        except (AIUnavailableError, MalformedAIOutputError) as e:
            logger.warning(f"⚠️ AI conversation for field {field.id} failed, rolling back: {e.message}")
            self._rollback_ai_chat()
            raise

        if summary is not None:
            self._exit_ai_chat(field, summary)
            self._record_answer(field, summary)
            reply = ChatReply(content=reply.content, conversation_finished=True)
        return reply

    def finalize(self) -> str:
        """Hand the collected answers to the finalizer, exactly once"""
        self._ensure_not_submitted()
        if self.mode == SequencerMode.AI_CHAT:
            raise SequencerStateError("Cannot submit while an AI conversation is in progress")

        submission_id = self.finalizer(dict(self.answers), list(self.ai_conversations))

        self.submission_state = SubmissionState.SUBMITTED
        self.submission_id = submission_id
        self.active_field_id = None
        logger.info(f"✅ Conversation finalized as submission {submission_id}")
        return submission_id

    def _ensure_not_submitted(self):
        if self.is_submitted:
            raise AlreadySubmittedError("This conversation has already been submitted")

    def _activate(self, field: Optional[FormField]):
        self.active_field_id = field.id if field else None
        if field is not None and field.is_ai_assisted:
            self._enter_ai_chat(field)

    def _record_answer(self, field: FormField, value: Any) -> Optional[FormField]:
        self.answers[field.id] = value
        next_field = get_next_field(self.answers, self.fields)
        if next_field is None:
            self.active_field_id = None
            self.finalize()
        else:
            self._activate(next_field)
        return next_field

    def _enter_ai_chat(self, field: FormField):
        self.ai_chat_anchor = len(self.log)
        self.log.append(_entry("system", field.label))
        self.mode = SequencerMode.AI_CHAT
        self.ai_turns = 0

    def _chat_history(self) -> List[Dict[str, str]]:
        if self.history_window <= 0:
            return []
        turns = [
            {"role": entry["role"] if entry["role"] == "user" else "assistant", "content": entry["content"]}
            for entry in self.log[self.ai_chat_anchor + 1:]
        ]
        return turns[-self.history_window:]

    def _exit_ai_chat(self, field: FormField, summary: str):
        anchor = self.ai_chat_anchor
        messages = [
            {
                "role": "user" if entry["role"] == "user" else "assistant",
                "content": entry["content"],
                "timestamp": entry["timestamp"],
            }
            for entry in self.log[anchor:]
        ]
        self.ai_conversations.append({"field_id": field.id, "messages": messages})

        self.log = self.log[:anchor + 1] + [_entry("user", summary)]
        self.mode = SequencerMode.STANDARD
        self.ai_chat_anchor = None
        self.ai_turns = 0

    def _rollback_ai_chat(self):
        self.log = self.log[:self.ai_chat_anchor]
        self.mode = SequencerMode.STANDARD
        self.ai_chat_anchor = None
        self.ai_turns = 0

    def to_state(self) -> Dict[str, Any]:
        """JSON-safe snapshot of everything but the form definition"""
        return {
            "answers": dict(self.answers),
            "active_field_id": self.active_field_id,
            "log": [dict(entry) for entry in self.log],
            "mode": self.mode.value,
            "ai_chat_anchor": self.ai_chat_anchor,
            "ai_turns": self.ai_turns,
            "ai_conversations": list(self.ai_conversations),
            "submission_state": self.submission_state.value,
            "submission_id": self.submission_id,
        }

    @classmethod
    def from_state(cls, state: Dict[str, Any], fields: Sequence[FormField], ai, finalizer: Finalizer,
                   **kwargs) -> "FieldSequencer":
        sequencer = cls(fields, ai, finalizer, **kwargs)
        sequencer.answers = dict(state.get("answers") or {})
        sequencer.active_field_id = state.get("active_field_id")
        sequencer.log = [dict(entry) for entry in state.get("log") or []]
        sequencer.mode = SequencerMode(state.get("mode", SequencerMode.STANDARD.value))
        sequencer.ai_chat_anchor = state.get("ai_chat_anchor")
        sequencer.ai_turns = state.get("ai_turns", 0)
        sequencer.ai_conversations = list(state.get("ai_conversations") or [])
        sequencer.submission_state = SubmissionState(
            state.get("submission_state", SubmissionState.NOT_SUBMITTED.value)
        )
        sequencer.submission_id = state.get("submission_id")
        return sequencer
