"""
Field Sequencer tests

Answer validation, conditional sequencing, the AI sub-conversation state
machine and single-fire finalization.
"""
import pytest

from intelliform.business.field_sequencer import (
    FieldSequencer, SequencerMode, SubmissionState, evaluate_condition, get_next_field, validate_answer
)
from intelliform.model.errors import (
    AIUnavailableError, AlreadySubmittedError, MalformedAIOutputError, SequencerStateError, ValidationError
)
from intelliform.model.form_schemas import ConditionalLogic, FormField


def fields_from(*raw_fields):
    return [FormField.model_validate(raw) for raw in raw_fields]


class RecordingFinalizer:
    def __init__(self, submission_id="sub-1"):
        self.submission_id = submission_id
        self.calls = []

    def __call__(self, answers, ai_conversations):
        self.calls.append((answers, ai_conversations))
        return self.submission_id


NAME_AND_EMAIL = fields_from(
    {"id": "name", "type": "text", "label": "What is your name?", "required": True},
    {"id": "email", "type": "email", "label": "Your email?", "required": True,
     "validation": [{"type": "email", "message": "Please enter a valid email address"}]},
)

BRANCHING = fields_from(
    {"id": "q1", "type": "radio", "label": "Did you have a problem?", "options": ["yes", "no"]},
    {"id": "q2", "type": "text", "label": "What went wrong?",
     "conditional": {"showIf": {"fieldId": "q1", "operator": "equals", "value": "yes"}}},
    {"id": "q3", "type": "rating", "label": "Rate us"},
)

AI_FORM = fields_from(
    {"id": "name", "type": "text", "label": "What is your name?"},
    {"id": "experience", "type": "textarea", "label": "Tell us about your experience", "aiEnabled": True},
    {"id": "rating", "type": "rating", "label": "Rate us"},
)


def sequencer_for(fields, ai=None, finalizer=None, **kwargs):
    sequencer = FieldSequencer(fields, ai, finalizer or RecordingFinalizer(), title="Feedback", **kwargs)
    sequencer.start()
    return sequencer


# =============================================================================
# VALIDATION
# =============================================================================

class TestValidateAnswer:

    def test_required_field_rejects_empty_values(self):
        field = NAME_AND_EMAIL[0]
        for empty in (None, "", "   ", []):
            with pytest.raises(ValidationError) as exc_info:
                validate_answer(field, empty)
            assert exc_info.value.message == "This field is required."
            assert exc_info.value.field_id == "name"

    def test_rule_message_is_returned_verbatim(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_answer(NAME_AND_EMAIL[1], "not-an-email")
        assert exc_info.value.message == "Please enter a valid email address"

    def test_first_failing_rule_wins(self):
        field = FormField.model_validate({
            "id": "code", "type": "text", "label": "Code",
            "validation": [
                {"type": "min", "value": 5, "message": "Too short"},
                {"type": "pattern", "value": "^[0-9]+$", "message": "Digits only"},
            ],
        })
        with pytest.raises(ValidationError) as exc_info:
            validate_answer(field, "ab")
        assert exc_info.value.message == "Too short"

        with pytest.raises(ValidationError) as exc_info:
            validate_answer(field, "abcdef")
        assert exc_info.value.message == "Digits only"

        assert validate_answer(field, "123456") == "123456"

    def test_numeric_fields_coerce_text_and_compare_values(self):
        field = FormField.model_validate({
            "id": "age", "type": "number", "label": "Age",
            "validation": [
                {"type": "min", "value": 18, "message": "Must be an adult"},
                {"type": "max", "value": "120", "message": "Too old"},
            ],
        })
        assert validate_answer(field, "42") == 42
        assert validate_answer(field, "42.5") == 42.5
        with pytest.raises(ValidationError, match="Must be an adult"):
            validate_answer(field, "7")
        with pytest.raises(ValidationError, match="Too old"):
            validate_answer(field, 130)

    def test_numeric_fields_reject_text_that_is_not_a_finite_number(self):
        field = FormField.model_validate({
            "id": "score", "type": "rating", "label": "Rate us",
            "validation": [
                {"type": "min", "value": 1, "message": "Pick 1 to 5"},
                {"type": "max", "value": 5, "message": "Pick 1 to 5"},
            ],
        })
        for bad in ("hello", "abc", "nan", "inf", "-Infinity", True, ["3"]):
            with pytest.raises(ValidationError) as exc_info:
                validate_answer(field, bad)
            assert exc_info.value.message == "Please enter a valid number."
            assert exc_info.value.field_id == "score"

        assert validate_answer(field, " 3 ") == 3
        with pytest.raises(ValidationError, match="Pick 1 to 5"):
            validate_answer(field, "6")

    def test_url_rule(self):
        field = FormField.model_validate({
            "id": "site", "type": "url", "label": "Website",
            "validation": [{"type": "url", "message": "Enter a full URL"}],
        })
        assert validate_answer(field, "https://example.com/page") == "https://example.com/page"
        with pytest.raises(ValidationError, match="Enter a full URL"):
            validate_answer(field, "example.com")

    def test_rules_are_skipped_for_empty_optional_answer(self):
        field = FormField.model_validate({
            "id": "site", "type": "url", "label": "Website",
            "validation": [{"type": "url", "message": "Enter a full URL"}],
        })
        assert validate_answer(field, "") == ""


# =============================================================================
# SEQUENCING
# =============================================================================

class TestGetNextField:

    def test_returns_first_field_for_empty_answers(self):
        assert get_next_field({}, BRANCHING).id == "q1"

    def test_is_a_pure_function(self):
        answers = {"q1": "yes"}
        first = get_next_field(answers, BRANCHING)
        second = get_next_field(answers, BRANCHING)
        assert first.id == second.id == "q2"
        assert answers == {"q1": "yes"}

    def test_skips_field_whose_condition_is_false(self):
        assert get_next_field({"q1": "no"}, BRANCHING).id == "q3"

    def test_passed_over_field_is_never_reconsidered(self):
        # q2's condition would hold now, but q3 was already answered after it
        assert get_next_field({"q1": "yes", "q3": 4}, BRANCHING) is None

    def test_returns_none_when_sequence_is_complete(self):
        assert get_next_field({"q1": "no", "q3": 5}, BRANCHING) is None

    def test_unanswered_trigger_makes_every_operator_false(self):
        for operator in ("equals", "not_equals", "contains"):
            conditional = ConditionalLogic.model_validate(
                {"showIf": {"fieldId": "missing", "operator": operator, "value": "x"}}
            )
            assert evaluate_condition(conditional, {}) is False

    def test_contains_checks_list_membership_and_substrings(self):
        conditional = ConditionalLogic.model_validate(
            {"showIf": {"fieldId": "topics", "operator": "contains", "value": "billing"}}
        )
        assert evaluate_condition(conditional, {"topics": ["billing", "support"]})
        assert not evaluate_condition(conditional, {"topics": ["support"]})
        assert evaluate_condition(conditional, {"topics": "a billing question"})

    def test_not_equals(self):
        conditional = ConditionalLogic.model_validate(
            {"showIf": {"fieldId": "q1", "operator": "not_equals", "value": "no"}}
        )
        assert evaluate_condition(conditional, {"q1": "yes"})
        assert not evaluate_condition(conditional, {"q1": "no"})


class TestStandardMode:

    def test_invalid_email_keeps_field_active(self):
        sequencer = sequencer_for(NAME_AND_EMAIL)
        sequencer.submit_answer("name", "Ann")

        with pytest.raises(ValidationError) as exc_info:
            sequencer.submit_answer("email", "not-an-email")

        assert exc_info.value.message == "Please enter a valid email address"
        assert sequencer.active_field.id == "email"
        assert sequencer.answers == {"name": "Ann"}

    def test_answer_appends_question_and_answer_to_log(self):
        sequencer = sequencer_for(NAME_AND_EMAIL)
        next_field = sequencer.submit_answer("name", "Ann")

        assert next_field.id == "email"
        assert [(e["role"], e["content"]) for e in sequencer.log[-2:]] == [
            ("system", "What is your name?"),
            ("user", "Ann"),
        ]

    def test_conditional_field_is_skipped_permanently(self):
        finalizer = RecordingFinalizer()
        sequencer = sequencer_for(BRANCHING, finalizer=finalizer)

        assert sequencer.submit_answer("q1", "no").id == "q3"
        assert sequencer.submit_answer("q3", "5") is None

        assert finalizer.calls == [({"q1": "no", "q3": 5}, [])]
        assert sequencer.submission_state == SubmissionState.SUBMITTED

    def test_fields_are_visited_once_in_declared_order(self):
        sequencer = sequencer_for(BRANCHING)
        visited = []
        answers = {"q1": "yes", "q2": "Checkout failed", "q3": "3"}
        while sequencer.active_field is not None:
            field = sequencer.active_field
            visited.append(field.id)
            sequencer.submit_answer(field.id, answers[field.id])
        assert visited == ["q1", "q2", "q3"]

    def test_only_the_active_field_can_be_answered(self):
        sequencer = sequencer_for(NAME_AND_EMAIL)
        with pytest.raises(SequencerStateError):
            sequencer.submit_answer("email", "ann@example.com")

    def test_ai_assisted_field_rejects_direct_answers(self, scripted_ai):
        sequencer = sequencer_for(AI_FORM, ai=scripted_ai)
        sequencer.submit_answer("name", "Ann")
        with pytest.raises(SequencerStateError):
            sequencer.submit_answer("experience", "All fine")


# =============================================================================
# AI SUB-CONVERSATION
# =============================================================================

class TestAIConversation:

    def _enter_ai_field(self, scripted_ai, **kwargs):
        sequencer = sequencer_for(AI_FORM, ai=scripted_ai, **kwargs)
        sequencer.submit_answer("name", "Ann")
        return sequencer

    def test_entering_ai_field_switches_mode_and_anchors_label(self, scripted_ai):
        sequencer = self._enter_ai_field(scripted_ai)

        assert sequencer.mode == SequencerMode.AI_CHAT
        anchor = sequencer.ai_chat_anchor
        assert sequencer.log[anchor]["content"] == "Tell us about your experience"
        assert len(sequencer.log) == anchor + 1

    def test_finished_conversation_is_summarized_into_the_answer(self, scripted_ai):
        sequencer = self._enter_ai_field(scripted_ai)
        anchor = sequencer.ai_chat_anchor
        scripted_ai.reply("Sorry to hear that. Which invoice was affected?")
        scripted_ai.reply("Please email billing support. ", finished=True)
        scripted_ai.summaries.append("User reported a billing error.")

        first = sequencer.send_message("My invoice was wrong")
        assert not first.conversation_finished
        assert sequencer.mode == SequencerMode.AI_CHAT

        second = sequencer.send_message("The March invoice")
        assert second.conversation_finished

        assert sequencer.answers["experience"] == "User reported a billing error."
        after_anchor = sequencer.log[anchor + 1:]
        assert len(after_anchor) == 1
        assert after_anchor[0]["content"] == "User reported a billing error."
        assert sequencer.mode == SequencerMode.STANDARD
        assert sequencer.active_field.id == "rating"

        conversation = sequencer.ai_conversations[0]
        assert conversation["field_id"] == "experience"
        assert conversation["messages"][0]["content"] == "Tell us about your experience"
        assert [m["role"] for m in conversation["messages"]] == [
            "assistant", "user", "assistant", "user", "assistant"
        ]

    def test_transcript_and_history_come_from_the_sub_conversation(self, scripted_ai):
        sequencer = self._enter_ai_field(scripted_ai)
        scripted_ai.reply("Which invoice?")
        scripted_ai.reply("Noted.", finished=True)
        scripted_ai.summaries.append("User reported a wrong invoice.")

        sequencer.send_message("My invoice was wrong")
        sequencer.send_message("March")

        _, history = scripted_ai.chat_calls[1]
        assert history == [
            {"role": "user", "content": "My invoice was wrong"},
            {"role": "assistant", "content": "Which invoice?"},
        ]
        transcript = scripted_ai.summarize_calls[0]
        assert "User: My invoice was wrong" in transcript
        assert "Assistant: Which invoice?" in transcript
        assert "What is your name?" not in transcript

    def test_ai_failure_rolls_back_to_before_the_sub_conversation(self, scripted_ai):
        sequencer = self._enter_ai_field(scripted_ai)
        anchor = sequencer.ai_chat_anchor
        scripted_ai.reply("Which invoice?")
        scripted_ai.chat_replies.append(AIUnavailableError("AI service unavailable"))

        sequencer.send_message("My invoice was wrong")
        with pytest.raises(AIUnavailableError):
            sequencer.send_message("March")

        assert len(sequencer.log) == anchor
        assert sequencer.mode == SequencerMode.STANDARD
        assert "experience" not in sequencer.answers
        assert sequencer.active_field.id == "experience"

    def test_respondent_can_retry_after_failure(self, scripted_ai):
        sequencer = self._enter_ai_field(scripted_ai)
        anchor = sequencer.ai_chat_anchor
        scripted_ai.chat_replies.append(AIUnavailableError("AI service unavailable"))
        with pytest.raises(AIUnavailableError):
            sequencer.send_message("Hello")

        scripted_ai.reply("Glad to hear it.", finished=True)
        scripted_ai.summaries.append("User provided positive feedback.")
        sequencer.send_message("Everything was great")

        assert sequencer.answers["experience"] == "User provided positive feedback."
        assert sequencer.log[anchor]["content"] == "Tell us about your experience"
        assert len(sequencer.log[anchor + 1:]) == 1

    def test_summarize_failure_also_rolls_back(self, scripted_ai):
        sequencer = self._enter_ai_field(scripted_ai)
        anchor = sequencer.ai_chat_anchor
        scripted_ai.reply("Thanks!", finished=True)
        scripted_ai.summaries.append(MalformedAIOutputError("AI summary was empty"))

        with pytest.raises(MalformedAIOutputError):
            sequencer.send_message("All good")

        assert len(sequencer.log) == anchor
        assert "experience" not in sequencer.answers
        assert sequencer.ai_conversations == []

    def test_turn_cap_forces_summary(self, scripted_ai):
        sequencer = self._enter_ai_field(scripted_ai, max_chat_turns=2)
        scripted_ai.reply("Tell me more")
        scripted_ai.reply("And then?")
        scripted_ai.summaries.append("User described a long onboarding.")

        sequencer.send_message("Onboarding was long")
        reply = sequencer.send_message("It took three weeks")

        assert reply.conversation_finished
        assert sequencer.answers["experience"] == "User described a long onboarding."

    def test_finalize_is_rejected_during_ai_chat(self, scripted_ai):
        sequencer = self._enter_ai_field(scripted_ai)
        with pytest.raises(SequencerStateError):
            sequencer.finalize()

    def test_ai_field_first_in_form_enters_chat_on_start(self, scripted_ai):
        sequencer = sequencer_for(AI_FORM[1:], ai=scripted_ai)
        assert sequencer.mode == SequencerMode.AI_CHAT
        assert sequencer.ai_chat_anchor == 1


# =============================================================================
# FINALIZATION AND PERSISTENCE
# =============================================================================

class TestFinalize:

    def test_second_finalize_is_rejected(self):
        finalizer = RecordingFinalizer()
        sequencer = sequencer_for(NAME_AND_EMAIL, finalizer=finalizer)
        sequencer.submit_answer("name", "Ann")
        sequencer.submit_answer("email", "ann@example.com")

        assert sequencer.submission_id == "sub-1"
        with pytest.raises(AlreadySubmittedError):
            sequencer.finalize()
        with pytest.raises(AlreadySubmittedError):
            sequencer.submit_answer("email", "ann@example.com")
        assert len(finalizer.calls) == 1

    def test_force_finish_submits_answers_so_far(self):
        finalizer = RecordingFinalizer()
        sequencer = sequencer_for(NAME_AND_EMAIL, finalizer=finalizer)
        sequencer.submit_answer("name", "Ann")

        assert sequencer.finalize() == "sub-1"
        assert finalizer.calls == [({"name": "Ann"}, [])]
        assert sequencer.active_field is None

    def test_failed_finalizer_leaves_conversation_open(self):
        def failing_finalizer(answers, ai_conversations):
            raise RuntimeError("store down")

        sequencer = sequencer_for(NAME_AND_EMAIL, finalizer=failing_finalizer)
        with pytest.raises(RuntimeError):
            sequencer.finalize()
        assert sequencer.submission_state == SubmissionState.NOT_SUBMITTED

    def test_state_round_trip_resumes_ai_conversation(self, scripted_ai):
        sequencer = sequencer_for(AI_FORM, ai=scripted_ai)
        sequencer.submit_answer("name", "Ann")
        scripted_ai.reply("Which part?")
        sequencer.send_message("Onboarding was slow")

        restored = FieldSequencer.from_state(sequencer.to_state(), AI_FORM, scripted_ai, RecordingFinalizer())

        assert restored.mode == SequencerMode.AI_CHAT
        assert restored.active_field.id == "experience"
        assert restored.log == sequencer.log
        assert restored.ai_chat_anchor == sequencer.ai_chat_anchor

        scripted_ai.reply("Thanks, noted.", finished=True)
        scripted_ai.summaries.append("User reported slow onboarding.")
        restored.send_message("The paperwork")
        assert restored.answers == {"name": "Ann", "experience": "User reported slow onboarding."}
