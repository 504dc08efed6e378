from typing import Any, Dict, List, Optional, Sequence, Tuple

from langchain_core.exceptions import OutputParserException
from langchain_core.output_parsers import PydanticOutputParser

from intelliform.business.llm_client import LLMClient
from intelliform.business.prompts import (
    CHAT_SYSTEM_PROMPT, SUMMARIZE_SYSTEM_PROMPT, EXTRACTION_SYSTEM_PROMPT,
    RANKING_SYSTEM_PROMPT, RANKING_RETRY_NOTE, CONVERSATION_FINISHED_MARKER
)
from intelliform.model.errors import MalformedAIOutputError
from intelliform.model.form_schemas import (
    ChatReply, ExtractedProblem, ProblemExtractionResult, ProblemRankingResult, RankedProblemGroup
)
from intelliform.utils.logger_config import get_logger

logger = get_logger(__name__)


def clean_llm_response(response_content: str) -> str:
    """Strip markdown code fences around a JSON reply"""
    content = response_content.strip()

    if content.startswith('```json'):
        content = content[7:]
    elif content.startswith('```'):
        content = content[3:]

    if content.endswith('```'):
        content = content[:-3]

    return content.strip()


def render_transcript(messages: Sequence[Dict[str, Any]]) -> str:
    """Flatten chat turns into "User: ..." / "Assistant: ..." lines"""
    lines = []
    for message in messages:
        speaker = "User" if message.get("role") == "user" else "Assistant"
        lines.append(f"{speaker}: {message.get('content', '')}")
    return "\n".join(lines)


class AIService:
    """Prompts and strict parsing on top of the LLM client.

    Operations map one-to-one to the AI capability the rest of the service
    consumes: ``chat``, ``summarize``, ``extract_problems`` and
    ``rank_problems``. Structured replies are parsed strictly; anything that
    does not fit the expected schema raises ``MalformedAIOutputError``.
    """

    def __init__(self, llm_client: LLMClient):
        self.llm_client = llm_client
        self.extraction_parser = PydanticOutputParser(pydantic_object=ProblemExtractionResult)
        self.ranking_parser = PydanticOutputParser(pydantic_object=ProblemRankingResult)

    def chat(self, message: str, history: Optional[Sequence[Dict[str, Any]]] = None) -> ChatReply:
        """One assistant turn; ``conversation_finished`` is set when the reply carries the marker"""
        text = message
        if history:
            text = (f"Conversation so far:\n{render_transcript(history)}\n\n"
                    f"Latest user message:\n{message}")

        content = self.llm_client.generate(CHAT_SYSTEM_PROMPT, text, capability="chat")

        finished = CONVERSATION_FINISHED_MARKER in content
        if finished:
            content = content.replace(CONVERSATION_FINISHED_MARKER, "").strip()
        return ChatReply(content=content.strip(), conversation_finished=finished)

    def summarize(self, transcript: str) -> str:
        summary = self.llm_client.generate(SUMMARIZE_SYSTEM_PROMPT, transcript, capability="summarize").strip()
        if not summary:
            raise MalformedAIOutputError("AI summary was empty")
        return summary

    def extract_problems(self, submission_text: str) -> List[ExtractedProblem]:
        prompt = EXTRACTION_SYSTEM_PROMPT.format(
            format_instructions=self.extraction_parser.get_format_instructions()
        )
        raw = self.llm_client.generate(prompt, submission_text, capability="extract_problems")
        result = self._parse(self.extraction_parser, raw, "problem extraction")

        problems = []
        for item in result.problems:
            text = item.problem.strip()
            if not text:
                raise MalformedAIOutputError("Problem extraction returned a blank problem")
            problems.append(ExtractedProblem(problem=text, solutions=[s.strip() for s in item.solutions if s.strip()]))
        logger.info(f"🔍 Extracted {len(problems)} problem(s)")
        return problems

    def rank_problems(self, pairs: Sequence[Tuple[str, str]],
                      violations: Optional[List[str]] = None) -> List[RankedProblemGroup]:
        """Canonicalize (problem, submission_id) pairs into groups.

        ``violations`` describes what was wrong with a previous answer; it is
        appended to the prompt when re-requesting.
        """
        prompt = RANKING_SYSTEM_PROMPT.format(
            format_instructions=self.ranking_parser.get_format_instructions()
        )
        if violations:
            prompt += RANKING_RETRY_NOTE.format(violations="; ".join(violations))

        text = "\n".join(f"{submission_id} | {problem}" for problem, submission_id in pairs)
        raw = self.llm_client.generate(prompt, text, capability="rank_problems")
        return self._parse(self.ranking_parser, raw, "problem ranking").groups

    @staticmethod
    def _parse(parser: PydanticOutputParser, raw: str, what: str):
        try:
            return parser.parse(clean_llm_response(raw))
        except OutputParserException as e:
            logger.error(f"❌ Malformed {what} output: {e}")
            raise MalformedAIOutputError(f"Malformed {what} output from AI") from e
