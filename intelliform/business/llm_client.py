import time
from typing import Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

from intelliform.model.errors import AIUnavailableError
from intelliform.utils.logger_config import get_logger, LoggerConfig
from intelliform.utils.settings import AISettings

logger = get_logger(__name__)


class LLMClient:
    """The one seam between IntelliForm and the language model provider.

    Everything AI-related goes through ``generate(system_prompt, text)``; the
    provider, model and key come from ``AISettings``. Each call is bounded by
    the configured timeout and retried ``max_retries`` times before giving up
    with ``AIUnavailableError``.
    """

    def __init__(self, settings: AISettings, chat_model: Optional[BaseChatModel] = None):
        self.settings = settings
        # Built on first use so the service starts without provider credentials
        self._llm = chat_model

    @property
    def llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = ChatOpenAI(
                base_url=self.settings.base_url,
                api_key=SecretStr(self.settings.api_key or ""),
                model=self.settings.model,
                temperature=self.settings.temperature,
                timeout=self.settings.timeout_seconds,
                max_retries=0,
            )
        return self._llm

    def generate(self, system_prompt: str, text: str, capability: str = "generate") -> str:
        """Send one prompt/text pair and return the model's text reply"""
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=text)]
        attempts = self.settings.max_retries + 1
        last_error = None

        for attempt in range(1, attempts + 1):
            started = time.time()
            try:
                response = self.llm.invoke(messages)
            except Exception as e:
                # Provider SDKs raise a wide range of transport/API errors
                last_error = e
                LoggerConfig.log_ai_call(logger, capability, attempt, time.time() - started,
                                         success=False, error=str(e))
                continue

            LoggerConfig.log_ai_call(logger, capability, attempt, time.time() - started)
            content = response.content
            if isinstance(content, list):
                content = "".join(part if isinstance(part, str) else part.get("text", "") for part in content)
            return content

        logger.error(f"❌ AI {capability} gave up after {attempts} attempt(s)")
        raise AIUnavailableError(f"AI service unavailable: {last_error}")
