"""
Question Service

Contract for the external text-generation/classification service, plus the
OpenAI-backed implementation used in production.

Every call returns the raw text and its token usage. Overload conditions are
raised as TransientProviderError, everything else as PermanentProviderError.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from socratic_code_tutor.errors import PermanentProviderError, ProviderError, TransientProviderError
from socratic_code_tutor.misconceptions import MisconceptionId
from socratic_code_tutor.prompts import (
    SYSTEM_PROMPT,
    build_classify_prompt,
    build_generate_prompt,
    build_summary_prompt,
)

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {429, 502, 503, 504, 529}


@dataclass
class TokenUsage:
    tokens_in: int = 0
    tokens_out: int = 0

    def add(self, other: Optional["TokenUsage"]) -> None:
        if other is None:
            return
        self.tokens_in += other.tokens_in
        self.tokens_out += other.tokens_out


@dataclass
class ServiceReply:
    text: str
    usage: TokenUsage


class QuestionService(ABC):
    """External capabilities consumed by the generation orchestrator."""

    @abstractmethod
    async def classify(
        self,
        message: str,
        context: Optional[str],
        prior_summary: str,
        last_question: Optional[str],
    ) -> ServiceReply:
        """Return raw JSON verdicts for the misconception taxonomy."""

    @abstractmethod
    async def generate(
        self,
        targeted: Optional[MisconceptionId],
        strategy: str,
        message: str,
        summary: str,
        context: Optional[str],
        last_question: Optional[str],
    ) -> ServiceReply:
        """Return the raw text of the next tutor turn."""

    @abstractmethod
    async def summarize(self, history: List[Dict[str, str]]) -> ServiceReply:
        """Return a brief summary of the conversation so far."""


def translate_openai_error(error: Exception, operation: str) -> ProviderError:
    """Map an OpenAI SDK exception onto the provider error taxonomy."""
    status_code = getattr(error, "status_code", None)
    message = f"{operation} failed: {type(error).__name__}: {error}"

    if isinstance(error, (openai.RateLimitError, openai.APITimeoutError, openai.APIConnectionError,
                          openai.InternalServerError)):
        return TransientProviderError(message, operation=operation, status_code=status_code)
    if status_code in TRANSIENT_STATUS_CODES or "overloaded" in str(error).lower():
        return TransientProviderError(message, operation=operation, status_code=status_code)
    return PermanentProviderError(message, operation=operation, status_code=status_code)


class OpenAIQuestionService(QuestionService):
    """QuestionService backed by the OpenAI chat completions API."""

    def __init__(self, api_key: Optional[str] = None, model: str = "gpt-4o-mini", client: Optional[AsyncOpenAI] = None):
        if client is None:
            if not api_key:
                raise ValueError("OPENAI_API_KEY not found in environment variables")
            client = AsyncOpenAI(api_key=api_key)
        self.llm_client = client
        self.model = model

    async def _complete(self, operation: str, messages: List[Dict[str, str]], **kwargs) -> ServiceReply:
        try:
            response = await self.llm_client.chat.completions.create(
                model=self.model,
                messages=messages,
                **kwargs
            )
        except openai.APIError as e:
            raise translate_openai_error(e, operation) from e

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        usage = TokenUsage()
        if response.usage:
            usage = TokenUsage(
                tokens_in=response.usage.prompt_tokens or 0,
                tokens_out=response.usage.completion_tokens or 0,
            )
        return ServiceReply(text=text, usage=usage)

    async def classify(
        self,
        message: str,
        context: Optional[str],
        prior_summary: str,
        last_question: Optional[str],
    ) -> ServiceReply:
        prompt = build_classify_prompt(message, context, prior_summary, last_question)
        return await self._complete(
            "classify",
            [{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
            max_tokens=400,
            temperature=0,
        )

    async def generate(
        self,
        targeted: Optional[MisconceptionId],
        strategy: str,
        message: str,
        summary: str,
        context: Optional[str],
        last_question: Optional[str],
    ) -> ServiceReply:
        prompt = build_generate_prompt(targeted, strategy, message, summary, context, last_question)
        return await self._complete(
            "generate",
            [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=80,
            temperature=0.7,
        )

    async def summarize(self, history: List[Dict[str, str]]) -> ServiceReply:
        return await self._complete(
            "summarize",
            [{"role": "user", "content": build_summary_prompt(history)}],
            max_tokens=200,
        )
