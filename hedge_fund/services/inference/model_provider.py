"""
Model Inference Provider

Boundary to the external language models some analysts consult. The core
only depends on ModelInferenceProvider; the concrete provider talks to any
OpenAI-compatible chat completion endpoint through the openai client.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional

import openai

from ...core.errors import InferenceError
from ...core.retry import RetryPolicy


class ModelProvider(str, Enum):
    """Supported inference backends."""
    ANTHROPIC = 'anthropic'
    DEEPSEEK = 'deepseek'
    GEMINI = 'gemini'
    GROQ = 'groq'
    OPENAI = 'openai'
    OLLAMA = 'ollama'

    @classmethod
    def parse(cls, value: str) -> 'ModelProvider':
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown model provider: {value}")


# OpenAI-compatible endpoints; OpenAI itself uses the client default
DEFAULT_BASE_URLS: Dict[ModelProvider, Optional[str]] = {
    ModelProvider.ANTHROPIC: 'https://api.anthropic.com/v1/',
    ModelProvider.DEEPSEEK: 'https://api.deepseek.com',
    ModelProvider.GEMINI: 'https://generativelanguage.googleapis.com/v1beta/openai/',
    ModelProvider.GROQ: 'https://api.groq.com/openai/v1',
    ModelProvider.OPENAI: None,
    ModelProvider.OLLAMA: 'http://localhost:11434/v1',
}


@dataclass(frozen=True)
class ChatMessage:
    role: str  # 'system', 'user' or 'assistant'
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {'role': self.role, 'content': self.content}


@dataclass(frozen=True)
class LLMModelConfig:
    """Per-call model parameters."""
    provider: ModelProvider
    model_name: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.5
    max_tokens: int = 1024
    top_p: float = 0.5
    timeout_seconds: float = 60.0


@dataclass(frozen=True)
class ModelResponse:
    content: str
    model_name: str
    usage: Dict[str, Any] = field(default_factory=dict)


class ModelInferenceProvider(ABC):
    """Capability interface for external model calls."""

    @abstractmethod
    def infer(self, messages: List[ChatMessage]) -> ModelResponse:
        """
        Run one chat completion.

        Raises:
            InferenceError: If the call fails or returns no content
        """
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        pass


class OpenAICompatibleProvider(ModelInferenceProvider):
    """
    Chat completions against OpenAI or any OpenAI-compatible backend.

    Transient failures are retried by the policy; whatever still fails is
    reported as InferenceError.
    """

    def __init__(self, config: LLMModelConfig, retry_policy: Optional[RetryPolicy] = None,
                 client: Optional[Any] = None):
        """
        Initialize the provider.

        Args:
            config: Model parameters
            retry_policy: Retry boundary, defaults to three attempts
            client: Pre-built openai client, mainly for tests
        """
        self.config = config
        self.retry_policy = retry_policy or RetryPolicy(max_retries=3)
        self.logger = logging.getLogger(f"{__name__}.OpenAICompatibleProvider")

        if client is None:
            base_url = config.base_url or DEFAULT_BASE_URLS.get(config.provider)
            client = openai.OpenAI(
                api_key=config.api_key or 'not-set',
                base_url=base_url,
                timeout=config.timeout_seconds,
                max_retries=0
            )
        self.client = client

    @property
    def model_name(self) -> str:
        return self.config.model_name

    def infer(self, messages: List[ChatMessage]) -> ModelResponse:
        """
        Run one chat completion with retries.

        Args:
            messages: Conversation to send

        Returns:
            Model response

        Raises:
            InferenceError: If every attempt fails
        """
        try:
            return self.retry_policy.call(
                lambda: self._complete(messages),
                retry_on=(openai.OpenAIError, InferenceError),
                description=f"{self.config.provider.value}:{self.config.model_name}"
            )
        except InferenceError:
            raise
        except openai.OpenAIError as e:
            raise InferenceError(f"Model call failed: {e}", model_name=self.config.model_name) from e

    def _complete(self, messages: List[ChatMessage]) -> ModelResponse:
        response = self.client.chat.completions.create(
            model=self.config.model_name,
            messages=[message.to_dict() for message in messages],
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            top_p=self.config.top_p
        )

        if not response.choices or not response.choices[0].message.content:
            raise InferenceError("Model returned an empty response", model_name=self.config.model_name)

        usage = {}
        if getattr(response, 'usage', None) is not None:
            usage = {
                'prompt_tokens': getattr(response.usage, 'prompt_tokens', None),
                'completion_tokens': getattr(response.usage, 'completion_tokens', None)
            }

        content = response.choices[0].message.content.strip()
        self.logger.debug(f"Model {self.config.model_name} responded with {len(content)} characters")
        return ModelResponse(content=content, model_name=self.config.model_name, usage=usage)
