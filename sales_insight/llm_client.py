"""
Model invocation capability: generate(prompt, config) -> text.

Rationale:
- The pipeline only depends on the ModelClient protocol, so tests script
  responses without touching the network or the environment.
- GeminiClient wraps the google-generativeai SDK. Credentials and model name
  come from the Settings object handed in at construction time.
- Native JSON mode (response_mime_type="application/json") is requested when
  enabled; the text is still run through the extractor afterwards.
- No retries / no fallback: any failure is a ModelInvocationError.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from .config import Settings
from .errors import ModelInvocationError

logger = logging.getLogger(__name__)

FINISH_REASON_MAX_TOKENS = 2

SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
}


@dataclass(frozen=True)
class GenerationSettings:
    """Fixed generation configuration shared by all stages."""

    temperature: float = 0.2
    top_p: float = 0.95
    top_k: int = 40
    max_output_tokens: int = 8192
    json_mode: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "GenerationSettings":
        return cls(
            temperature=settings.temperature,
            top_p=settings.top_p,
            top_k=settings.top_k,
            max_output_tokens=settings.max_output_tokens,
            json_mode=settings.json_mode,
        )


class ModelClient(Protocol):
    def generate(self, prompt: str, config: GenerationSettings) -> str:
        ...


def _response_text(response: Any) -> str:
    """Pull text out of a Gemini response, treating blocked/empty output as an error."""
    try:
        result = response.text
    except ValueError:
        # response.text raises when there is no usable candidate (e.g. safety block)
        if response.candidates:
            candidate = response.candidates[0]
            if candidate.finish_reason == FINISH_REASON_MAX_TOKENS:
                if candidate.content and candidate.content.parts:
                    result = candidate.content.parts[0].text
                else:
                    raise ModelInvocationError("Gemini response truncated with no content.")
            else:
                raise ModelInvocationError(f"Gemini blocked response. Finish reason: {candidate.finish_reason}")
        else:
            feedback = getattr(response, "prompt_feedback", None)
            block_reason = getattr(feedback, "block_reason", None)
            raise ModelInvocationError(f"Gemini returned no candidates. Block reason: {block_reason}")

    if not result or not result.strip():
        raise ModelInvocationError("Gemini returned empty response")
    return result


class GeminiClient:
    """ModelClient backed by google-generativeai."""

    def __init__(self, api_key: Optional[str], model_name: str, timeout: Optional[float] = None):
        self.api_key = api_key
        self.model_name = model_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiClient":
        return cls(api_key=settings.api_key, model_name=settings.model_name, timeout=settings.request_timeout)

    def generate(self, prompt: str, config: GenerationSettings) -> str:
        if not self.api_key:
            raise ModelInvocationError("GEMINI_API_KEY or LLM_API_KEY must be set in environment")

        try:
            genai.configure(api_key=self.api_key)
            model = genai.GenerativeModel(model_name=self.model_name, safety_settings=SAFETY_SETTINGS)

            generation_config = genai.GenerationConfig(
                temperature=config.temperature,
                top_p=config.top_p,
                top_k=config.top_k,
                max_output_tokens=config.max_output_tokens,
                response_mime_type="application/json" if config.json_mode else None,
            )
            request_options = {"timeout": self.timeout} if self.timeout else None

            logger.debug(f"Calling {self.model_name} with a {len(prompt)}-character prompt")
            response = model.generate_content(
                prompt,
                generation_config=generation_config,
                request_options=request_options,
            )
            return _response_text(response)

        except ModelInvocationError:
            raise
        except Exception as e:
            raise ModelInvocationError(f"Gemini API error: {str(e)}")
