"""AI capability: fix triage and fix generation on Anthropic Claude.

Triage uses the fast model (classification + affected files), generation
the stronger one (full file edits). Prompts live in prompts.yaml next to
this module.
"""

import json
import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Optional

import anthropic
import yaml
from pydantic import ValidationError as PydanticValidationError

from hostfix.errors import AIResponseError, CapabilityError
from hostfix.fixes.schemas import FixResult, SourceFile, TriageResult

logger = logging.getLogger(__name__)

PROMPTS_FILE = Path(__file__).parent / "prompts.yaml"

TRIAGE_MODEL = os.environ.get("HOSTFIX_TRIAGE_MODEL", "claude-haiku-4-5-20251001")
GENERATION_MODEL = os.environ.get("HOSTFIX_GENERATION_MODEL", "claude-sonnet-4-5-20250929")

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@lru_cache(maxsize=1)
def load_prompts() -> dict:
    with open(PROMPTS_FILE) as f:
        return yaml.safe_load(f)


def parse_llm_json_response(raw_text: str) -> dict:
    """Parse JSON from an LLM response, handling markdown code fences.

    Models sometimes wrap JSON in ```json ... ``` fences or add a sentence
    around it despite being told not to. Fences are stripped first; if that
    still isn't JSON, the outermost {...} span is tried.

    Raises:
        json.JSONDecodeError: If no JSON object can be recovered
    """
    content = raw_text.strip()

    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else content[3:]
    if content.endswith("```"):
        content = content.rsplit("```", 1)[0]
    content = content.strip()

    try:
        return json.loads(content)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(content)
        if not match:
            raise
        return json.loads(match.group(0))


class AIClient:
    """Triage and generation calls. Pass `client` to inject a fake Anthropic client."""

    def __init__(self, api_key: Optional[str] = None, client=None):
        if client is not None:
            self._client = client
        elif api_key:
            self._client = anthropic.Anthropic(api_key=api_key)
        else:
            self._client = None
            logger.warning("ANTHROPIC_API_KEY not set — AI calls will fail")

    def _complete(self, model: str, system: str, prompt: str, max_tokens: int) -> str:
        if self._client is None:
            raise CapabilityError("AI service unavailable. Set ANTHROPIC_API_KEY environment variable.")
        try:
            response = self._client.messages.create(
                model=model,
                max_tokens=max_tokens,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            logger.error(f"Model {model} call failed: {e}")
            raise CapabilityError(f"AI model call failed: {e}") from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.info(f"{model}: {usage.input_tokens + usage.output_tokens} tokens")
        return text

    def triage(
        self,
        description: str,
        file_listing: list[str],
        tech_stack: Optional[str] = None,
    ) -> TriageResult:
        """Classify a fix request. Raises AIResponseError on an unusable response."""
        prompts = load_prompts()
        cfg = prompts["triage"]
        files = "\n".join(file_listing[: cfg["file_listing_limit"]])
        prompt = (
            f'Fix request: "{description}"\n\n'
            f"Project files:\n{files}\n"
            f"Tech stack: {tech_stack or prompts['default_tech_stack']}"
        )

        raw = self._complete(TRIAGE_MODEL, cfg["system"], prompt, cfg["max_tokens"])
        try:
            result = TriageResult(**parse_llm_json_response(raw))
        except (json.JSONDecodeError, PydanticValidationError, TypeError) as e:
            logger.error(f"Unparseable triage response: {raw[:300]}")
            raise AIResponseError(f"Failed to parse triage response: {e}") from e

        logger.info(
            f"Triage: {result.complexity.value} (confidence {result.confidence:.2f}), "
            f"{len(result.affected_files)} affected files"
        )
        return result

    def generate(
        self,
        description: str,
        triage: TriageResult,
        files: list[SourceFile],
    ) -> FixResult:
        """Produce file edits for a triaged fix.

        An unparseable response is reported as FixResult(success=False);
        only a failed model call raises.
        """
        cfg = load_prompts()["generate"]
        file_context = "\n\n".join(f"--- {f.path} ---\n{f.content}" for f in files)
        prompt = (
            f'Fix request: "{description}"\n\n'
            f"Triage: {triage.model_dump_json()}\n\n"
            f"Source files:\n{file_context}"
        )

        raw = self._complete(GENERATION_MODEL, cfg["system"], prompt, cfg["max_tokens"])
        try:
            data = parse_llm_json_response(raw)
        except json.JSONDecodeError:
            logger.error(f"Generation response was not valid JSON: {raw[:300]}")
            return FixResult(
                success=False,
                explanation="Failed to parse AI response",
                error="AI response was not valid JSON",
            )

        try:
            result = FixResult(**data)
        except (PydanticValidationError, TypeError) as e:
            logger.error(f"Generation response did not match the expected schema: {e}")
            return FixResult(
                success=False,
                explanation="Failed to parse AI response JSON",
                error=raw[:500],
            )

        if result.success and not result.changes:
            return result.model_copy(update={
                "success": False,
                "error": result.error or "AI produced no file changes",
            })
        logger.info(f"Generation: success={result.success}, {len(result.changes)} changes")
        return result


_ai: Optional[AIClient] = None


def get_ai_client() -> AIClient:
    """Get or create the global AIClient instance."""
    global _ai
    if _ai is None:
        _ai = AIClient(api_key=os.environ.get("ANTHROPIC_API_KEY"))
    return _ai
