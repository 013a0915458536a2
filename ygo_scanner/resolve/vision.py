"""Vision-model card identification for enhancement runs.

Talks to any OpenAI-compatible chat completions endpoint that accepts
``image_url`` content parts.
"""

import asyncio
import base64
import json
import re
from typing import Any, Dict, Optional

import aiohttp

from ..core.types import EnhancementMode, Identification, IdentificationContext
from ..ocr.regexes import normalize_attribute, normalize_card_type
from ..utils.config import settings
from ..utils.error_handler import ConfigurationError, EnhancementFailure
from ..utils.log import LoggerMixin

SYSTEM_PROMPT = (
    "You are an expert Yu-Gi-Oh! card identifier. You identify cards from poor "
    "quality photos using image analysis and any hints a human supplies."
)

_ANSWER_FORMAT = (
    "Reply with raw JSON only, no markdown, with keys: name, type (Monster/Spell/Trap), "
    "attribute, level, attack, defense, description, confidence (0-100), reasoning."
)

AUTO_PROMPT = """This is a second attempt to identify a Yu-Gi-Oh! card after the first scan failed.
Look closely at borders, symbols and the name bar; consider partial text and similar card names.

Original OCR data: {prior}
Original attempt: {previous}

{answer}"""

MANUAL_PROMPT = """Identify this Yu-Gi-Oh! card using the hints a human provided.

Card name hint: "{card_name}"
Card type hint: "{card_type}"
Attribute hint: "{attribute}"
Known text: "{known_text}"
Description: "{description}"

Original OCR data: {prior}

Even partial hints can identify the card. Cross-check them against the image and explain how they helped.

{answer}"""

HYBRID_PROMPT = """Combine your own image analysis with the human hints to identify this Yu-Gi-Oh! card.

Human hints:
- Card name: "{card_name}"
- Type: "{card_type}"
- Attribute: "{attribute}"
- Known text: "{known_text}"
- Description: "{description}"

Previous attempt:
- OCR result: {prior}
- Previous identification: {previous}

Use the hints to settle ambiguous text and say how hints and visual evidence combined.

{answer}"""

_PROMPTS = {
    EnhancementMode.AUTO: AUTO_PROMPT,
    EnhancementMode.MANUAL: MANUAL_PROMPT,
    EnhancementMode.HYBRID: HYBRID_PROMPT,
}


def build_prompt(context: IdentificationContext) -> str:
    hints = context.hints
    prior = context.prior_diagnostics.to_json() if context.prior_diagnostics is not None else "None"
    return _PROMPTS[context.mode].format(
        prior=prior,
        previous=context.previous_name or "Failed to identify",
        card_name=hints.card_name or "None",
        card_type=hints.card_type or "None",
        attribute=hints.attribute or "None",
        known_text=hints.known_text or "None",
        description=hints.description or "None",
        answer=_ANSWER_FORMAT,
    )


def parse_json_response(content: str) -> Dict[str, Any]:
    """Parse a JSON object from a model reply, tolerating markdown fences."""
    content = (content or "").strip()

    if "```" in content:
        match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", content)
        if match:
            content = match.group(1).strip()

    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass

    match = re.search(r"\{[\s\S]*\}", content)
    if match:
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            pass

    raise ValueError(f"Could not parse JSON from response: {content[:200]}")


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    match = re.search(r"\d+", str(value))
    return int(match.group(0)) if match else None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in ("none", "null", "n/a", "unknown"):
        return None
    return text


def to_identification(data: Dict[str, Any]) -> Identification:
    try:
        confidence = float(data.get("confidence") or 0)
    except (TypeError, ValueError):
        confidence = 0.0
    return Identification(
        name=_as_text(data.get("name")) or "",
        type=normalize_card_type(_as_text(data.get("type"))),
        attribute=normalize_attribute(_as_text(data.get("attribute"))),
        level=_as_int(data.get("level")),
        attack=_as_int(data.get("attack")),
        defense=_as_int(data.get("defense")),
        description=_as_text(data.get("description")),
        confidence=max(0.0, min(confidence, 100.0)),
        reasoning=_as_text(data.get("reasoning")) or "",
    )


class VisionIdentifier(LoggerMixin):
    """Identifies a card by asking a vision model, with a mode-specific prompt."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_s: Optional[float] = None,
        max_tokens: int = 1500,
        temperature: float = 0.1,
    ):
        self.api_url = (api_url or settings.VISION_API_URL or "").rstrip("/")
        if not self.api_url:
            raise ConfigurationError("VISION_API_URL is required for the vision identifier")
        self.api_key = api_key or settings.VISION_API_KEY
        self.model = model or settings.VISION_MODEL
        self.timeout = aiohttp.ClientTimeout(total=timeout_s or settings.VISION_TIMEOUT_S)
        self.max_tokens = max_tokens
        self.temperature = temperature

    def build_payload(self, context: IdentificationContext) -> Dict[str, Any]:
        encoded = base64.b64encode(context.image).decode("ascii")
        payload: Dict[str, Any] = {
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": build_prompt(context)},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{context.content_type};base64,{encoded}"},
                        },
                    ],
                },
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if self.model:
            payload["model"] = self.model
        return payload

    async def identify(self, context: IdentificationContext) -> Identification:
        log_context = self.log_start("Vision identification", mode=context.mode.value)
        try:
            response = await self._post(self.build_payload(context))
            content = response["choices"][0]["message"]["content"]
            identification = to_identification(parse_json_response(content))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.log_error(log_context, e)
            raise EnhancementFailure(f"Vision service request failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            self.log_error(log_context, e)
            raise EnhancementFailure(f"Vision service returned an unusable answer: {e}") from e

        self.log_success(
            log_context,
            name=identification.name,
            confidence=identification.confidence,
        )
        return identification

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        async with aiohttp.ClientSession(timeout=self.timeout, headers=headers) as session:
            async with session.post(f"{self.api_url}/chat/completions", json=payload) as response:
                response.raise_for_status()
                return await response.json(content_type=None)
