"""Prompt enrichment via Vertex Gemini.

Rewrites a raw user prompt into a cinematic, filter-friendly English prompt
for Veo. Enrichment is best-effort: any failure falls back to the raw prompt.
"""

from enum import Enum

import httpx
import structlog

from veostudio.core.config import VertexConfig
from veostudio.services.vertex.credentials import ServiceAccountCredentialProvider

logger = structlog.get_logger(__name__)


class PromptPreset(str, Enum):
    """Closed set of "magic" presets offered by the UI."""

    NONE = "none"
    HUG = "hug"
    KISS = "kiss"
    DANCE = "dance"
    LAUGH = "laugh"
    ZOOM_IN = "zoom-in"
    RETRO = "retro"
    DISSOLVE = "dissolve"

    @property
    def instruction(self) -> str:
        return PRESET_INSTRUCTIONS[self]


PRESET_INSTRUCTIONS: dict[PromptPreset, str] = {
    PromptPreset.NONE: "",
    PromptPreset.HUG: "EFFECT: AI Hug. Ensure two people are embracing/hugging each other warmly.",
    PromptPreset.KISS: "EFFECT: AI Kiss. Ensure a romantic and gentle kiss between two people.",
    PromptPreset.DANCE: "EFFECT: AI Dance. Ensure the subject is performing fluid dance movements.",
    PromptPreset.LAUGH: (
        "EFFECT: AI Laugh. Ensure the subject has a wide, joyful, and realistic laugh "
        "with visible facial expressions."
    ),
    PromptPreset.ZOOM_IN: (
        "TECHNIQUE: Cinematic Zoom. The camera must slowly and dramatically zoom into the subject."
    ),
    PromptPreset.RETRO: (
        "STYLE: Retro 16mm Film. Use vintage colors, grain, and nostalgic lighting."
    ),
    PromptPreset.DISSOLVE: (
        "EFFECT: Magical Dissolve. The subject should realistically dissolve into "
        "glowing particles or smoke."
    ),
}


def build_enrichment_instruction(
    raw_prompt: str,
    preset: PromptPreset = PromptPreset.NONE,
    translate: bool = False,
    generate_audio: bool = False,
) -> str:
    """Build the Gemini instruction for rewriting a user prompt.

    Args:
        raw_prompt: Prompt exactly as typed by the user
        preset: Selected preset; its fragment is appended as a special instruction
        translate: Translate and expand a non-English prompt into cinematic English
        generate_audio: Ask for a voice description to guide Veo's audio engine

    Returns:
        Instruction text sent as the single user turn
    """
    goal = "translate, expand, and refine" if translate else "verify and refine"
    if translate:
        language_rule = (
            "Translate the user's input to English if it is not in English, "
            "and expand it with cinematic details."
        )
    else:
        language_rule = (
            "Keep the core meaning of the user input, "
            "but ensure it is in professional cinematic English."
        )

    lines = [
        "You are an expert multilingual cinematic director for Google Veo.",
        f"Your goal is to {goal} user requests into high-end, SAFE, English cinematic prompts.",
    ]
    if preset is not PromptPreset.NONE:
        lines.append(f"SPECIAL INSTRUCTION: {preset.instruction}")

    lines += [
        "STRICT PROTOCOL:",
        f"1. LANGUAGE: {language_rule}",
        "2. CULTURAL CONTEXT: If the user writes in a specific language or names a cultural "
        "setting, keep the subject's features and surroundings consistent with it unless "
        "specified otherwise.",
        "3. GENDER LOCK: Preserve every gender marker from the source text literally. "
        "Never infer a gender that is not stated and never swap one that is.",
        "4. SAFETY & COMPLIANCE: Use artistic language that avoids triggering Vertex AI "
        "safety filters. Avoid overly detailed physical descriptions that might be flagged. "
        'Focus on "Cinematic", "Professional", and "Artistic".',
    ]
    speech_rule = (
        "5. SPEECH: If the user mentions dialogue, describe clear speech with visible lip "
        "synchronization and a friendly facial expression."
    )
    if generate_audio:
        speech_rule += (
            " Also describe a warm, clear voice in the spoken language to guide the audio engine."
        )
    lines += [
        speech_rule,
        "6. TECHNIQUE: Specify camera lens (e.g., 35mm), soft volumetric lighting, "
        "and 8K photorealistic textures.",
        "Reply with the final prompt only.",
        "",
        f"USER INPUT: {raw_prompt}",
    ]
    return "\n".join(lines)


def extract_candidate_text(payload: dict) -> str | None:
    """Pull the first candidate's first text part from a generateContent response."""
    candidates = payload.get("candidates") or []
    if not candidates:
        return None
    parts = (candidates[0].get("content") or {}).get("parts") or []
    if not parts:
        return None
    text = parts[0].get("text")
    if not isinstance(text, str) or not text.strip():
        return None
    return text.strip()


class PromptEnricher:
    """Best-effort prompt rewriting through a Gemini model on Vertex AI."""

    def __init__(
        self,
        config: VertexConfig,
        credentials: ServiceAccountCredentialProvider,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.credentials = credentials
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.config.model_url(self.config.enrichment_model)}:generateContent"

    async def enrich(
        self,
        raw_prompt: str,
        preset: PromptPreset = PromptPreset.NONE,
        translate: bool = False,
        generate_audio: bool = False,
    ) -> str:
        """Return the refined prompt, or raw_prompt on any failure. Never raises."""
        try:
            refined = await self._request_refinement(raw_prompt, preset, translate, generate_audio)
        except Exception as e:
            logger.warning(
                "prompt.enrichment.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return raw_prompt

        if not refined:
            return raw_prompt

        logger.info("prompt.enrichment.succeeded", enhanced_prompt=refined)
        return refined

    async def _request_refinement(
        self,
        raw_prompt: str,
        preset: PromptPreset,
        translate: bool,
        generate_audio: bool,
    ) -> str | None:
        token = await self.credentials.acquire_token()
        if not token:
            logger.warning("prompt.enrichment.skipped", reason="no_access_token")
            return None

        instruction = build_enrichment_instruction(raw_prompt, preset, translate, generate_audio)
        async with httpx.AsyncClient(
            timeout=self.config.enrichment_timeout_seconds, transport=self._transport
        ) as client:
            response = await client.post(
                self.endpoint,
                headers={"Authorization": f"Bearer {token}"},
                json={"contents": [{"role": "user", "parts": [{"text": instruction}]}]},
            )

        if response.status_code != 200:
            logger.warning(
                "prompt.enrichment.rejected",
                status_code=response.status_code,
                body=response.text[:300],
            )
            return None

        return extract_candidate_text(response.json())
