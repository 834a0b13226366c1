"""
LLM access for rule extraction.

Both providers get the same system instruction and are asked for JSON.
Clients are built on first use so the module imports without API keys.
"""
from typing import Optional

import config
from sop_engine.errors import ExtractionError
from sop_engine.utils.logger import get_logger

# --- IMPORTS FOR GOOGLE ---
from google import genai
from google.genai import types

# --- IMPORTS FOR OPENAI ---
from openai import AsyncOpenAI

logger = get_logger(__name__)

# ==========================================
# CONFIGURATION
# ==========================================
SYSTEM_INSTRUCTION = (
    "You extract billing rules from payer policy and SOP text. "
    "Answer with JSON only. Never invent codes, payers or modifiers "
    "that the text does not state."
)

# Models that accept reasoning_effort instead of temperature
OPENAI_REASONING_MODELS = {"gpt-5", "gpt-5-mini", "gpt-5.1", "o1", "o3", "o3-mini", "o4-mini"}

_clients = {}


def _google_client() -> genai.Client:
    if "google" not in _clients:
        if not config.GOOGLE_API_KEY:
            raise ExtractionError("GEMINI_API_KEY is missing")
        _clients["google"] = genai.Client(api_key=config.GOOGLE_API_KEY)
    return _clients["google"]


def _openai_client() -> AsyncOpenAI:
    if "openai" not in _clients:
        if not config.OPENAI_API_KEY:
            raise ExtractionError("OPENAI_API_KEY is missing")
        _clients["openai"] = AsyncOpenAI(api_key=config.OPENAI_API_KEY)
    return _clients["openai"]


# ==========================================
# OPENAI
# ==========================================
async def call_openai_model(prompt: str, model: Optional[str] = None,
                            reasoning_effort: Optional[str] = None) -> str:
    """
    Send one extraction prompt to an OpenAI chat model.

    Args:
        prompt: Full extraction prompt
        model: Model name, defaults to OPENAI_MODEL_NAME
        reasoning_effort: "low", "medium" or "high", only for reasoning models
    """
    client = _openai_client()
    model = model or config.OPENAI_MODEL_NAME
    reasoning_effort = reasoning_effort or config.OPENAI_REASONING_EFFORT
    logger.debug(f"OpenAI extraction call: {model} ({len(prompt)} chars)")

    params = {
        "model": model,
        "messages": [
            {"role": "system", "content": SYSTEM_INSTRUCTION},
            {"role": "user", "content": prompt},
        ],
    }
    if model in OPENAI_REASONING_MODELS:
        if reasoning_effort:
            params["reasoning_effort"] = reasoning_effort
    else:
        params["temperature"] = config.EXTRACTION_TEMPERATURE

    try:
        response = await client.chat.completions.create(**params)
    except Exception as e:
        logger.error(f"OpenAI API error ({model}): {e}")
        raise
    return response.choices[0].message.content or ""


# ==========================================
# GOOGLE GEMINI
# ==========================================
async def call_gemini_model(prompt: str, model: Optional[str] = None,
                            thinking_budget: Optional[int] = None) -> str:
    """Send one extraction prompt to Gemini and join the non-thought parts."""
    client = _google_client()
    model = model or config.GOOGLE_MODEL_NAME
    if thinking_budget is None:
        thinking_budget = config.GEMINI_THINKING_BUDGET
    logger.debug(f"Gemini extraction call: {model} ({len(prompt)} chars)")

    gen_config = types.GenerateContentConfig(
        system_instruction=SYSTEM_INSTRUCTION,
        temperature=config.EXTRACTION_TEMPERATURE,
        response_mime_type="application/json",
    )
    if thinking_budget is not None:
        gen_config.thinking_config = types.ThinkingConfig(
            include_thoughts=False,
            thinking_budget=thinking_budget,
        )

    try:
        response = await client.aio.models.generate_content(
            model=model,
            contents=[types.Content(role="user", parts=[types.Part.from_text(text=prompt)])],
            config=gen_config,
        )
    except Exception as e:
        logger.error(f"Gemini API error ({model}): {e}")
        raise

    if not response.candidates or not response.candidates[0].content:
        return ""
    parts = response.candidates[0].content.parts or []
    return "".join(p.text for p in parts if p.text and not getattr(p, "thought", False))


# ==========================================
# ROUTER
# ==========================================
async def call_model(prompt: str, provider: Optional[str] = None) -> str:
    """Send a prompt to the configured provider and return the text answer."""
    provider = (provider or config.AI_PROVIDER).lower()
    if provider == "openai":
        return await call_openai_model(prompt)
    if provider in ("google", "gemini"):
        return await call_gemini_model(prompt)
    raise ExtractionError(f"Unknown AI provider: {provider}")
