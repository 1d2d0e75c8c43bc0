"""
AI Client (generation/ai_client.py)

Calls the active generative-AI provider for taxonomy lists and MCQs.

Provider config lives in the ai_providers table (api_key, model_name, base_url).
base_url must point at an OpenAI-compatible API; for Gemini that is
https://generativelanguage.googleapis.com/v1beta/openai/

Nothing in here raises to the caller: a missing provider, a network error,
an empty or malformed response all end in the deterministic mock fallback,
so the ingestion pipeline always receives a well-formed list.
"""

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI
from sqlalchemy.orm import Session

from database.models import AiProvider

log = logging.getLogger(__name__)

# ── Config ────────────────────────────────────────────────────────────────────
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "60"))
# 1 = single attempt, then fallback
AI_MAX_ATTEMPTS = max(1, int(os.getenv("AI_MAX_ATTEMPTS", "1")))
AI_RETRY_BACKOFF_SECONDS = float(os.getenv("AI_RETRY_BACKOFF_SECONDS", "1.0"))

STRUCTURE_COUNT = 10
MCQ_COUNT = 5
MOCK_STRUCTURE_COUNT = 5
MOCK_MARKER = "[MOCK]"

# Object envelopes the provider is known to wrap its list in
LIST_FIELDS = ("mcqs", "questions", "items", "list")


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    api_key: str
    model_name: str
    base_url: Optional[str]


# ── Prompts ───────────────────────────────────────────────────────────────────

MCQ_PROMPT = """\
Generate exactly {count} multiple-choice questions (MCQs) about the topic: "{topic}".
The output must be a valid JSON array of objects. Each object must have:
- "question": (string) The MCQ question.
- "options": (array of 4 strings) Four distinct options.
- "correct_option": (integer, 0-3) The index of the correct option.
- "explanation": (string) A detailed explanation of why the answer is correct.
- "subject": (string) Set as "{topic}".
- "chapter": (string) A logical chapter name related to the topic.

Return ONLY the JSON array. Do not include markdown formatting like ```json.
"""

STRUCTURE_PROMPT = """\
Generate a list of exactly {count} {kind} for the following context: "{context}".
Return the result as a valid JSON array of strings.
Example: ["Item 1", "Item 2", ...]
Return ONLY the JSON.
"""

SCHOOL_BOARDS_PROMPT = """\
Return a list of REAL, officially recognized primary/secondary school education boards in the state of "{state_name}", India.
Examples: WBCHSE, CBSE, WBBSE, ICSE, MSBSHSE, UPMSP.
- DO NOT generate placeholders like "Board 1" or "Board A".
- DO NOT use generic names.
- Return exactly {count} boards if possible.
Return only a JSON array of objects with a "name" key.
Example: [{{"name": "CBSE"}}, {{"name": "WBBSE"}}]
Return ONLY JSON. STRICTLY NO MARKDOWN.
"""

SCHOOL_SUBJECTS_PROMPT = """\
Return a list of STRICTLY syllabus-accurate subjects for {class_label} under the REAL "{board_name}" education board in India.
- DO NOT use placeholders like "Subject 1".
- Use real academic subjects (e.g., Mathematics, Bengali, Physics, History).
Return only a JSON array of objects with a "name" key.
Example: [{{"name": "Mathematics"}}, {{"name": "Physics"}}]
Return ONLY JSON. STRICTLY NO MARKDOWN.
"""

SCHOOL_CHAPTERS_PROMPT = """\
Return a list of OFFICIALLY CORRECT chapters for the subject "{subject_name}" in {class_name} of the {board_name} board in India.
- DO NOT use placeholders like "Chapter 1".
- Use real, specific chapter names from the authorized textbook syllabus.
Return only a JSON array of objects with a "name" key.
Example: [{{"name": "Trigonometry"}}, {{"name": "Calculus"}}]
Return ONLY JSON. STRICTLY NO MARKDOWN.
"""


# ── Provider ──────────────────────────────────────────────────────────────────

def get_active_provider(db: Session) -> Optional[ProviderConfig]:
    """Return the active provider with an API key, or None."""
    row = db.query(AiProvider).filter(AiProvider.is_active == True).first()
    if row is None or not row.api_key:
        return None
    return ProviderConfig(
        name=row.name,
        api_key=row.api_key,
        model_name=row.model_name,
        base_url=row.base_url or None,
    )


async def call_provider(provider: ProviderConfig, prompt: str, temperature: float = 0.7, max_tokens: int = 2048) -> str:
    """One chat completion against the provider. Returns the raw message text."""
    async with AsyncOpenAI(
        api_key=provider.api_key,
        base_url=provider.base_url,
        timeout=AI_TIMEOUT_SECONDS,
        max_retries=0,
    ) as client:
        response = await client.chat.completions.create(
            model=provider.model_name,
            messages=[
                {"role": "system", "content": "Return only valid JSON."},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
    if not response.choices:
        return ""
    return response.choices[0].message.content or ""


async def _complete(provider: ProviderConfig, prompt: str) -> str:
    last_error: Optional[Exception] = None
    for attempt in range(1, AI_MAX_ATTEMPTS + 1):
        try:
            text = await call_provider(provider, prompt)
            if not text.strip():
                raise ValueError("AI provider returned an empty response")
            return text
        except Exception as e:
            last_error = e
            log.warning(
                "AI provider %s attempt %s/%s failed: %s",
                provider.name, attempt, AI_MAX_ATTEMPTS, e,
            )
            if attempt < AI_MAX_ATTEMPTS:
                await asyncio.sleep(AI_RETRY_BACKOFF_SECONDS * attempt)
    raise last_error


# ── Response decoding ─────────────────────────────────────────────────────────

def strip_code_fences(text: str) -> str:
    """Remove ```json / ``` markers the provider adds despite instructions."""
    return re.sub(r"```(?:json)?", "", text).strip()


def parse_items(text: str) -> List[Any]:
    """
    Decode provider text into a list.

    Accepted shapes:
      - a bare JSON array
      - an object holding the array under one of LIST_FIELDS

    Anything else, including invalid JSON, decodes to [].
    """
    try:
        data = json.loads(strip_code_fences(text))
    except (json.JSONDecodeError, TypeError):
        log.warning("AI output was not valid JSON: %s", text[:300])
        return []

    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for field in LIST_FIELDS:
            value = data.get(field)
            if isinstance(value, list):
                return value
    log.warning("AI output had an unexpected shape: %s", text[:300])
    return []


def to_candidates(items: List[Any]) -> List[Dict[str, str]]:
    """Wrap bare strings as {"name": ...}; keep objects that carry a string name."""
    candidates = []
    for item in items:
        if isinstance(item, str):
            candidates.append({"name": item})
        elif isinstance(item, dict) and isinstance(item.get("name"), str):
            candidates.append({"name": item["name"]})
    return candidates


def _is_valid_mcq(item: Any) -> bool:
    if not isinstance(item, dict):
        return False
    options = item.get("options")
    correct = item.get("correct_option")
    return (
        isinstance(item.get("question"), str)
        and isinstance(options, list)
        and len(options) == 4
        and isinstance(correct, int)
        and 0 <= correct <= 3
    )


# ── Fallbacks ─────────────────────────────────────────────────────────────────

def fallback_structure(kind: str, context: str) -> List[Dict[str, str]]:
    """Deterministic stand-in list used whenever the provider is unavailable."""
    return [
        {"name": f"{MOCK_MARKER} Sample {kind} {i} ({context})"}
        for i in range(1, MOCK_STRUCTURE_COUNT + 1)
    ]


def fallback_mcqs(topic: str, count: int) -> List[Dict[str, Any]]:
    return [
        {
            "question": f"{MOCK_MARKER} {topic} practice question {i + 1}?",
            "options": ["Option 1", "Option 2", "Option 3", "Option 4"],
            "correct_option": 0,
            "explanation": f"This is a fallback mock explanation for {topic}. Please check AI API configuration.",
            "subject": topic,
            "chapter": "General",
        }
        for i in range(count)
    ]


# ── Public API ────────────────────────────────────────────────────────────────

async def fetch_structure(
    db: Session,
    kind: str,
    context: str,
    prompt: Optional[str] = None,
    count: int = STRUCTURE_COUNT,
) -> List[Dict[str, str]]:
    """
    Generate taxonomy candidates.

    Args:
        kind:    Human label for the list ("boards", "Universities", ...)
        context: Short description of the scope; also used in mock names
        prompt:  Full prompt override (school-specific generators)
        count:   Number of items the prompt asks for

    Returns:
        List of {"name": str}; the mock list on any failure
    """
    provider = get_active_provider(db)
    if provider is None:
        log.warning("No active AI provider or API key found. Falling back to mock %s.", kind)
        return fallback_structure(kind, context)

    if prompt is None:
        prompt = STRUCTURE_PROMPT.format(count=count, kind=kind, context=context)

    try:
        text = await _complete(provider, prompt)
        candidates = to_candidates(parse_items(text))
        if not candidates:
            raise ValueError(f"AI output contained no usable {kind}: {text[:300]}")
        log.info("AI structure fetch: %d %s for %r", len(candidates), kind, context)
        return candidates
    except Exception as e:
        log.error("AI Structure Fetch Error (%s): %s", kind, e)
        return fallback_structure(kind, context)


async def generate_mcqs(db: Session, topic: str, count: int = MCQ_COUNT) -> List[Dict[str, Any]]:
    """Generate up to `count` MCQs for a topic; mock questions on any failure."""
    provider = get_active_provider(db)
    if provider is None:
        log.warning("No active AI provider or API key found. Falling back to mock MCQs.")
        return fallback_mcqs(topic, count)

    try:
        text = await _complete(provider, MCQ_PROMPT.format(count=count, topic=topic))
        mcqs = [item for item in parse_items(text) if _is_valid_mcq(item)]
        if not mcqs:
            raise ValueError(f"AI output contained no valid MCQs: {text[:300]}")
        return mcqs[:count]
    except Exception as e:
        log.error("AI Service Error (mcqs): %s", e)
        return fallback_mcqs(topic, count)


async def generate_school_boards(db: Session, state_name: str) -> List[Dict[str, str]]:
    prompt = SCHOOL_BOARDS_PROMPT.format(state_name=state_name, count=STRUCTURE_COUNT)
    return await fetch_structure(db, "boards", state_name, prompt=prompt)


async def generate_school_subjects(
    db: Session, board_name: str, class_name: str, stream_name: Optional[str] = None
) -> List[Dict[str, str]]:
    class_label = f"{class_name} ({stream_name})" if stream_name else class_name
    prompt = SCHOOL_SUBJECTS_PROMPT.format(class_label=class_label, board_name=board_name)
    return await fetch_structure(db, "subjects", f"{board_name} {class_label}", prompt=prompt)


async def generate_school_chapters(
    db: Session, subject_name: str, board_name: str, class_name: str
) -> List[Dict[str, str]]:
    prompt = SCHOOL_CHAPTERS_PROMPT.format(
        subject_name=subject_name, board_name=board_name, class_name=class_name
    )
    return await fetch_structure(db, "chapters", f"{subject_name}, {board_name} {class_name}", prompt=prompt)
