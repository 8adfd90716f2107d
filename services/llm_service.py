# services/llm_service.py
from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, Optional

from openai import AsyncOpenAI

from request_context import get_request_id
from services.domain import DistrictContext, GenerationResult

log = logging.getLogger("llm")

SYSTEM_PROMPT = """You are a local travel scout who only recommends places that really exist.

Return strictly VALID JSON with exactly two keys:
{"place_name": "<official name of ONE real venue>", "description": "<one or two sentences>"}

Rules:
- The venue must be a real, currently operating business or site located inside the given district.
- Use the name exactly as it appears on the storefront or on Google Maps.
- Never invent generic names such as "<district> exploration" or "<district> food".
- Never repeat a name from the exclusion list.
- No markdown, no prose outside the JSON.
"""

LANGUAGE_NAMES = {
    "zh-TW": "Traditional Chinese (zh-TW)",
    "en": "English",
    "ja": "Japanese",
    "ko": "Korean",
}

def build_candidate_prompt(
    ctx: DistrictContext,
    category: str,
    subcategory: str,
    language: str,
    exclusions: Iterable[str] = (),
) -> str:
    excluded = [e for e in exclusions if e]
    blocks = [
        "Recommend one place to visit.",
        f"country: {ctx.country_name}",
        f"region: {ctx.region_name}",
        f"district: {ctx.district_name}",
        f"category: {category}",
        f"subcategory: {subcategory}",
        f"output_language: {LANGUAGE_NAMES.get(language, language)}",
        f"exclude: {', '.join(excluded) if excluded else 'none'}",
    ]
    return "\n".join(blocks)

def _strip_code_fences(s: str | None) -> str:
    if not s:
        return ""
    t = s.strip()
    if t.startswith("```"):
        parts = t.split("```")
        if len(parts) >= 3:
            body = parts[1].strip()
            # drop a language tag such as ```json
            if body.lower().startswith("json"):
                body = body[4:].strip()
            return body
    return t

def _unwrap_root(candidate: Any) -> Any:
    if isinstance(candidate, dict) and len(candidate) == 1:
        k = next(iter(candidate.keys()))
        if k in {"place", "data", "result", "recommendation"}:
            return candidate[k]
    if isinstance(candidate, list) and candidate:
        return candidate[0]
    return candidate

# ---------- templated non-answers ----------
_TEMPLATED_NAME_PATTERNS = [
    re.compile(r"探索$"),
    re.compile(r"^.{2,4}(鄉|區|市|鎮|村).{2,6}探索$"),
    re.compile(r"^.{2,4}(鄉|區|市|鎮|村).{2,4}(美食|購物|景點|住宿|體驗)$"),
    re.compile(r"真實店家名稱"),
    re.compile(r"^REAL place", re.IGNORECASE),
    re.compile(r"\bExploration$", re.IGNORECASE),
    re.compile(r"^<[^>]*>$"),
    re.compile(r"place[_ ]name", re.IGNORECASE),
]
_NO_MATCH_DESCRIPTIONS = ("無符合條件", "目前無符合", "沒有符合", "no matching")

def is_templated(name: str, description: str = "", ctx: Optional[DistrictContext] = None) -> bool:
    n = (name or "").strip()
    if not n:
        return True
    if any(p.search(n) for p in _TEMPLATED_NAME_PATTERNS):
        return True
    if ctx is not None and n in {ctx.district_name, ctx.region_name, ctx.country_name}:
        return True
    d = (description or "").casefold()
    return any(marker.casefold() in d for marker in _NO_MATCH_DESCRIPTIONS)

def parse_generation(text: str | None, ctx: Optional[DistrictContext] = None) -> GenerationResult:
    """Turn a raw completion into a tagged result; never raises."""
    content = _strip_code_fences(text)
    if not content:
        return GenerationResult.failure("unparseable")
    try:
        raw = _unwrap_root(json.loads(content))
    except json.JSONDecodeError:
        return GenerationResult.failure("unparseable")
    if not isinstance(raw, dict):
        return GenerationResult.failure("unparseable")

    name = raw.get("place_name") or raw.get("name")
    description = raw.get("description") or ""
    if not isinstance(name, str) or not name.strip():
        return GenerationResult.failure("unparseable")
    name = name.strip()
    description = str(description).strip()

    if is_templated(name, description, ctx):
        return GenerationResult.failure("templated", name=name)
    return GenerationResult.success(name, description)

class OpenAIGenerator:
    """Chat-completions client in JSON mode. Errors propagate; callers own retry and timeouts."""

    def __init__(self, api_key: str, model: str, temperature: float = 0.7,
                 client: AsyncOpenAI | None = None) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key)
        self._model = model
        self._temperature = temperature

    async def generate(self, prompt: str) -> str:
        chat = await self._client.chat.completions.create(
            model=self._model,
            temperature=self._temperature,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        )
        content = chat.choices[0].message.content
        log.debug("LLM call ok (json_mode)", extra={"request_id": get_request_id(), "model": self._model})
        return content or ""

    async def aclose(self) -> None:
        await self._client.close()
