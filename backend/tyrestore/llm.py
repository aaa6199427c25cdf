"""OpenRouter chat-completions client and parsers for its free-text answers."""
import json
import os
import re
from typing import Any, Dict, List, Optional

import httpx
from fastapi import HTTPException

from .logs import log_event
from .sizes import extract_sizes, unique_sizes

OPENROUTER_API_KEY = (os.environ.get("OPENROUTER_API_KEY") or os.environ.get("OPENROUTER_KEY") or "").strip()
OPENROUTER_URL = os.environ.get("OPENROUTER_URL", "https://openrouter.ai/api/v1/chat/completions").strip()
OPENROUTER_MODEL = os.environ.get("OPENROUTER_MODEL", "deepseek/deepseek-chat-v3.1:free").strip()
OPENROUTER_SEARCH_MODEL = os.environ.get("OPENROUTER_SEARCH_MODEL", "openai/gpt-4o-mini").strip()
OPENROUTER_TIMEOUT_SECONDS = float(os.environ.get("OPENROUTER_TIMEOUT_SECONDS", "20").strip() or 20)

MISSING_MMY = "ERROR_MISSING_MMY"


async def chat_completion(
    messages: List[Dict[str, str]],
    *,
    model: str,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> str:
    """Return the first choice's message content (stripped)."""
    if not OPENROUTER_API_KEY:
        raise HTTPException(status_code=503, detail="server missing AI API key")
    payload: Dict[str, Any] = {"model": model, "messages": messages}
    if temperature is not None:
        payload["temperature"] = temperature
    if max_tokens is not None:
        payload["max_tokens"] = max_tokens
    headers = {
        "Authorization": f"Bearer {OPENROUTER_API_KEY}",
        "Content-Type": "application/json",
    }
    try:
        async with httpx.AsyncClient(timeout=OPENROUTER_TIMEOUT_SECONDS) as client:
            r = await client.post(OPENROUTER_URL, headers=headers, json=payload)
            r.raise_for_status()
            data = r.json()
    except (httpx.HTTPError, ValueError) as e:
        log_event("llm", model=model, error=str(e))
        raise HTTPException(status_code=502, detail="AI request failed")
    choices = data.get("choices") or []
    if not choices:
        raise HTTPException(status_code=502, detail="AI returned empty response")
    return ((choices[0].get("message") or {}).get("content") or "").strip()


def strip_code_fences(text: str) -> str:
    return re.sub(r"```(?:json)?", "", text or "").strip()


def parse_size_list(content: str) -> List[str]:
    """A JSON array of sizes, or failing that every size-looking token; canonical and de-duplicated."""
    try:
        parsed = json.loads(strip_code_fences(content))
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return unique_sizes(parsed)
    return extract_sizes(content)


def parse_typed_sizes(content: str) -> List[Dict[str, str]]:
    """Parse {"sizes": [{"size", "type"}]}; raises ValueError when the shape is wrong."""
    parsed = json.loads(strip_code_fences(content))
    if not isinstance(parsed, dict) or not isinstance(parsed.get("sizes"), list):
        raise ValueError("missing sizes")
    out = []
    for s in parsed["sizes"]:
        if isinstance(s, dict) and s.get("size"):
            out.append({"size": str(s["size"]).strip(), "type": str(s.get("type") or "Unknown").strip()})
        elif isinstance(s, str) and s.strip():
            out.append({"size": s.strip(), "type": "Unknown"})
    return out


SEARCH_SYSTEM_PROMPT = """
You are TyreFusion-AI.
Your task is to extract the car make, model, and year from ANY user text.

RULES:

1. Try your maximum best to infer:
   - Make
   - Model
   - Year
   Even if the user provides text like "creta 2019", "swift 2018 tyres", "need tyre for honda city", etc.

2. If you cannot identify all 3 fields with at least 80% confidence, ONLY THEN return:
   ERROR_MISSING_MMY

3. After identifying MMY, return tyre sizes in this JSON format:
{
  "sizes": [
    { "size": "205/65R16", "type": "Factory Fitment" },
    { "size": "215/60R17", "type": "Factory Fitment" },
    { "size": "225/55R17", "type": "Aftermarket Upgrade" }
  ]
}

4. Do NOT add any sentences, disclaimers, comments, or Markdown.

5. If the tyre size is not factory, mark:
   "type": "Aftermarket Upgrade"

6. If uncertain about a size:
   "type": "Unknown"

7. Return JSON ONLY.
"""


def fitment_prompt(make: str, model: str, year: Any) -> str:
    return f"""
You are an Indian automotive tyre fitment expert.

Given the following car details:
- Make: {make}
- Model: {model}
- Year: {year}

List all common OEM and safe upgrade tyre sizes that are suitable for this car model and year in India.

The list must include:
- Factory-fitted OEM sizes.
- Popular upgrade sizes (for +1 or +2 inch rims), only if they are compatible without major modifications.

Respond ONLY as a single JSON array of tyre sizes.
Example:
["195/65R15", "205/60R16", "215/55R17"]

Do not add any explanations, text, or formatting; just return the array.
"""
