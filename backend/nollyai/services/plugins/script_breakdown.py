from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING, Any, Callable

import httpx

from nollyai.core.errors import PluginError
from nollyai.services.llm.client import OpenAICompatibleLLM, extract_json, get_llm_client
from nollyai.services.plugins.base import LatencyClass, Plugin, PluginResult, ValidationResult

if TYPE_CHECKING:
    from nollyai.models.job import Job

logger = logging.getLogger(__name__)


CHUNK_SIZE = 30_000
CREDITS_PER_CHUNK = 5
MAX_SCRIPT_CHARS = 600_000

SYSTEM_PROMPT = """You are a professional Nollywood script breakdown assistant. Analyze this screenplay and return ONLY valid JSON with this exact structure:

{
  "scenes": [
    {
      "scene_number": number,
      "location": "string",
      "time_of_day": "string (DAY/NIGHT/MORNING/EVENING)",
      "description": "brief scene description",
      "characters": ["character names"],
      "props": ["props needed in scene"],
      "notes": "production notes"
    }
  ],
  "characters": [
    {
      "name": "string",
      "role": "LEAD/SUPPORTING/MINOR",
      "description": "character description",
      "appearances": number
    }
  ],
  "locations": [
    {
      "name": "string",
      "type": "INTERIOR/EXTERIOR",
      "description": "location description",
      "scenes": number
    }
  ],
  "props": [
    {
      "name": "string",
      "category": "string",
      "importance": "HIGH/MEDIUM/LOW",
      "scenes": ["scene numbers where used"]
    }
  ],
  "summary": {
    "total_scenes": number,
    "total_characters": number,
    "estimated_shoot_days": number,
    "budget_estimate": "LOW/MEDIUM/HIGH",
    "production_notes": "key production insights"
  }
}

Focus on practical Nollywood production elements. Be detailed and accurate."""

_BUDGET_RANK = {"LOW": 0, "MEDIUM": 1, "HIGH": 2}


def _inline_text(payload: dict[str, Any]) -> str:
    for key in ("script_content", "content"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return ""


def split_chunks(text: str, size: int = CHUNK_SIZE) -> list[str]:
    if not text:
        return []
    return [text[i : i + size] for i in range(0, len(text), size)]


def chunk_count(length: int, size: int = CHUNK_SIZE) -> int:
    return max(1, int(math.ceil(max(0, length) / size)))


def _merge_named(items: list[Any]) -> list[Any]:
    """Collapse entries that share a name (case-insensitive), keeping the first."""
    seen: dict[str, dict[str, Any]] = {}
    out: list[Any] = []
    for item in items:
        if isinstance(item, dict) and isinstance(item.get("name"), str) and item["name"].strip():
            key = item["name"].strip().lower()
            existing = seen.get(key)
            if existing is None:
                merged = dict(item)
                seen[key] = merged
                out.append(merged)
                continue
            if isinstance(existing.get("appearances"), (int, float)) and isinstance(item.get("appearances"), (int, float)):
                existing["appearances"] = existing["appearances"] + item["appearances"]
            if isinstance(existing.get("scenes"), list) and isinstance(item.get("scenes"), list):
                existing["scenes"] = existing["scenes"] + [s for s in item["scenes"] if s not in existing["scenes"]]
            continue
        if item not in out:
            out.append(item)
    return out


def merge_breakdowns(parts: list[dict[str, Any]]) -> dict[str, Any]:
    if len(parts) == 1:
        single = dict(parts[0])
        for key in ("scenes", "characters", "locations", "props"):
            if not isinstance(single.get(key), list):
                single[key] = []
        if not isinstance(single.get("summary"), dict):
            single["summary"] = {"total_scenes": len(single["scenes"])}
        return single

    scenes: list[Any] = []
    characters: list[Any] = []
    locations: list[Any] = []
    props: list[Any] = []
    total_scenes = 0
    shoot_days = 0
    budget: str | None = None
    notes: list[str] = []

    for part in parts:
        for key, bucket in (("scenes", scenes), ("characters", characters), ("locations", locations), ("props", props)):
            value = part.get(key)
            if isinstance(value, list):
                bucket.extend(value)
        summary = part.get("summary") if isinstance(part.get("summary"), dict) else {}
        if isinstance(summary.get("total_scenes"), (int, float)):
            total_scenes += int(summary["total_scenes"])
        if isinstance(summary.get("estimated_shoot_days"), (int, float)):
            shoot_days += int(summary["estimated_shoot_days"])
        candidate = str(summary.get("budget_estimate") or "").upper()
        if candidate in _BUDGET_RANK and (budget is None or _BUDGET_RANK[candidate] > _BUDGET_RANK[budget]):
            budget = candidate
        if isinstance(summary.get("production_notes"), str) and summary["production_notes"].strip():
            notes.append(summary["production_notes"].strip())

    characters = _merge_named(characters)
    locations = _merge_named(locations)
    props = _merge_named(props)
    return {
        "scenes": scenes,
        "characters": characters,
        "locations": locations,
        "props": props,
        "summary": {
            "total_scenes": total_scenes or len(scenes),
            "total_characters": len(characters),
            "total_locations": len(locations),
            "total_props": len(props),
            "estimated_shoot_days": shoot_days or None,
            "budget_estimate": budget or "MEDIUM",
            "production_notes": " ".join(notes) or None,
        },
    }


class ScriptBreakdownPlugin(Plugin):
    job_type = "script-breakdown"
    name = "Script Breakdown"
    latency = LatencyClass.SHORT
    # A long script is several sequential model calls
    run_timeout_s = 300.0

    def __init__(
        self,
        llm_factory: Callable[[], OpenAICompatibleLLM] = get_llm_client,
        transport: httpx.AsyncBaseTransport | None = None,
        chunk_pause_s: float = 0.5,
    ) -> None:
        self._llm_factory = llm_factory
        self._transport = transport
        self._chunk_pause_s = chunk_pause_s

    def validate(self, payload: dict[str, Any]) -> ValidationResult:
        errors: list[str] = []
        text = _inline_text(payload)
        file_url = payload.get("file_url")
        if not text and not file_url:
            errors.append("script_content, content or file_url is required")
        if file_url is not None and not text:
            if not isinstance(file_url, str) or not file_url.startswith(("http://", "https://")):
                errors.append("file_url must be an http(s) URL")
        if len(text) > MAX_SCRIPT_CHARS:
            errors.append(f"script is too long ({len(text)} characters, max {MAX_SCRIPT_CHARS})")
        return ValidationResult.from_errors(errors)

    def cost(self, payload: dict[str, Any]) -> int:
        # Remote files are charged as a single chunk; their length is unknown until run time
        return CREDITS_PER_CHUNK * chunk_count(len(_inline_text(payload)))

    def describe(self) -> dict[str, Any]:
        out = super().describe()
        out["cost"] = f"{CREDITS_PER_CHUNK} credits per {CHUNK_SIZE} characters"
        return out

    async def _download(self, url: str) -> str:
        kwargs: dict[str, Any] = {"timeout": httpx.Timeout(30.0), "follow_redirects": True}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        async with httpx.AsyncClient(**kwargs) as client:
            try:
                resp = await client.get(url)
            except httpx.HTTPError as e:
                raise PluginError(f"Failed to download script file: {e}") from e
        if resp.status_code >= 400:
            raise PluginError(f"Failed to download script file: HTTP {resp.status_code}")
        if "pdf" in (resp.headers.get("content-type") or "").lower():
            raise PluginError("PDF scripts are not supported; upload plain text or Fountain")
        return resp.text

    async def run(self, job: "Job") -> PluginResult:
        payload = job.payload or {}
        text = _inline_text(payload)
        if not text and payload.get("file_url"):
            text = await self._download(str(payload["file_url"]))
        if not text.strip():
            return PluginResult.failed("No script content available")
        if len(text) > MAX_SCRIPT_CHARS:
            return PluginResult.failed(f"Script is too long ({len(text)} characters, max {MAX_SCRIPT_CHARS})")

        chunks = split_chunks(text)
        paid_chunks = int(job.credits_charged or 0) // CREDITS_PER_CHUNK
        if paid_chunks and len(chunks) > paid_chunks:
            return PluginResult.failed(
                f"Script needs {len(chunks)} chunks but {paid_chunks} were paid for; submit the text as script_content"
            )
        llm = self._llm_factory()
        parts: list[dict[str, Any]] = []
        try:
            for i, chunk in enumerate(chunks):
                if len(chunks) > 1:
                    instruction = f"Analyze part {i + 1}/{len(chunks)} of this script."
                else:
                    instruction = "Analyze this complete script."
                content, _usage = await llm.chat_completion(
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {
                            "role": "user",
                            "content": f"{instruction} Return ONLY the JSON structure requested, no additional text:\n\n{chunk}",
                        },
                    ],
                    purpose=f"script_breakdown chunk={i + 1}/{len(chunks)}",
                    json_mode=True,
                )
                parsed = extract_json(content)
                if isinstance(parsed, dict):
                    parts.append(parsed)
                else:
                    logger.warning("script_breakdown: chunk %s/%s unparseable job=%s", i + 1, len(chunks), job.id)
                if self._chunk_pause_s and i < len(chunks) - 1:
                    await asyncio.sleep(self._chunk_pause_s)
        finally:
            await llm.aclose()

        if not parts:
            return PluginResult.failed("Model response could not be parsed as JSON")

        merged = merge_breakdowns(parts)
        merged["script_length"] = len(text)
        merged["chunks_processed"] = len(chunks)
        merged["model_used"] = llm.model
        return PluginResult.done(merged)
