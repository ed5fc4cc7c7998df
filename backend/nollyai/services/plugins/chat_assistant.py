from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from nollyai.services.llm.client import OpenAICompatibleLLM, get_llm_client
from nollyai.services.plugins.base import LatencyClass, Plugin, PluginResult, ValidationResult

if TYPE_CHECKING:
    from nollyai.models.job import Job


MAX_MESSAGE_CHARS = 4000
MAX_HISTORY = 20

SYSTEM_PROMPT = (
    "You are an expert AI assistant for Nollywood film pre-production. You help filmmakers with script "
    "breakdowns, shooting schedules, prop lists, cast management, and production planning. Always provide "
    "practical, actionable advice tailored to the Nigerian film industry context."
)


class ChatAssistantPlugin(Plugin):
    job_type = "chat-assistant"
    name = "Production Assistant"
    latency = LatencyClass.SHORT

    def __init__(self, llm_factory: Callable[[], OpenAICompatibleLLM] = get_llm_client) -> None:
        self._llm_factory = llm_factory

    def validate(self, payload: dict[str, Any]) -> ValidationResult:
        errors: list[str] = []
        message = payload.get("message")
        if not isinstance(message, str) or not message.strip():
            errors.append("message is required")
        elif len(message) > MAX_MESSAGE_CHARS:
            errors.append(f"message must be at most {MAX_MESSAGE_CHARS} characters")

        history = payload.get("history")
        if history is not None:
            if not isinstance(history, list):
                errors.append("history must be a list")
            elif len(history) > MAX_HISTORY:
                errors.append(f"history must have at most {MAX_HISTORY} entries")
            else:
                for i, item in enumerate(history):
                    if (
                        not isinstance(item, dict)
                        or item.get("role") not in {"user", "assistant"}
                        or not isinstance(item.get("content"), str)
                    ):
                        errors.append(f"history[{i}] must be {{role: user|assistant, content: str}}")
        return ValidationResult.from_errors(errors)

    def cost(self, payload: dict[str, Any]) -> int:
        return 0

    def describe(self) -> dict[str, Any]:
        out = super().describe()
        out["cost"] = 0
        return out

    async def run(self, job: "Job") -> PluginResult:
        payload = job.payload or {}
        messages: list[dict[str, Any]] = [{"role": "system", "content": SYSTEM_PROMPT}]
        for item in payload.get("history") or []:
            messages.append({"role": item["role"], "content": item["content"]})
        messages.append({"role": "user", "content": payload["message"].strip()})

        llm = self._llm_factory()
        try:
            reply, usage = await llm.chat_completion(messages=messages, purpose="chat_assistant")
        finally:
            await llm.aclose()
        return PluginResult.done({"reply": reply, "model_used": llm.model, "usage": usage})
