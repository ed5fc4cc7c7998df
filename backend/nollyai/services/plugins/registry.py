"""Job type registry: maps a job ``type`` string to its Plugin."""

from __future__ import annotations

import logging
from typing import Iterable

from nollyai.core.errors import UnsupportedJobType
from nollyai.services.plugins.base import Plugin

logger = logging.getLogger(__name__)


class PluginRegistry:
    def __init__(self) -> None:
        self._plugins: dict[str, Plugin] = {}
        self._aliases: dict[str, str] = {}

    def register(self, job_type: str, plugin: Plugin, aliases: Iterable[str] = ()) -> None:
        key = _normalize(job_type)
        if not key:
            raise ValueError("job type must be a non-empty string")
        if key in self._plugins or key in self._aliases:
            raise ValueError(f"job type '{key}' is already registered")
        self._plugins[key] = plugin
        for alias in aliases:
            alias_key = _normalize(alias)
            if alias_key and alias_key != key:
                self._aliases[alias_key] = key
        logger.debug("registered job type %s (%s)", key, plugin.name or type(plugin).__name__)

    def canonical_type(self, job_type: str) -> str:
        key = _normalize(job_type)
        key = self._aliases.get(key, key)
        if key not in self._plugins:
            raise UnsupportedJobType(f"Unsupported job type: {job_type!r}", supported=self.types())
        return key

    def resolve(self, job_type: str) -> Plugin:
        return self._plugins[self.canonical_type(job_type)]

    def types(self) -> list[str]:
        return sorted(self._plugins)

    def plugins(self) -> list[Plugin]:
        return [self._plugins[k] for k in self.types()]

    def __contains__(self, job_type: object) -> bool:
        if not isinstance(job_type, str):
            return False
        key = _normalize(job_type)
        return key in self._plugins or key in self._aliases


def _normalize(job_type: str) -> str:
    return str(job_type or "").strip().lower()


def build_default_registry() -> PluginRegistry:
    from nollyai.services.plugins.chat_assistant import ChatAssistantPlugin
    from nollyai.services.plugins.media import (
        AudioCleanupPlugin,
        ColorGradePlugin,
        MeshGenerationPlugin,
        RotoPlugin,
    )
    from nollyai.services.plugins.script_breakdown import ScriptBreakdownPlugin

    registry = PluginRegistry()
    registry.register("script-breakdown", ScriptBreakdownPlugin(), aliases=("super_breakdown", "breakdown"))
    registry.register("roto", RotoPlugin(), aliases=("roto-tracking",))
    registry.register("color-grade", ColorGradePlugin())
    registry.register("audio-cleanup", AudioCleanupPlugin(), aliases=("audio-clean",))
    registry.register("mesh-generation", MeshGenerationPlugin(), aliases=("mesh",))
    registry.register("chat-assistant", ChatAssistantPlugin(), aliases=("chat",))
    return registry


_default_registry: PluginRegistry | None = None


def get_registry() -> PluginRegistry:
    global _default_registry
    if _default_registry is None:
        _default_registry = build_default_registry()
    return _default_registry
