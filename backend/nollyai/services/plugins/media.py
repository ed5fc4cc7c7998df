"""Media plugins backed by Replicate predictions.

All of these are long-running: ``run`` creates a prediction and usually
returns ``running`` with a handle; the scheduler then calls ``poll`` until
Replicate reports a terminal status.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from nollyai.services.plugins.base import LatencyClass, Plugin, PluginResult, ValidationResult
from nollyai.services.replicate import ReplicateClient, get_replicate_client

if TYPE_CHECKING:
    from nollyai.models.job import Job

logger = logging.getLogger(__name__)


RUNNING_PREDICTION_STATUSES = {"starting", "processing"}
FAILED_PREDICTION_STATUSES = {"failed", "canceled"}


def _is_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(("http://", "https://"))


def first_output_url(output: Any) -> str | None:
    if isinstance(output, str):
        return output or None
    if isinstance(output, list):
        for item in output:
            url = first_output_url(item)
            if url:
                return url
        return None
    if isinstance(output, dict):
        for key in ("model", "model_file", "mesh", "output", "audio", "image", "video"):
            url = first_output_url(output.get(key))
            if url:
                return url
    return None


class ReplicatePlugin(Plugin):
    latency = LatencyClass.LONG
    model_version: str = ""
    credits: int = 0
    # Payload keys that may carry the input media URL, in priority order
    url_keys: tuple[str, ...] = ("file_url",)

    def __init__(self, client_factory: Callable[[], ReplicateClient] = get_replicate_client) -> None:
        self._client_factory = client_factory

    def input_url(self, payload: dict[str, Any]) -> str | None:
        for key in self.url_keys:
            value = payload.get(key)
            if value:
                return value
        return None

    def validate(self, payload: dict[str, Any]) -> ValidationResult:
        errors: list[str] = []
        url = self.input_url(payload)
        if url is None:
            errors.append(f"{' or '.join(self.url_keys)} is required")
        elif not _is_url(url):
            errors.append("input URL must be an http(s) URL")
        return ValidationResult.from_errors(errors)

    def cost(self, payload: dict[str, Any]) -> int:
        return self.credits

    def describe(self) -> dict[str, Any]:
        out = super().describe()
        out["cost"] = self.credits
        return out

    def build_input(self, payload: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def context(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Payload-derived values carried in the handle for building the result."""
        return {}

    def build_result(self, output_url: str, prediction_id: str, context: dict[str, Any]) -> dict[str, Any]:
        return {"output_url": output_url, "prediction_id": prediction_id}

    def interpret(self, prediction: dict[str, Any], context: dict[str, Any]) -> PluginResult:
        prediction_id = str(prediction.get("id") or "")
        status = str(prediction.get("status") or "").lower()
        if status in RUNNING_PREDICTION_STATUSES:
            if not prediction_id:
                return PluginResult.failed("Replicate returned a prediction without an id")
            return PluginResult.running({"prediction_id": prediction_id, "context": context})
        if status == "succeeded":
            url = first_output_url(prediction.get("output"))
            if not url:
                return PluginResult.failed("Replicate prediction succeeded without an output URL")
            return PluginResult.done(self.build_result(url, prediction_id, context))
        if status in FAILED_PREDICTION_STATUSES:
            error = prediction.get("error") or status
            return PluginResult.failed(f"Replicate prediction {status}: {error}")
        return PluginResult.failed(f"Unexpected Replicate prediction status: {status or 'missing'}")

    async def run(self, job: "Job") -> PluginResult:
        payload = job.payload or {}
        client = self._client_factory()
        try:
            prediction = await client.create_prediction(version=self.model_version, input=self.build_input(payload))
        finally:
            await client.aclose()
        logger.info("%s: prediction %s created job=%s", self.job_type, prediction.get("id"), job.id)
        return self.interpret(prediction, self.context(payload))

    async def poll(self, handle: dict[str, Any]) -> PluginResult:
        client = self._client_factory()
        try:
            prediction = await client.get_prediction(str(handle["prediction_id"]))
        finally:
            await client.aclose()
        return self.interpret(prediction, dict(handle.get("context") or {}))


class RotoPlugin(ReplicatePlugin):
    job_type = "roto"
    name = "Roto / Background Removal"
    model_version = "cjwbw/rembg:95fcc2a26d3899cd6c2691c900465aaeff466285a65c14638cc5f36f34befaf1"
    credits = 10
    url_keys = ("file_url", "video_url")

    def build_input(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"image": self.input_url(payload)}

    def build_result(self, output_url: str, prediction_id: str, context: dict[str, Any]) -> dict[str, Any]:
        return {"mask_url": output_url, "prediction_id": prediction_id}


COLOR_PRESETS: dict[str, str] = {
    "cinematic": "cinematic teal and orange grade, rich contrast, filmic highlights",
    "warm": "warm golden tones, soft highlights, gentle contrast",
    "cool": "cool blue tones, crisp shadows, clean whites",
    "vintage": "faded vintage film look, lifted blacks, muted colours, subtle grain",
    "noir": "black and white film noir, deep shadows, high contrast",
    "nollywood_gold": "vibrant Nollywood look, golden skin tones, saturated warm colours",
}


class ColorGradePlugin(ReplicatePlugin):
    job_type = "color-grade"
    name = "Color Grade"
    model_version = "instantx/instantid:9c88af5c0f51ae59a166985fc0c66e90c3e72db7bbdc1dd38dfed6b79c28fae3"
    credits = 3
    url_keys = ("file_url", "image_url")

    def _preset(self, payload: dict[str, Any]) -> str:
        return str(payload.get("preset") or "cinematic").strip().lower()

    def validate(self, payload: dict[str, Any]) -> ValidationResult:
        result = super().validate(payload)
        errors = list(result.errors)
        if self._preset(payload) not in COLOR_PRESETS:
            errors.append(f"preset must be one of: {', '.join(COLOR_PRESETS)}")
        return ValidationResult.from_errors(errors)

    def build_input(self, payload: dict[str, Any]) -> dict[str, Any]:
        prompt = COLOR_PRESETS[self._preset(payload)]
        return {
            "image": self.input_url(payload),
            "prompt": f"{prompt} - Apply professional color grading and cinematic enhancement",
            "negative_prompt": "low quality, blurry, oversaturated",
            "num_inference_steps": 30,
            "guidance_scale": 5,
        }

    def context(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"preset": self._preset(payload)}

    def build_result(self, output_url: str, prediction_id: str, context: dict[str, Any]) -> dict[str, Any]:
        return {"output_url": output_url, "preset": context.get("preset"), "prediction_id": prediction_id}


class AudioCleanupPlugin(ReplicatePlugin):
    job_type = "audio-cleanup"
    name = "Audio Cleanup"
    model_version = "afiaka87/tortoise-tts:e9658de4b325863c4fcdc12d94bb7c9b54cbfe351b7ca1b36860008172b91c71"
    credits = 3
    url_keys = ("file_url", "audio_url")

    def build_input(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"text": "enhance and clean this audio", "voice_a": self.input_url(payload), "preset": "fast"}


MESH_MIN_FACES = 1000
MESH_MAX_FACES = 200_000
MESH_DEFAULT_FACES = 10_000
MESH_FILE_TYPES = ("glb", "obj")


class MeshGenerationPlugin(ReplicatePlugin):
    job_type = "mesh-generation"
    name = "Mesh Generation"
    model_version = "firtoz/trellis:4876f2a8da1c544772dffa32e8889da4a1bab3a1f5c1937bfcfccb99ae347251"
    credits = 25
    url_keys = ("image_url",)
    # Image-to-3D runs are slow
    poll_deadline_s = 900.0

    def validate(self, payload: dict[str, Any]) -> ValidationResult:
        errors: list[str] = []
        image_url = payload.get("image_url")
        prompt = payload.get("prompt")
        if not image_url and not (isinstance(prompt, str) and prompt.strip()):
            errors.append("image_url or prompt is required")
        if image_url and not _is_url(image_url):
            errors.append("image_url must be an http(s) URL")

        faces = payload.get("target_faces", MESH_DEFAULT_FACES)
        if isinstance(faces, bool) or not isinstance(faces, int) or not (MESH_MIN_FACES <= faces <= MESH_MAX_FACES):
            errors.append(f"target_faces must be an integer between {MESH_MIN_FACES} and {MESH_MAX_FACES}")

        file_type = payload.get("file_type", "glb")
        if file_type not in MESH_FILE_TYPES:
            errors.append(f"file_type must be one of: {', '.join(MESH_FILE_TYPES)}")
        return ValidationResult.from_errors(errors)

    def build_input(self, payload: dict[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {
            "seed": 42,
            "generate_model": True,
            "slat_sampler_params_scale": 0.005,
            "slat_sampler_params_steps": 12,
        }
        if payload.get("image_url"):
            out["image"] = payload["image_url"]
        else:
            out["prompt"] = payload["prompt"].strip()
        return out

    def context(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "format": payload.get("file_type", "glb"),
            "target_faces": payload.get("target_faces", MESH_DEFAULT_FACES),
        }

    def build_result(self, output_url: str, prediction_id: str, context: dict[str, Any]) -> dict[str, Any]:
        return {
            "mesh_url": output_url,
            "format": context.get("format", "glb"),
            "target_faces": context.get("target_faces", MESH_DEFAULT_FACES),
            "prediction_id": prediction_id,
        }
