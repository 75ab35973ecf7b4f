"""
Studio API client

Async wrapper over the ambient visual backend routes with error mapping,
retry logic for idempotent reads, and structured logging.

Key Features:
- One httpx.AsyncClient per instance, usable as an async context manager
- Retry with exponential backoff on network failures for GET requests
- Non-2xx responses raised as ApiError carrying the server's error message
- Typed responses for every generation route
"""

import logging
from typing import Any, Dict, Optional, Type, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from ambient_studio.config import settings
from ambient_studio.pipeline.error_handler import ApiError, ErrorCode
from ambient_studio.schemas import (
    AudioResponse,
    BatchGenerationResponse,
    FlowDesignResponse,
    MusicResponse,
    ShotGenerationResponse,
    SoundEffectRecommendation,
    Stage5InitResponse,
    VoiceoverScriptResponse,
)


logger = structlog.get_logger(__name__)

RETRYABLE_TRANSPORT_ERRORS = (httpx.NetworkError, httpx.TimeoutException)

ResponseT = TypeVar("ResponseT", bound=BaseModel)


class StudioApiClient:
    """
    Client for the ambient visual workflow routes.

    Usage:
        async with StudioApiClient() as client:
            video = await client.get_video("video-123")
            await client.continue_stage("video-123", 1, {"mood": "calm"})
    """

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        timeout: float = None,
        transport: httpx.AsyncBaseTransport = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: API root (default: STUDIO_API_BASE_URL)
            api_key: Sent as X-API-Key when set (default: STUDIO_API_KEY)
            timeout: Per-request timeout in seconds (default: STUDIO_HTTP_TIMEOUT)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/") + settings.mode_prefix
        headers = {"Content-Type": "application/json"}
        key = api_key if api_key is not None else settings.API_KEY
        if key:
            headers["X-API-Key"] = key

        self.logger = logger.bind(service="studio_api_client")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout or settings.HTTP_TIMEOUT,
            transport=transport,
        )

    async def __aenter__(self) -> "StudioApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    # ===== Transport =====

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        """
        Send one request and decode the JSON body.

        Raises:
            ApiError: On non-2xx status (with server message) or transport failure
        """
        self.logger.debug("api_request", method=method, path=path)
        try:
            response = await self.client.request(method, path, json=json)
        except RETRYABLE_TRANSPORT_ERRORS:
            raise
        except httpx.HTTPError as e:
            raise ApiError(f"Request to {path} failed: {e}", path=path) from e

        if response.is_error:
            message = self._error_message(response)
            self.logger.warning(
                "api_request_failed",
                method=method,
                path=path,
                status_code=response.status_code,
                error=message,
            )
            raise ApiError(message, status_code=response.status_code, path=path)

        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            return body.get("error") or body.get("details") or body.get("message") or f"HTTP {response.status_code}"
        return f"HTTP {response.status_code}"

    async def _send(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        """Non-idempotent request: transport failures become ApiError without retry."""
        try:
            return await self._request(method, path, json)
        except RETRYABLE_TRANSPORT_ERRORS as e:
            raise ApiError(f"Request to {path} failed: {e}", path=path) from e

    @retry(
        stop=stop_after_attempt(settings.HTTP_MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(RETRYABLE_TRANSPORT_ERRORS),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )
    async def _get_with_retry(self, path: str) -> Any:
        return await self._request("GET", path)

    async def _get(self, path: str) -> Any:
        try:
            return await self._get_with_retry(path)
        except RETRYABLE_TRANSPORT_ERRORS as e:
            raise ApiError(f"Request to {path} failed: {e}", path=path) from e

    def _parse(self, model: Type[ResponseT], data: Any, path: str) -> ResponseT:
        """
        Validate a response body against its expected shape.

        Raises:
            ApiError: If the body does not match the model
        """
        try:
            return model.model_validate(data)
        except ValidationError as e:
            self.logger.warning(
                "api_response_malformed",
                path=path,
                model=model.__name__,
                errors=e.error_count(),
            )
            raise ApiError(
                f"Malformed response from {path}: {e.error_count()} invalid field(s)",
                path=path,
                details={"fields": [".".join(str(part) for part in err["loc"]) for err in e.errors()]},
                code=ErrorCode.API_MALFORMED_RESPONSE,
            ) from e

    # ===== Project =====

    async def get_video(self, video_id: str) -> Dict[str, Any]:
        """Fetch the full project record including every stepNData slice."""
        return await self._get(f"/videos/{video_id}")

    async def continue_stage(self, video_id: str, stage: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Persist stage N's slice (PATCH step/{n}/continue)."""
        return await self._send("PATCH", f"/videos/{video_id}/step/{stage}/continue", payload)

    async def continue_to_stage5(self, video_id: str) -> Stage5InitResponse:
        path = f"/videos/{video_id}/step/4/continue-to-5"
        return self._parse(Stage5InitResponse, await self._send("PATCH", path, {}), path)

    async def continue_to_stage6(self, video_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._send("PATCH", f"/videos/{video_id}/step/5/continue-to-6", payload)

    async def patch_step4_settings(self, video_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._send("PATCH", f"/videos/{video_id}/step4/settings", payload)

    async def patch_step5_settings(self, video_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._send("PATCH", f"/videos/{video_id}/step5/settings", payload)

    # ===== Generation =====

    async def generate_flow_design(self, video_id: str, payload: Dict[str, Any]) -> FlowDesignResponse:
        path = "/flow-design/generate"
        data = await self._send("POST", path, {"videoId": video_id, **payload})
        return self._parse(FlowDesignResponse, data, path)

    async def generate_all_prompts(self, video_id: str) -> BatchGenerationResponse:
        path = f"/videos/{video_id}/generate-all-prompts"
        return self._parse(BatchGenerationResponse, await self._send("POST", path, {}), path)

    async def generate_all_images(self, video_id: str) -> BatchGenerationResponse:
        path = f"/videos/{video_id}/generate-all-images"
        return self._parse(BatchGenerationResponse, await self._send("POST", path, {}), path)

    async def generate_all_videos(self, video_id: str) -> BatchGenerationResponse:
        path = f"/videos/{video_id}/generate-all-videos"
        return self._parse(BatchGenerationResponse, await self._send("POST", path, {}), path)

    async def generate_image(self, video_id: str, shot_id: str, frame: str = "start") -> ShotGenerationResponse:
        path = f"/videos/{video_id}/shots/{shot_id}/generate-image"
        data = await self._send("POST", path, {"frame": frame})
        return self._parse(ShotGenerationResponse, data, path)

    async def regenerate_image(self, video_id: str, shot_id: str, frame: str = "start") -> ShotGenerationResponse:
        path = f"/videos/{video_id}/shots/{shot_id}/regenerate-image"
        data = await self._send("POST", path, {"frame": frame})
        return self._parse(ShotGenerationResponse, data, path)

    async def generate_video(self, video_id: str, shot_id: str) -> ShotGenerationResponse:
        path = f"/videos/{video_id}/shots/{shot_id}/generate-video"
        return self._parse(ShotGenerationResponse, await self._send("POST", path, {}), path)

    async def recommend_sound_effect(self, video_id: str, shot_id: str) -> SoundEffectRecommendation:
        path = f"/videos/{video_id}/shots/{shot_id}/sound-effect/recommend"
        return self._parse(SoundEffectRecommendation, await self._get(path), path)

    async def generate_sound_effect(
        self,
        video_id: str,
        shot_id: str,
        description: str,
        previous_url: Optional[str] = None,
    ) -> AudioResponse:
        path = f"/videos/{video_id}/shots/{shot_id}/sound-effect/generate"
        payload = {"prompt": description}
        if previous_url:
            payload["previousSoundEffectUrl"] = previous_url
        return self._parse(AudioResponse, await self._send("POST", path, payload), path)

    async def generate_voiceover_script(self, video_id: str) -> VoiceoverScriptResponse:
        path = f"/videos/{video_id}/voiceover/generate-script"
        return self._parse(VoiceoverScriptResponse, await self._send("POST", path, {}), path)

    async def generate_voiceover_audio(self, video_id: str, script: str) -> AudioResponse:
        path = f"/videos/{video_id}/voiceover/generate-audio"
        data = await self._send("POST", path, {"script": script})
        return self._parse(AudioResponse, data, path)

    async def generate_music(self, video_id: str, style: Optional[str] = None) -> MusicResponse:
        path = f"/videos/{video_id}/music/generate"
        payload = {"style": style} if style else {}
        return self._parse(MusicResponse, await self._send("POST", path, payload), path)
