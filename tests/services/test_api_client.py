"""
Tests for StudioApiClient.

Requests are served by httpx.MockTransport; no network access.
"""

import json

import httpx
import pytest

from ambient_studio.pipeline.error_handler import ApiError, ErrorCode, should_retry
from ambient_studio.schemas import (
    FlowDesignResponse,
    ShotGenerationResponse,
    Stage5InitResponse,
)
from ambient_studio.services.api_client import StudioApiClient


class Recorder:
    """Mock transport handler recording every request"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def body(self, index=-1):
        content = self.requests[index].content
        return json.loads(content) if content else None


def make_client(handler, **kwargs):
    return StudioApiClient(
        base_url="http://studio.test/api",
        api_key=kwargs.pop("api_key", ""),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestRouting:
    """Test cases for request paths and bodies."""

    @pytest.mark.asyncio
    async def test_mode_prefix_and_stage_path(self):
        """Test that stage writes go to the ambient-visual step route."""
        recorder = Recorder(httpx.Response(200, json={"success": True}))
        async with make_client(recorder) as client:
            await client.continue_stage("video-1", 3, {"continuityLocked": True})

        request = recorder.requests[0]
        assert request.method == "PATCH"
        assert str(request.url) == "http://studio.test/api/ambient-visual/videos/video-1/step/3/continue"
        assert recorder.body() == {"continuityLocked": True}

    @pytest.mark.asyncio
    async def test_api_key_header(self):
        recorder = Recorder(httpx.Response(200, json={"id": "video-1"}))
        async with make_client(recorder, api_key="secret") as client:
            await client.get_video("video-1")

        assert recorder.requests[0].headers["X-API-Key"] == "secret"

    @pytest.mark.asyncio
    async def test_flow_design_body_carries_video_id(self):
        recorder = Recorder(httpx.Response(200, json={"scenes": [{"id": "sc1", "sceneNumber": 1}]}))
        async with make_client(recorder) as client:
            response = await client.generate_flow_design("video-1", {})

        assert recorder.body() == {"videoId": "video-1"}
        assert isinstance(response, FlowDesignResponse)
        assert response.scenes[0].id == "sc1"

    @pytest.mark.asyncio
    async def test_image_generation_frame(self):
        recorder = Recorder(httpx.Response(200, json={
            "success": True,
            "shotId": "s1",
            "frame": "end",
            "shotVersion": {"id": "v2", "shotId": "s1", "versionNumber": 2, "endFrameUrl": "https://cdn/e.png"},
        }))
        async with make_client(recorder) as client:
            response = await client.generate_image("video-1", "s1", frame="end")

        assert recorder.requests[0].url.path.endswith("/videos/video-1/shots/s1/generate-image")
        assert recorder.body() == {"frame": "end"}
        assert isinstance(response, ShotGenerationResponse)
        assert response.shotVersion.endFrameUrl == "https://cdn/e.png"

    @pytest.mark.asyncio
    async def test_sound_effect_previous_url(self):
        recorder = Recorder(httpx.Response(200, json={"audioUrl": "https://cdn/b.mp3", "duration": 5}))
        async with make_client(recorder) as client:
            await client.generate_sound_effect("video-1", "s1", "rain", previous_url="https://cdn/a.mp3")

        assert recorder.body() == {"prompt": "rain", "previousSoundEffectUrl": "https://cdn/a.mp3"}

    @pytest.mark.asyncio
    async def test_continue_to_stage5_parsed(self):
        recorder = Recorder(httpx.Response(200, json={
            "scenesWithLoops": [{"id": "sc1", "sceneNumber": 1, "loopCount": 2}],
            "shotsWithLoops": {},
            "loopSettingsLocked": False,
        }))
        async with make_client(recorder) as client:
            init = await client.continue_to_stage5("video-1")

        assert isinstance(init, Stage5InitResponse)
        assert init.scenesWithLoops[0].loopCount == 2

    @pytest.mark.asyncio
    async def test_empty_body_returns_empty_dict(self):
        recorder = Recorder(httpx.Response(204))
        async with make_client(recorder) as client:
            assert await client.patch_step4_settings("video-1", {"scenes": []}) == {}


class TestErrorMapping:
    """Test cases for non-2xx and transport failures."""

    @pytest.mark.asyncio
    async def test_server_error_message(self):
        """Test that the server's error field becomes the ApiError message."""
        recorder = Recorder(httpx.Response(404, json={"error": "Video not found"}))
        async with make_client(recorder) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.continue_stage("video-1", 1, {})

        assert exc_info.value.message == "Video not found"
        assert exc_info.value.status_code == 404
        assert exc_info.value.code == ErrorCode.API_ERROR

    @pytest.mark.asyncio
    async def test_details_used_when_no_error_field(self):
        recorder = Recorder(httpx.Response(500, json={"details": "Replicate timed out"}))
        async with make_client(recorder) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.generate_all_images("video-1")

        assert exc_info.value.message == "Replicate timed out"

    @pytest.mark.asyncio
    async def test_plain_text_error(self):
        recorder = Recorder(httpx.Response(502, text="Bad Gateway"))
        async with make_client(recorder) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.generate_music("video-1")

        assert exc_info.value.message == "Bad Gateway"

    @pytest.mark.asyncio
    async def test_writes_are_not_retried(self):
        """Test that a network failure on a write fails once, without retry."""
        recorder = Recorder(httpx.ConnectError("connection refused"))
        async with make_client(recorder) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.continue_stage("video-1", 2, {})

        assert len(recorder.requests) == 1
        assert exc_info.value.code == ErrorCode.API_UNREACHABLE

    @pytest.mark.asyncio
    async def test_malformed_body_raises_api_error(self):
        """Test that a body of the wrong shape is reported as ApiError, not a pydantic error."""
        recorder = Recorder(httpx.Response(200, json={"scenesWithLoops": "bad"}))
        async with make_client(recorder) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.continue_to_stage5("video-1")

        assert exc_info.value.code == ErrorCode.API_MALFORMED_RESPONSE
        assert exc_info.value.details["path"] == "/videos/video-1/step/4/continue-to-5"
        assert exc_info.value.details["fields"] == ["scenesWithLoops"]
        assert not should_retry(exc_info.value)

    @pytest.mark.asyncio
    async def test_malformed_generation_response(self):
        recorder = Recorder(httpx.Response(200, json={"scenes": [{"sceneNumber": "first"}]}))
        async with make_client(recorder) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.generate_flow_design("video-1", {})

        assert exc_info.value.message.startswith("Malformed response from /flow-design/generate")


class TestRetry:
    """Test retry on idempotent reads."""

    @pytest.mark.asyncio
    async def test_get_retried_after_network_error(self):
        recorder = Recorder(
            httpx.ConnectError("connection refused"),
            httpx.Response(200, json={"id": "video-1", "currentStep": 2}),
        )
        async with make_client(recorder) as client:
            video = await client.get_video("video-1")

        assert video["currentStep"] == 2
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_http_errors_not_retried(self):
        recorder = Recorder(httpx.Response(404, json={"error": "Video not found"}))
        async with make_client(recorder) as client:
            with pytest.raises(ApiError):
                await client.get_video("missing")

        assert len(recorder.requests) == 1
