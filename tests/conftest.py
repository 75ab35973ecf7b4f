"""
Shared fixtures for workflow tests.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from ambient_studio.services.api_client import StudioApiClient
from tests.factories import make_project


@pytest.fixture
def project():
    """Two scenes, two 5s shots each, one version per shot"""
    return make_project()


@pytest.fixture
def mock_client():
    """StudioApiClient with every route mocked"""
    client = Mock(spec=StudioApiClient)
    for name in (
        "get_video",
        "continue_stage",
        "continue_to_stage5",
        "continue_to_stage6",
        "patch_step4_settings",
        "patch_step5_settings",
        "generate_flow_design",
        "generate_all_prompts",
        "generate_all_images",
        "generate_all_videos",
        "generate_image",
        "regenerate_image",
        "generate_video",
        "recommend_sound_effect",
        "generate_sound_effect",
        "generate_voiceover_script",
        "generate_voiceover_audio",
        "generate_music",
        "close",
    ):
        setattr(client, name, AsyncMock())
    client.continue_stage.return_value = {}
    client.patch_step4_settings.return_value = {}
    client.patch_step5_settings.return_value = {}
    return client
