"""
Service layer: transport client for the studio backend.
"""

from .api_client import StudioApiClient

__all__ = ["StudioApiClient"]
