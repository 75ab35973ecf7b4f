"""Tests for the service layer."""
