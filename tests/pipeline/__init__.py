"""Tests for the workflow pipeline components."""
