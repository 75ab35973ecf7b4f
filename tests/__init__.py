"""
Test suite for the workflow core.

This package contains all test files organized to mirror the source code structure.
"""
