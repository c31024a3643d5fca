"""Test helper utilities for Pirido tests."""

from tests.helpers.ai_helpers import responses_envelope

__all__ = ["responses_envelope"]
