"""
Unit tests for provider classification.
"""

import httpx
import pytest

from provider_observatory.core.providers import PROVIDER_RULES, Provider, classify_provider


class TestClassifyProvider:
    """Test URL to provider mapping."""

    @pytest.mark.parametrize("url,expected", [
        ("https://api.openai.com/v1/chat/completions", Provider.OPENAI),
        ("https://api.anthropic.com/v1/messages", Provider.ANTHROPIC),
        ("https://generativelanguage.googleapis.com/v1beta/models/gemini-pro:generateContent", Provider.GOOGLE),
        ("https://api.deepseek.com/chat/completions", Provider.DEEPSEEK),
        ("https://api.x.ai/v1/chat/completions", Provider.XAI),
    ])
    def test_known_providers(self, url, expected):
        """Each rule maps its host to the provider."""
        assert classify_provider(url) is expected

    def test_untracked_url(self):
        """Unrelated hosts are untracked."""
        assert classify_provider("https://example.com/api") is None
        assert classify_provider("https://api.polygon.io/v2/aggs") is None

    @pytest.mark.parametrize("value", [None, 42, b"https://api.openai.com", object(), ["api.openai.com"]])
    def test_non_string_input_is_untracked(self, value):
        """Non-string input never raises."""
        assert classify_provider(value) is None

    def test_httpx_url_is_classified(self):
        """Request URLs from httpx match by their string form."""
        assert classify_provider(httpx.URL("https://api.openai.com/v1/chat/completions")) is Provider.OPENAI
        assert classify_provider(httpx.URL("https://example.com/v1")) is None

    def test_malformed_string(self):
        """Garbage strings are simply untracked."""
        assert classify_provider("") is None
        assert classify_provider("::not a url::") is None

    def test_display_names(self):
        """Provider values are the names stored in records."""
        assert Provider.XAI.value == "xAI (Grok)"
        assert [provider for _, provider in PROVIDER_RULES] == list(Provider)
