"""
Provider classification.

Maps request URLs to the AI providers whose traffic is tracked.
"""

from enum import Enum
from typing import Any, Optional, Tuple

import httpx


class Provider(Enum):
    """Known AI providers, valued by display name."""
    OPENAI = "OpenAI"
    ANTHROPIC = "Anthropic"
    GOOGLE = "Google"
    DEEPSEEK = "DeepSeek"
    XAI = "xAI (Grok)"


# Checked in order; the first matching host substring wins.
PROVIDER_RULES: Tuple[Tuple[str, Provider], ...] = (
    ("api.openai.com", Provider.OPENAI),
    ("api.anthropic.com", Provider.ANTHROPIC),
    ("generativelanguage.googleapis.com", Provider.GOOGLE),
    ("api.deepseek.com", Provider.DEEPSEEK),
    ("api.x.ai", Provider.XAI),
)


def classify_provider(url: Any) -> Optional[Provider]:
    """Classify a request URL.

    Pure substring matching with no I/O. Never raises: httpx.URL objects
    are matched by their string form and any other non-string input is
    untracked.

    Args:
        url: Request URL string or httpx.URL

    Returns:
        The matching Provider, or None when the URL is untracked
    """
    if isinstance(url, httpx.URL):
        url = str(url)
    if not isinstance(url, str):
        return None

    for pattern, provider in PROVIDER_RULES:
        if pattern in url:
            return provider
    return None
