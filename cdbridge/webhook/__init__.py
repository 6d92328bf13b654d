"""
Webhook handling module.
"""
from .models import GitProvider, ConvertConfig
from .converters import (
    WebhookConverter,
    GitHubConverter,
    GitLabConverter,
    WebhookConverterFactory,
)
from .handler import WebhookHandler

__all__ = [
    "GitProvider",
    "ConvertConfig",
    "WebhookConverter",
    "GitHubConverter",
    "GitLabConverter",
    "WebhookConverterFactory",
    "WebhookHandler",
]
