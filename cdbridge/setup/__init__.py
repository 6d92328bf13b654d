"""
Installation setup handshake and credential resolution.
"""
from .models import SetupRequest, SetupStartResponse, ResolvedCredentials
from .resolver import InstallationResolver

__all__ = [
    "SetupRequest",
    "SetupStartResponse",
    "ResolvedCredentials",
    "InstallationResolver",
]
