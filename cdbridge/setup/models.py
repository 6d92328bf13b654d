"""
Setup handshake and credential resolution models.
"""
from typing import Optional
from pydantic import BaseModel, Field

from ..webhook.models import GitProvider


class SetupRequest(BaseModel):
    """Tenant credentials supplied when an operator starts setup."""
    
    provider: GitProvider = Field(GitProvider.GITHUB, description="Provider whose installation/project id will be bound")
    organization_id: int = Field(0, description="Owning organization id (0 when unscoped)")
    organization_label: str = Field("", description="Human-readable organization name")
    endpoint: str = Field("", description="Downstream dashboard base URL")
    auth_token: str = Field("", description="Bearer token for the downstream endpoint")
    webhook_secret: str = Field("", description="HMAC key for X-Webhook-Signature")
    default_environment: str = Field("", description="Environment used when payloads carry none")


class SetupStartResponse(BaseModel):
    """Response for a created setup intent."""
    state: str
    redirect_url: str


class ResolvedCredentials(BaseModel):
    """Publishing credentials for a single inbound request."""
    
    endpoint: str = ""
    auth_token: str = ""
    webhook_secret: str = ""
    default_environment: str = ""
    installation_id: Optional[int] = None
    from_mapping: bool = False
    
    @property
    def is_complete(self) -> bool:
        """Whether endpoint, token and secret are all set."""
        return bool(
            self.endpoint.strip() and self.auth_token.strip() and self.webhook_secret.strip()
        )
