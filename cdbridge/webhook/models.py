"""
Webhook provider and conversion settings models.
"""
from enum import Enum
from pydantic import BaseModel, Field


class GitProvider(str, Enum):
    """Supported Git providers."""
    GITHUB = "github"
    GITLAB = "gitlab"


class ConvertConfig(BaseModel):
    """Fallbacks applied while converting provider payloads."""
    
    default_environment: str = Field("", description="Environment used when the payload carries none")
    source: str = Field("", description="Event source label")
    
    def environment_or_default(self) -> str:
        return self.default_environment.strip() or "production"
    
    def source_or(self, fallback: str) -> str:
        return self.source.strip() or fallback
