"""
Canonical event and CDEvents wire envelope models.
"""
from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, Field


SPEC_VERSION = "0.5.0"


class CanonicalEvent(BaseModel):
    """Provider-neutral event produced by the webhook converters."""
    
    type: str = Field("", description="Short (service.deployed) or long (dev.cdevents.*) type key")
    source: str = Field("", description="Event source label")
    service: str = Field("", description="Service (repository/project) name")
    environment: str = Field("", description="Target environment")
    artifact: str = Field("", description="Artifact id, pkg:generic/<service>@<ref>")
    subject_id: str = Field("", description="Explicit subject id")
    subject_type: str = Field("", description="Explicit subject type")
    chain_id: str = Field("", description="Correlation id (transport delivery id)")
    actor_name: str = Field("", description="User who triggered the event")
    pipeline_run: str = Field("", description="Pipeline run identifier")
    pipeline_url: str = Field("", description="Link to the run, release or deployment")


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Reference(_WireModel):
    id: str


class ServiceContent(_WireModel):
    environment: Reference
    artifact_id: Optional[str] = Field(None, alias="artifactId")


class EnvironmentContent(_WireModel):
    pass


class PipelineInfo(_WireModel):
    run_id: str = Field("", alias="runId")
    url: str = ""


class ActorInfo(_WireModel):
    name: str = ""


class GenericContent(_WireModel):
    environment: Reference
    artifact_id: str = Field("", alias="artifactId")
    pipeline: PipelineInfo
    actor: ActorInfo


class Context(_WireModel):
    specversion: str = SPEC_VERSION
    id: str
    source: str
    type: str
    timestamp: str
    chain_id: Optional[str] = Field(None, alias="chainId")


class Subject(_WireModel):
    id: str
    source: str
    type: str
    content: Union[ServiceContent, EnvironmentContent, GenericContent]


class CDEvent(_WireModel):
    """Wire envelope sent downstream."""
    
    context: Context
    subject: Subject
    
    def to_json_bytes(self) -> bytes:
        """Serialize with wire field names, dropping unset optional keys."""
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")
