"""
Build CDEvents wire bodies from canonical events.
"""
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, NamedTuple, Optional, Tuple

from ..errors import EventValidationError
from .models import (
    CanonicalEvent,
    CDEvent,
    Context,
    Subject,
    Reference,
    ServiceContent,
    EnvironmentContent,
    GenericContent,
    PipelineInfo,
    ActorInfo,
)
from .normalize import (
    normalize_type,
    long_type,
    infer_subject_type,
    infer_subject_id,
    is_accepted_custom_type,
)


DEFAULT_SOURCE = "ci/pipeline"


class _Prepared(NamedTuple):
    """Trimmed and defaulted event fields shared by every envelope kind."""
    resolved: str
    source: str
    service: str
    environment: str
    artifact: str
    subject_type: str
    subject_id: str
    chain_id: str
    actor_name: str
    pipeline_run: str
    pipeline_url: str


def rfc3339_nano(ns: int) -> str:
    """Format Unix nanoseconds as RFC3339 UTC with trailing zeros trimmed."""
    seconds, fraction = divmod(ns, 1_000_000_000)
    stamp = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    if fraction:
        stamp += "." + f"{fraction:09d}".rstrip("0")
    return stamp + "Z"


def _prepare(event: CanonicalEvent) -> _Prepared:
    service = event.service.strip()
    environment = event.environment.strip()
    source = event.source.strip() or DEFAULT_SOURCE
    resolved = normalize_type(event.type)
    
    artifact = event.artifact.strip()
    if not artifact and resolved.startswith("service."):
        # Advisory only; not unique under concurrent calls.
        artifact = f"pkg:generic/{service}@{int(time.time())}"
    
    subject_type = event.subject_type.strip() or infer_subject_type(resolved)
    subject_id = event.subject_id.strip() or infer_subject_id(subject_type, service, environment)
    if not subject_id:
        raise EventValidationError(
            "subject is required (set subject-id, service, or environment based on event type)"
        )
    if "/" not in subject_id and subject_type:
        subject_id = f"{subject_type}/{subject_id}"
    
    return _Prepared(
        resolved=resolved,
        source=source,
        service=service,
        environment=environment,
        artifact=artifact,
        subject_type=subject_type,
        subject_id=subject_id,
        chain_id=event.chain_id.strip(),
        actor_name=event.actor_name.strip(),
        pipeline_run=event.pipeline_run.strip(),
        pipeline_url=event.pipeline_url.strip(),
    )


def _strict_context(p: _Prepared, wire_type: str) -> Context:
    return Context(
        id=str(uuid.uuid4()),
        source=p.source,
        type=wire_type,
        timestamp=rfc3339_nano(time.time_ns()),
    )


def _service_envelope(with_artifact: bool) -> Callable[[_Prepared], Tuple[bytes, str]]:
    def build(p: _Prepared) -> Tuple[bytes, str]:
        if not p.service or not p.environment:
            raise EventValidationError("service and environment are required for service events")
        wire_type = long_type(p.resolved)
        content = ServiceContent(
            environment=Reference(id=p.environment),
            artifact_id=p.artifact if with_artifact else None,
        )
        envelope = CDEvent(
            context=_strict_context(p, wire_type),
            subject=Subject(id=p.subject_id, source=p.source, type="service", content=content),
        )
        return envelope.to_json_bytes(), wire_type
    return build


def _environment_envelope(p: _Prepared) -> Tuple[bytes, str]:
    if not p.environment:
        raise EventValidationError("environment is required for environment events")
    wire_type = long_type(p.resolved)
    envelope = CDEvent(
        context=_strict_context(p, wire_type),
        subject=Subject(
            id=p.subject_id,
            source=p.source,
            type="environment",
            content=EnvironmentContent(),
        ),
    )
    return envelope.to_json_bytes(), wire_type


def _generic_envelope(p: _Prepared) -> Tuple[bytes, str]:
    now_ns = time.time_ns()
    envelope = CDEvent(
        context=Context(
            id=str(now_ns),
            source=p.source,
            type=p.resolved,
            timestamp=rfc3339_nano(now_ns),
            chain_id=p.chain_id or None,
        ),
        subject=Subject(
            id=p.subject_id,
            source=p.source,
            type=p.subject_type,
            content=GenericContent(
                environment=Reference(id=p.environment),
                artifact_id=p.artifact,
                pipeline=PipelineInfo(run_id=p.pipeline_run, url=p.pipeline_url),
                actor=ActorInfo(name=p.actor_name),
            ),
        ),
    )
    return envelope.to_json_bytes(), p.resolved


_STRICT_BUILDERS: Dict[str, Callable[[_Prepared], Tuple[bytes, str]]] = {
    "service.deployed": _service_envelope(with_artifact=True),
    "service.upgraded": _service_envelope(with_artifact=True),
    "service.rolledback": _service_envelope(with_artifact=True),
    "service.removed": _service_envelope(with_artifact=False),
    "service.published": _service_envelope(with_artifact=True),
    "environment.created": _environment_envelope,
    "environment.modified": _environment_envelope,
    "environment.deleted": _environment_envelope,
}


def build_event_body(event: CanonicalEvent) -> Tuple[bytes, str]:
    """
    Render a canonical event into its wire body.
    
    Args:
        event: Canonical event from a converter
        
    Returns:
        Tuple of (JSON body, resolved type). The resolved type is the long
        versioned form for strict envelopes and the normalized input for
        generic ones.
        
    Raises:
        EventValidationError: If required fields are missing or the type is unsupported
    """
    prepared = _prepare(event)
    
    builder: Optional[Callable[[_Prepared], Tuple[bytes, str]]] = _STRICT_BUILDERS.get(prepared.resolved)
    if builder is not None:
        return builder(prepared)
    
    if is_accepted_custom_type(prepared.resolved):
        return _generic_envelope(prepared)
    
    raise EventValidationError(f"unsupported event type '{event.type}'")
