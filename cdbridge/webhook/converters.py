"""
Webhook payload converters for different Git providers.
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
import hashlib
import hmac
import json

from ..cdevents.models import CanonicalEvent
from ..errors import PayloadError
from ..storage.models import valid_installation_id
from .models import ConvertConfig, GitProvider


PIPELINE_STARTED = "dev.cdevents.pipeline.run.started.0.3.0"
PIPELINE_SUCCEEDED = "dev.cdevents.pipeline.run.succeeded.0.3.0"
PIPELINE_FAILED = "dev.cdevents.pipeline.run.failed.0.3.0"
CHANGE_PUSHED = "dev.cdevents.change.pushed.0.3.0"


def change_type(suffix: str) -> str:
    return f"dev.cdevents.change.{suffix}.0.3.0"


def short_sha(value: Any) -> str:
    """Trim a SHA to at most 12 characters; empty becomes 'unknown'."""
    value = _text(value)
    if not value:
        return "unknown"
    return value[:12]


def artifact_id(service: str, ref: str) -> str:
    return f"pkg:generic/{service}@{ref}"


def first_non_empty(*values: Any) -> str:
    for value in values:
        value = _text(value)
        if value:
            return value
    return ""


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _number(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return 0


def _section(payload: Dict[str, Any], *keys: str) -> Dict[str, Any]:
    """Walk nested objects, returning {} where a level is absent or not an object."""
    node: Any = payload
    for key in keys:
        node = node.get(key) if isinstance(node, dict) else None
    return node if isinstance(node, dict) else {}


def decode_payload(payload: bytes) -> Dict[str, Any]:
    """
    Decode a raw webhook body.

    Raises:
        PayloadError: If the body is not a JSON object
    """
    try:
        body = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        raise PayloadError(f"invalid JSON payload: {e}") from e
    if not isinstance(body, dict):
        raise PayloadError("invalid JSON payload: expected an object")
    return body


Handler = Callable[[Dict[str, Any], str, ConvertConfig], List[CanonicalEvent]]


class WebhookConverter(ABC):
    """Abstract base class for webhook converters."""

    provider: GitProvider
    default_source: str

    @property
    @abstractmethod
    def handlers(self) -> Dict[str, Handler]:
        """Event name to conversion handler."""

    def convert(
        self,
        event_name: str,
        delivery_id: str,
        payload: bytes,
        config: Optional[ConvertConfig] = None,
    ) -> List[CanonicalEvent]:
        """
        Convert a webhook payload into canonical events.

        Args:
            event_name: Provider event name header
            delivery_id: Provider delivery id header, used as chain id where applicable
            payload: Raw request body
            config: Environment and source fallbacks

        Returns:
            Zero or one canonical events. Unknown event names and payloads without
            a repository/project name produce an empty list.

        Raises:
            PayloadError: If the body of a handled event is not valid JSON
        """
        handler = self.handlers.get((event_name or "").strip())
        if handler is None:
            return []
        body = decode_payload(payload)
        return handler(body, (delivery_id or "").strip(), config or ConvertConfig())

    @abstractmethod
    def extract_installation_id(self, payload: bytes) -> Optional[int]:
        """Installation/project identifier carried by the payload, if any."""

    @abstractmethod
    def verify_signature(self, payload_body: bytes, signature: str, secret: str) -> bool:
        """Verify webhook signature."""


class GitHubConverter(WebhookConverter):
    """Converter for GitHub App webhooks."""

    provider = GitProvider.GITHUB
    default_source = "github/app"

    @property
    def handlers(self) -> Dict[str, Handler]:
        return {
            "release": self._release,
            "deployment_status": self._deployment_status,
            "workflow_run": self._workflow_run,
            "push": self._push,
            "pull_request": self._pull_request,
        }

    def _release(self, body: Dict[str, Any], delivery_id: str, cfg: ConvertConfig) -> List[CanonicalEvent]:
        if _text(body.get("action")) != "published":
            return []
        service = _text(_section(body, "repository").get("name"))
        if not service:
            return []
        release = _section(body, "release")
        tag = _text(release.get("tag_name")) or "latest"
        return [CanonicalEvent(
            type="service.published",
            source=cfg.source_or(self.default_source),
            service=service,
            environment=cfg.environment_or_default(),
            artifact=artifact_id(service, tag),
            actor_name=_text(_section(body, "sender").get("login")),
            pipeline_url=_text(release.get("html_url")),
        )]

    _DEPLOYMENT_STATES = {
        "success": "service.deployed",
        "failure": "service.removed",
        "error": "service.removed",
        "inactive": "service.removed",
        "in_progress": "service.upgraded",
        "queued": "service.upgraded",
        "pending": "service.upgraded",
    }

    def _deployment_status(self, body: Dict[str, Any], delivery_id: str, cfg: ConvertConfig) -> List[CanonicalEvent]:
        service = _text(_section(body, "repository").get("name"))
        if not service:
            return []
        deployment = _section(body, "deployment")
        status = _section(body, "deployment_status")
        state = _text(status.get("state")).lower()
        env = first_non_empty(status.get("environment"), deployment.get("environment")) or cfg.environment_or_default()
        return [CanonicalEvent(
            type=self._DEPLOYMENT_STATES.get(state, "service.upgraded"),
            source=cfg.source_or(self.default_source),
            service=service,
            environment=env,
            artifact=artifact_id(service, short_sha(deployment.get("sha"))),
            actor_name=_text(_section(body, "sender").get("login")),
            pipeline_url=_text(status.get("target_url")),
        )]

    def _workflow_run(self, body: Dict[str, Any], delivery_id: str, cfg: ConvertConfig) -> List[CanonicalEvent]:
        service = _text(_section(body, "repository").get("name"))
        if not service:
            return []
        run = _section(body, "workflow_run")
        run_id = _number(run.get("id"))
        event_type = PIPELINE_STARTED
        if _text(body.get("action")).lower() == "completed":
            if _text(run.get("conclusion")).lower() == "success":
                event_type = PIPELINE_SUCCEEDED
            else:
                event_type = PIPELINE_FAILED
        return [CanonicalEvent(
            type=event_type,
            source=cfg.source_or(self.default_source),
            service=service,
            environment=cfg.environment_or_default(),
            artifact=artifact_id(service, short_sha(run.get("head_sha"))),
            subject_type="pipeline",
            subject_id=f"pipeline/{service}/{run_id}",
            pipeline_run=str(run_id),
            pipeline_url=_text(run.get("html_url")),
            actor_name=_text(_section(body, "sender").get("login")),
        )]

    def _push(self, body: Dict[str, Any], delivery_id: str, cfg: ConvertConfig) -> List[CanonicalEvent]:
        service = _text(_section(body, "repository").get("name"))
        if not service:
            return []
        sha = short_sha(body.get("after"))
        return [CanonicalEvent(
            type=CHANGE_PUSHED,
            source=cfg.source_or(self.default_source),
            service=service,
            environment=cfg.environment_or_default(),
            artifact=artifact_id(service, sha),
            subject_type="change",
            subject_id=f"change/{sha}",
            chain_id=delivery_id,
            actor_name=_text(_section(body, "pusher").get("name")),
        )]

    # Actions passed through as the change type suffix; others fall into "updated".
    _PULL_REQUEST_ACTIONS = frozenset({
        "opened", "closed", "reopened", "edited", "synchronize",
        "ready_for_review", "converted_to_draft",
        "assigned", "unassigned", "labeled", "unlabeled",
        "review_requested", "review_request_removed",
        "locked", "unlocked", "enqueued", "dequeued",
        "auto_merge_enabled", "auto_merge_disabled",
        "milestoned", "demilestoned",
    })

    def _pull_request(self, body: Dict[str, Any], delivery_id: str, cfg: ConvertConfig) -> List[CanonicalEvent]:
        service = _text(_section(body, "repository").get("name"))
        if not service:
            return []
        pull_request = _section(body, "pull_request")
        action = _text(body.get("action")).lower()
        suffix = action if action in self._PULL_REQUEST_ACTIONS else "updated"
        if action == "closed" and pull_request.get("merged") is True:
            suffix = "merged"
        return [CanonicalEvent(
            type=change_type(suffix),
            source=cfg.source_or(self.default_source),
            service=service,
            environment=cfg.environment_or_default(),
            artifact=artifact_id(service, short_sha(_section(pull_request, "head").get("sha"))),
            subject_type="change",
            subject_id=f"change/pr-{_number(pull_request.get('number'))}",
            chain_id=delivery_id,
            actor_name=_text(_section(body, "sender").get("login")),
        )]

    def extract_installation_id(self, payload: bytes) -> Optional[int]:
        """Read installation.id (number or numeric string)."""
        try:
            body = decode_payload(payload)
        except PayloadError:
            return None
        raw = _section(body, "installation").get("id")
        if isinstance(raw, str):
            try:
                raw = int(raw.strip())
            except ValueError:
                return None
        installation_id = _number(raw)
        return installation_id if valid_installation_id(installation_id) else None

    def verify_signature(self, payload_body: bytes, signature: str, secret: str) -> bool:
        """Verify GitHub webhook signature (X-Hub-Signature-256)."""
        signature = (signature or "").strip().lower()
        secret = (secret or "").strip()
        if not secret or not signature.startswith("sha256="):
            return False

        expected_signature = "sha256=" + hmac.new(
            secret.encode(),
            payload_body,
            hashlib.sha256
        ).hexdigest()

        return hmac.compare_digest(signature, expected_signature)


class GitLabConverter(WebhookConverter):
    """Converter for GitLab webhooks."""

    provider = GitProvider.GITLAB
    default_source = "gitlab/webhook"

    @property
    def handlers(self) -> Dict[str, Handler]:
        return {
            "Push Hook": self._push,
            "Tag Push Hook": self._tag_push,
            "Pipeline Hook": self._pipeline,
            "Deployment Hook": self._deployment,
            "Merge Request Hook": self._merge_request,
        }

    def _push(self, body: Dict[str, Any], delivery_id: str, cfg: ConvertConfig) -> List[CanonicalEvent]:
        service = first_non_empty(
            _section(body, "project").get("name"),
            _section(body, "repository").get("name"),
        )
        if not service:
            return []
        sha = short_sha(body.get("after"))
        return [CanonicalEvent(
            type=CHANGE_PUSHED,
            source=cfg.source_or(self.default_source),
            service=service,
            environment=cfg.environment_or_default(),
            artifact=artifact_id(service, sha),
            subject_type="change",
            subject_id=f"change/{sha}",
            chain_id=delivery_id,
            actor_name=_text(body.get("user_name")),
        )]

    def _tag_push(self, body: Dict[str, Any], delivery_id: str, cfg: ConvertConfig) -> List[CanonicalEvent]:
        service = _text(_section(body, "project").get("name"))
        if not service:
            return []
        tag = _text(body.get("ref")).removeprefix("refs/tags/") or "latest"
        return [CanonicalEvent(
            type="service.published",
            source=cfg.source_or(self.default_source),
            service=service,
            environment=cfg.environment_or_default(),
            artifact=artifact_id(service, tag),
            actor_name=_text(body.get("user_name")),
            pipeline_url=_text(_section(body, "repository").get("homepage")),
        )]

    _PIPELINE_STATES = {
        "success": PIPELINE_SUCCEEDED,
        "failed": PIPELINE_FAILED,
        "canceled": PIPELINE_FAILED,
    }

    def _pipeline(self, body: Dict[str, Any], delivery_id: str, cfg: ConvertConfig) -> List[CanonicalEvent]:
        service = _text(_section(body, "project").get("name"))
        if not service:
            return []
        attrs = _section(body, "object_attributes")
        pipeline_id = _number(attrs.get("id"))
        status = _text(attrs.get("status")).lower()
        return [CanonicalEvent(
            type=self._PIPELINE_STATES.get(status, PIPELINE_STARTED),
            source=cfg.source_or(self.default_source),
            service=service,
            environment=_text(attrs.get("ref")) or cfg.environment_or_default(),
            artifact=artifact_id(service, short_sha(attrs.get("sha"))),
            subject_type="pipeline",
            subject_id=f"pipeline/{service}/{pipeline_id}",
            pipeline_run=str(pipeline_id),
            pipeline_url=_text(attrs.get("url")),
            actor_name=_text(_section(body, "user").get("name")),
        )]

    _DEPLOYMENT_STATES = {
        "success": "service.deployed",
        "failed": "service.removed",
        "canceled": "service.removed",
    }

    def _deployment(self, body: Dict[str, Any], delivery_id: str, cfg: ConvertConfig) -> List[CanonicalEvent]:
        service = _text(_section(body, "project").get("name"))
        if not service:
            return []
        status = _text(body.get("status")).lower()
        sha = first_non_empty(body.get("short_sha"), body.get("sha"))
        return [CanonicalEvent(
            type=self._DEPLOYMENT_STATES.get(status, "service.upgraded"),
            source=cfg.source_or(self.default_source),
            service=service,
            environment=_text(body.get("environment")) or cfg.environment_or_default(),
            artifact=artifact_id(service, short_sha(sha)),
            actor_name=_text(_section(body, "user").get("name")),
        )]

    # Actions and states passed through as the change type suffix.
    _MERGE_REQUEST_ACTIONS = frozenset({
        "open", "opened", "close", "closed", "reopen", "locked",
        "update", "approved", "unapproved", "approval", "unapproval",
    })

    def _merge_request(self, body: Dict[str, Any], delivery_id: str, cfg: ConvertConfig) -> List[CanonicalEvent]:
        service = _text(_section(body, "project").get("name"))
        if not service:
            return []
        attrs = _section(body, "object_attributes")
        action = (_text(attrs.get("action")) or _text(attrs.get("state"))).lower()
        suffix = action if action in self._MERGE_REQUEST_ACTIONS else "updated"
        if action in ("merge", "merged"):
            suffix = "merged"
        return [CanonicalEvent(
            type=change_type(suffix),
            source=cfg.source_or(self.default_source),
            service=service,
            environment=cfg.environment_or_default(),
            artifact=artifact_id(service, short_sha(_section(attrs, "last_commit").get("id"))),
            subject_type="change",
            subject_id=f"change/mr-{_number(attrs.get('iid'))}",
            chain_id=delivery_id,
            actor_name=_text(_section(body, "user").get("name")),
        )]

    def extract_installation_id(self, payload: bytes) -> Optional[int]:
        """Read project_id, falling back to project.id."""
        try:
            body = decode_payload(payload)
        except PayloadError:
            return None
        for raw in (body.get("project_id"), _section(body, "project").get("id")):
            project_id = _number(raw)
            if valid_installation_id(project_id):
                return project_id
        return None

    def verify_signature(self, payload_body: bytes, signature: str, secret: str) -> bool:
        """Verify GitLab webhook token (X-Gitlab-Token)."""
        signature = (signature or "").strip()
        secret = (secret or "").strip()
        if not secret or not signature:
            return False

        return hmac.compare_digest(signature, secret)


class WebhookConverterFactory:
    """Factory for creating webhook converters."""

    _converters = {
        GitProvider.GITHUB: GitHubConverter,
        GitProvider.GITLAB: GitLabConverter,
    }

    @classmethod
    def create(cls, provider: GitProvider) -> WebhookConverter:
        """Create converter for given provider."""
        converter_class = cls._converters.get(provider)
        if not converter_class:
            raise ValueError(f"Unsupported provider: {provider}")
        return converter_class()
