"""Tests for GitHub and GitLab payload converters."""

import hashlib
import hmac
import json

import pytest

from cdbridge.errors import PayloadError
from cdbridge.webhook.converters import (
    GitHubConverter,
    GitLabConverter,
    WebhookConverterFactory,
    short_sha,
)
from cdbridge.webhook.models import ConvertConfig, GitProvider


CONFIG = ConvertConfig(default_environment="staging", source="github/test")


def encode(payload: dict) -> bytes:
    return json.dumps(payload).encode()


@pytest.fixture
def github():
    return GitHubConverter()


@pytest.fixture
def gitlab():
    return GitLabConverter()


def test_short_sha():
    assert short_sha("abcdef1234567890") == "abcdef123456"
    assert short_sha(" abc ") == "abc"
    assert short_sha("") == "unknown"
    assert short_sha(None) == "unknown"


def test_factory():
    assert isinstance(WebhookConverterFactory.create(GitProvider.GITHUB), GitHubConverter)
    assert isinstance(WebhookConverterFactory.create(GitProvider.GITLAB), GitLabConverter)


# GitHub

def test_github_release_published(github):
    events = github.convert("release", "delivery-1", encode({
        "action": "published",
        "repository": {"name": "orders"},
        "release": {"tag_name": "v1.2.3", "html_url": "https://github.com/acme/orders/releases/v1.2.3"},
        "sender": {"login": "octocat"},
    }), CONFIG)

    assert len(events) == 1
    event = events[0]
    assert event.type == "service.published"
    assert event.service == "orders"
    assert event.artifact == "pkg:generic/orders@v1.2.3"
    assert event.environment == "staging"
    assert event.source == "github/test"
    assert event.actor_name == "octocat"
    assert event.chain_id == ""


def test_github_release_other_action_ignored(github):
    assert github.convert("release", "", encode({
        "action": "created",
        "repository": {"name": "orders"},
    }), CONFIG) == []


def test_github_release_without_tag(github):
    events = github.convert("release", "", encode({
        "action": "published",
        "repository": {"name": "orders"},
    }), ConvertConfig())
    assert events[0].artifact == "pkg:generic/orders@latest"
    assert events[0].environment == "production"
    assert events[0].source == "github/app"


@pytest.mark.parametrize("state, expected", [
    ("success", "service.deployed"),
    ("failure", "service.removed"),
    ("error", "service.removed"),
    ("inactive", "service.removed"),
    ("in_progress", "service.upgraded"),
    ("queued", "service.upgraded"),
    ("PENDING", "service.upgraded"),
    ("something_new", "service.upgraded"),
])
def test_github_deployment_status(github, state, expected):
    events = github.convert("deployment_status", "d", encode({
        "repository": {"name": "orders"},
        "deployment": {"environment": "prod-eu", "sha": "0123456789abcdef0123"},
        "deployment_status": {"state": state, "target_url": "https://deploy.example.test/1"},
        "sender": {"login": "octocat"},
    }), CONFIG)

    assert len(events) == 1
    assert events[0].type == expected
    assert events[0].environment == "prod-eu"
    assert events[0].artifact == "pkg:generic/orders@0123456789ab"
    assert events[0].pipeline_url == "https://deploy.example.test/1"
    assert events[0].chain_id == ""


def test_github_deployment_status_environment_fallbacks(github):
    payload = {
        "repository": {"name": "orders"},
        "deployment": {"environment": "from-deployment"},
        "deployment_status": {"state": "success", "environment": "from-status"},
    }
    assert github.convert("deployment_status", "", encode(payload), CONFIG)[0].environment == "from-status"

    del payload["deployment_status"]["environment"]
    assert github.convert("deployment_status", "", encode(payload), CONFIG)[0].environment == "from-deployment"

    del payload["deployment"]["environment"]
    event = github.convert("deployment_status", "", encode(payload), CONFIG)[0]
    assert event.environment == "staging"
    assert event.artifact == "pkg:generic/orders@unknown"


def test_github_workflow_run_failed(github):
    events = github.convert("workflow_run", "d", encode({
        "action": "completed",
        "repository": {"name": "orders"},
        "workflow_run": {
            "id": 42,
            "conclusion": "failure",
            "head_sha": "abcdef1234567890",
            "html_url": "https://github.com/acme/orders/actions/runs/42",
        },
        "sender": {"login": "octocat"},
    }), CONFIG)

    assert len(events) == 1
    event = events[0]
    assert event.type == "dev.cdevents.pipeline.run.failed.0.3.0"
    assert "pipeline.run.failed" in event.type
    assert event.subject_type == "pipeline"
    assert event.subject_id == "pipeline/orders/42"
    assert event.pipeline_run == "42"
    assert event.artifact == "pkg:generic/orders@abcdef123456"
    assert event.chain_id == ""


@pytest.mark.parametrize("action, conclusion, expected", [
    ("completed", "success", "dev.cdevents.pipeline.run.succeeded.0.3.0"),
    ("Completed", "SUCCESS", "dev.cdevents.pipeline.run.succeeded.0.3.0"),
    ("completed", "cancelled", "dev.cdevents.pipeline.run.failed.0.3.0"),
    ("requested", "", "dev.cdevents.pipeline.run.started.0.3.0"),
    ("in_progress", "", "dev.cdevents.pipeline.run.started.0.3.0"),
])
def test_github_workflow_run_types(github, action, conclusion, expected):
    events = github.convert("workflow_run", "", encode({
        "action": action,
        "repository": {"name": "orders"},
        "workflow_run": {"id": 7, "conclusion": conclusion},
    }), CONFIG)
    assert events[0].type == expected


def test_github_push_carries_delivery_id(github):
    events = github.convert("push", "delivery-123", encode({
        "after": "fedcba9876543210fedcba",
        "repository": {"name": "orders"},
        "pusher": {"name": "octocat"},
    }), CONFIG)

    event = events[0]
    assert event.type == "dev.cdevents.change.pushed.0.3.0"
    assert event.chain_id == "delivery-123"
    assert event.subject_type == "change"
    assert event.subject_id == "change/fedcba987654"
    assert event.actor_name == "octocat"


@pytest.mark.parametrize("action, merged, expected", [
    ("closed", True, "dev.cdevents.change.merged.0.3.0"),
    ("closed", False, "dev.cdevents.change.closed.0.3.0"),
    ("opened", False, "dev.cdevents.change.opened.0.3.0"),
    ("", False, "dev.cdevents.change.updated.0.3.0"),
    ("some_future_action", False, "dev.cdevents.change.updated.0.3.0"),
])
def test_github_pull_request(github, action, merged, expected):
    events = github.convert("pull_request", "delivery-9", encode({
        "action": action,
        "pull_request": {"number": 17, "merged": merged, "head": {"sha": "1234567890abcdef"}},
        "repository": {"name": "orders"},
        "sender": {"login": "octocat"},
    }), CONFIG)

    event = events[0]
    assert event.type == expected
    assert event.subject_id == "change/pr-17"
    assert event.chain_id == "delivery-9"
    assert event.artifact == "pkg:generic/orders@1234567890ab"


def test_github_unknown_event_ignored(github):
    assert github.convert("issues", "d", encode({"repository": {"name": "orders"}}), CONFIG) == []


def test_github_unknown_event_with_bad_json_ignored(github):
    assert github.convert("issues", "d", b"not json", CONFIG) == []


@pytest.mark.parametrize("event_name", ["release", "deployment_status", "workflow_run", "push", "pull_request"])
def test_github_blank_repository_ignored(github, event_name):
    payload = {"action": "published", "repository": {"name": "   "}}
    assert github.convert(event_name, "d", encode(payload), CONFIG) == []


@pytest.mark.parametrize("body", [b"{not json", b"[1, 2]"])
def test_github_malformed_payload(github, body):
    with pytest.raises(PayloadError):
        github.convert("push", "d", body, CONFIG)


@pytest.mark.parametrize("installation, expected", [
    ({"id": 123}, 123),
    ({"id": "456"}, 456),
    ({"id": 0}, None),
    ({"id": "abc"}, None),
    ({"id": 2**63 - 1}, 2**63 - 1),
    ({"id": 2**63}, None),
    ({"id": str(2**70)}, None),
    ({"id": 1e30}, None),
    (None, None),
])
def test_github_extract_installation_id(github, installation, expected):
    payload = {"repository": {"name": "orders"}}
    if installation is not None:
        payload["installation"] = installation
    assert github.extract_installation_id(encode(payload)) == expected


def test_github_verify_signature(github):
    body = b'{"zen":"Keep it simple"}'
    digest = hmac.new(b"gh-secret", body, hashlib.sha256).hexdigest()

    assert github.verify_signature(body, f"sha256={digest}", "gh-secret")
    assert not github.verify_signature(body, digest, "gh-secret")
    assert not github.verify_signature(body, "sha256=deadbeef", "gh-secret")
    assert not github.verify_signature(body, f"sha256={digest}", "")


# GitLab

def test_gitlab_push(gitlab):
    events = gitlab.convert("Push Hook", "uuid-1", encode({
        "after": "aaaaaaaaaaaaaaaaaaaa",
        "user_name": "Jane",
        "project": {"id": 9, "name": "inventory"},
    }), ConvertConfig())

    event = events[0]
    assert event.type == "dev.cdevents.change.pushed.0.3.0"
    assert event.source == "gitlab/webhook"
    assert event.service == "inventory"
    assert event.chain_id == "uuid-1"
    assert event.subject_id == "change/aaaaaaaaaaaa"


def test_gitlab_push_falls_back_to_repository_name(gitlab):
    events = gitlab.convert("Push Hook", "", encode({
        "project": {"name": ""},
        "repository": {"name": "inventory"},
    }), CONFIG)
    assert events[0].service == "inventory"
    assert events[0].artifact == "pkg:generic/inventory@unknown"


def test_gitlab_tag_push(gitlab):
    events = gitlab.convert("Tag Push Hook", "uuid", encode({
        "ref": "refs/tags/v2.0.0",
        "user_name": "Jane",
        "project": {"name": "inventory"},
        "repository": {"homepage": "https://gitlab.example.test/acme/inventory"},
    }), CONFIG)

    event = events[0]
    assert event.type == "service.published"
    assert event.artifact == "pkg:generic/inventory@v2.0.0"
    assert event.pipeline_url == "https://gitlab.example.test/acme/inventory"
    assert event.chain_id == ""


@pytest.mark.parametrize("status, expected", [
    ("success", "dev.cdevents.pipeline.run.succeeded.0.3.0"),
    ("failed", "dev.cdevents.pipeline.run.failed.0.3.0"),
    ("canceled", "dev.cdevents.pipeline.run.failed.0.3.0"),
    ("running", "dev.cdevents.pipeline.run.started.0.3.0"),
])
def test_gitlab_pipeline(gitlab, status, expected):
    events = gitlab.convert("Pipeline Hook", "uuid", encode({
        "object_attributes": {"id": 77, "status": status, "sha": "0123456789abcdef", "ref": "main", "url": "https://ci/77"},
        "user": {"name": "Jane"},
        "project": {"name": "inventory"},
    }), CONFIG)

    event = events[0]
    assert event.type == expected
    assert event.environment == "main"
    assert event.subject_id == "pipeline/inventory/77"
    assert event.pipeline_run == "77"
    assert event.chain_id == ""


@pytest.mark.parametrize("status, expected", [
    ("success", "service.deployed"),
    ("failed", "service.removed"),
    ("canceled", "service.removed"),
    ("running", "service.upgraded"),
])
def test_gitlab_deployment(gitlab, status, expected):
    events = gitlab.convert("Deployment Hook", "uuid", encode({
        "status": status,
        "environment": "production",
        "sha": "0123456789abcdef",
        "short_sha": "01234567",
        "user": {"name": "Jane"},
        "project": {"name": "inventory"},
    }), CONFIG)

    event = events[0]
    assert event.type == expected
    assert event.environment == "production"
    assert event.artifact == "pkg:generic/inventory@01234567"


@pytest.mark.parametrize("attrs, expected", [
    ({"action": "merge"}, "dev.cdevents.change.merged.0.3.0"),
    ({"action": "", "state": "merged"}, "dev.cdevents.change.merged.0.3.0"),
    ({"action": "open"}, "dev.cdevents.change.open.0.3.0"),
    ({}, "dev.cdevents.change.updated.0.3.0"),
    ({"action": "unheard_of"}, "dev.cdevents.change.updated.0.3.0"),
])
def test_gitlab_merge_request(gitlab, attrs, expected):
    attrs = dict(attrs, iid=5, last_commit={"id": "cafebabecafebabe"})
    events = gitlab.convert("Merge Request Hook", "uuid-5", encode({
        "object_attributes": attrs,
        "user": {"name": "Jane"},
        "project": {"name": "inventory"},
    }), CONFIG)

    event = events[0]
    assert event.type == expected
    assert event.subject_id == "change/mr-5"
    assert event.chain_id == "uuid-5"
    assert event.artifact == "pkg:generic/inventory@cafebabecafe"


def test_gitlab_unknown_event_ignored(gitlab):
    assert gitlab.convert("Issue Hook", "uuid", encode({"project": {"name": "inventory"}}), CONFIG) == []


def test_gitlab_malformed_payload(gitlab):
    with pytest.raises(PayloadError):
        gitlab.convert("Pipeline Hook", "uuid", b"<html>", CONFIG)


def test_gitlab_extract_project_id(gitlab):
    assert gitlab.extract_installation_id(encode({"project_id": 11, "project": {"id": 12}})) == 11
    assert gitlab.extract_installation_id(encode({"project": {"id": 12}})) == 12
    assert gitlab.extract_installation_id(encode({"project": {"id": -1}})) is None
    assert gitlab.extract_installation_id(b"garbage") is None


def test_gitlab_verify_token(gitlab):
    assert gitlab.verify_signature(b"{}", "gl-token", "gl-token")
    assert not gitlab.verify_signature(b"{}", "other", "gl-token")
    assert not gitlab.verify_signature(b"{}", "", "")


def test_gitlab_extract_out_of_range_project_id(gitlab):
    assert gitlab.extract_installation_id(encode({"project_id": 2**70})) is None
    assert gitlab.extract_installation_id(encode({"project_id": 2**70, "project": {"id": 12}})) == 12


def test_github_verify_signature_strips_secret(github):
    body = b'{"zen":"Keep it simple"}'
    digest = hmac.new(b"gh-secret", body, hashlib.sha256).hexdigest()

    assert github.verify_signature(body, f"sha256={digest}", "gh-secret\n")
    assert github.verify_signature(body, f"sha256={digest}", "  gh-secret ")
    assert not github.verify_signature(body, f"sha256={digest}", "   ")
