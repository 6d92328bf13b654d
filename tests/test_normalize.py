"""Tests for event type normalization and subject inference."""

import pytest

from cdbridge.cdevents.normalize import (
    normalize_type,
    infer_subject_type,
    infer_subject_id,
    is_accepted_custom_type,
)


@pytest.mark.parametrize("raw, expected", [
    ("", "service.deployed"),
    ("dev.cdevents.service.deployed.0.3.0", "service.deployed"),
    ("  DEV.CDEVENTS.SERVICE.UPGRADED.0.3.0 ", "service.upgraded"),
    ("dev.cdevents.service.rolledback.0.3.0", "service.rolledback"),
    ("dev.cdevents.service.removed.0.3.0", "service.removed"),
    ("dev.cdevents.service.published.0.3.0", "service.published"),
    ("Environment.Created", "environment.created"),
    ("dev.cdevents.environment.modified.0.3.0", "environment.modified"),
    ("dev.cdevents.environment.deleted.0.3.0", "environment.deleted"),
    ("service.deployed", "service.deployed"),
    (" Dev.CDEvents.Pipeline.Run.Started.0.3.0 ", "dev.cdevents.pipeline.run.started.0.3.0"),
    ("Something Else", "something else"),
])
def test_normalize_type(raw, expected):
    assert normalize_type(raw) == expected


@pytest.mark.parametrize("resolved, expected", [
    ("service.deployed", "service"),
    ("environment.created", "environment"),
    ("dev.cdevents.pipeline.run.failed.0.3.0", "pipeline"),
    ("dev.cdevents.change.merged.0.3.0", "change"),
    ("dev.cdevents.artifact.packaged.0.3.0", "artifact"),
    ("dev.cdevents.incident.detected.0.3.0", "incident"),
    ("unknown.type", "service"),
])
def test_infer_subject_type(resolved, expected):
    assert infer_subject_type(resolved) == expected


def test_infer_subject_type_precedence():
    """Prefix checks win over substring checks, pipeline before change."""
    assert infer_subject_type("service.x.pipeline.y") == "service"
    assert infer_subject_type("x.pipeline.change.y") == "pipeline"


def test_infer_subject_id():
    assert infer_subject_id("service", "team/orders", "prod") == "team/orders"
    assert infer_subject_id("service", " orders ", "prod") == "service/orders"
    assert infer_subject_id("environment", "", "prod") == "environment/prod"
    assert infer_subject_id("service", "", "prod") == ""
    assert infer_subject_id("pipeline", "", "") == ""


@pytest.mark.parametrize("event_type, accepted", [
    ("dev.cdevents.pipeline.run.started.0.3.0", True),
    ("DEV.CDEVENTS.CHANGE.MERGED.0.3.0", True),
    ("dev.cdevents.artifact.published.0.3.0", True),
    (" dev.cdevents.incident.reported.0.3.0", True),
    ("dev.cdevents.build.started.0.3.0", False),
    ("pipeline.run.started", False),
    ("service.deployed", False),
])
def test_is_accepted_custom_type(event_type, accepted):
    assert is_accepted_custom_type(event_type) is accepted
