"""
Event type normalization and subject inference.
"""

LONG_TYPE_PREFIX = "dev.cdevents."
LONG_TYPE_VERSION = "0.3.0"

# Long versioned forms (and the bare short forms where accepted) mapped to internal keys.
_TYPE_ALIASES = {
    "": "service.deployed",
    "dev.cdevents.service.deployed.0.3.0": "service.deployed",
    "dev.cdevents.service.upgraded.0.3.0": "service.upgraded",
    "dev.cdevents.service.rolledback.0.3.0": "service.rolledback",
    "dev.cdevents.service.removed.0.3.0": "service.removed",
    "dev.cdevents.service.published.0.3.0": "service.published",
    "environment.created": "environment.created",
    "dev.cdevents.environment.created.0.3.0": "environment.created",
    "environment.modified": "environment.modified",
    "dev.cdevents.environment.modified.0.3.0": "environment.modified",
    "environment.deleted": "environment.deleted",
    "dev.cdevents.environment.deleted.0.3.0": "environment.deleted",
}

# Checked in order; first match wins.
_SUBJECT_RULES = (
    (str.startswith, "service.", "service"),
    (str.startswith, "environment.", "environment"),
    (str.__contains__, ".pipeline.", "pipeline"),
    (str.__contains__, ".change.", "change"),
    (str.__contains__, ".artifact.", "artifact"),
    (str.__contains__, ".incident.", "incident"),
)

ACCEPTED_CUSTOM_PREFIXES = (
    "dev.cdevents.pipeline.",
    "dev.cdevents.change.",
    "dev.cdevents.artifact.",
    "dev.cdevents.incident.",
)


def normalize_type(value: str) -> str:
    """Map a free-form event type to its internal key, or return it lower-cased."""
    v = (value or "").strip().lower()
    return _TYPE_ALIASES.get(v, v)


def long_type(resolved: str) -> str:
    """Long versioned form of a short key, e.g. dev.cdevents.service.deployed.0.3.0."""
    return f"{LONG_TYPE_PREFIX}{resolved}.{LONG_TYPE_VERSION}"


def infer_subject_type(resolved: str) -> str:
    for match, needle, subject_type in _SUBJECT_RULES:
        if match(resolved, needle):
            return subject_type
    return "service"


def infer_subject_id(subject_type: str, service: str, environment: str) -> str:
    """
    Derive a subject id from the service or environment.
    
    Returns an empty string when nothing applies; callers treat that as invalid.
    """
    service = (service or "").strip()
    environment = (environment or "").strip()
    subject_type = (subject_type or "").strip()
    
    if service:
        if "/" in service:
            return service
        return f"{subject_type}/{service}"
    if subject_type == "environment" and environment:
        return f"environment/{environment}"
    return ""


def is_accepted_custom_type(event_type: str) -> bool:
    return (event_type or "").strip().lower().startswith(ACCEPTED_CUSTOM_PREFIXES)
