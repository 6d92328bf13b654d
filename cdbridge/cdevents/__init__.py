"""
CDEvents construction and publishing.
"""
from .models import CanonicalEvent, CDEvent
from .normalize import (
    normalize_type,
    infer_subject_type,
    infer_subject_id,
    is_accepted_custom_type,
)
from .builder import build_event_body
from .client import EventPublisher, sign

__all__ = [
    "CanonicalEvent",
    "CDEvent",
    "normalize_type",
    "infer_subject_type",
    "infer_subject_id",
    "is_accepted_custom_type",
    "build_event_body",
    "EventPublisher",
    "sign",
]
