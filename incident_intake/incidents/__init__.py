"""Incident records, their storage and the reconciliation of confirmed drafts."""

from .models import IncidentDraft, IncidentStatus, IncidentWrite, PersistedIncident, Priority
from .reconciler import IncidentReconciler, IncidentStore, PersistenceError, build_incident_write
from .repository import IncidentRepository
from .timestamps import TimestampFormatError, to_datetime, to_storage_timestamp

__all__ = [
    "IncidentDraft",
    "IncidentReconciler",
    "IncidentRepository",
    "IncidentStatus",
    "IncidentStore",
    "IncidentWrite",
    "PersistedIncident",
    "PersistenceError",
    "Priority",
    "TimestampFormatError",
    "build_incident_write",
    "to_datetime",
    "to_storage_timestamp",
]
