"""Unit tests for the normalized incident service."""

import pytest

from health_fitness_ledger.infrastructure.store.collections import InMemoryCollectionStore
from health_fitness_ledger.services.health_incidents import HealthIncidentQuery, HealthIncidentService
from health_fitness_ledger.services.migration import MigrationEngine
from health_fitness_ledger.utils.exceptions import NotFoundError, ValidationError


def _service() -> tuple[InMemoryCollectionStore, HealthIncidentService]:
    store = InMemoryCollectionStore()
    service = HealthIncidentService(store)
    service.create_incident(
        {"painLocations": ["left knee"], "painIntensity": 6, "dateStarted": "2024-03-01T08:00:00Z"}
    )
    service.create_incident(
        {
            "pain_locations": ["neck"],
            "pain_intensity": 3,
            "date_started": "2024-05-01T08:00:00Z",
            "status": {"resolved": True},
        }
    )
    service.create_incident({"painLocations": ["lower back"], "dateStarted": "2024-04-01T08:00:00Z"})
    return store, service


def test_create_incident_stores_camel_case_document() -> None:
    """Test incident creation with generated id and timestamps."""
    store, _ = _service()

    documents = store.find("health-incidents")
    if len(documents) != 3:
        raise AssertionError(f"Expected 3 incidents, got {len(documents)}")

    neck = next(doc for doc in documents if doc["painLocations"] == ["neck"])
    if neck["painIntensity"] != 3 or neck["status"]["resolved"] is not True:
        raise AssertionError(f"Unexpected stored incident: {neck}")
    if not neck["_id"] or neck["created_at"] is None or "dateStarted" not in neck:
        raise AssertionError(f"Expected generated fields, got {neck}")


def test_create_incident_rejects_unknown_fields() -> None:
    """Test that unknown fields are not stored."""
    store = InMemoryCollectionStore()
    service = HealthIncidentService(store)

    with pytest.raises(ValidationError, match="painScore"):
        service.create_incident({"painScore": 4})

    if store.count("health-incidents") != 0:
        raise AssertionError("Expected nothing to be stored")


def test_query_incidents_sort_filter_and_page() -> None:
    """Test incident listings."""
    _, service = _service()

    newest_first = service.query_incidents()
    locations = [i.pain_locations[0] for i in newest_first.items]
    if locations != ["neck", "lower back", "left knee"] or newest_first.total != 3:
        raise AssertionError(f"Unexpected default listing: {locations}")

    oldest = service.query_incidents(HealthIncidentQuery(sort_order="asc", limit=1))
    if oldest.returned != 1 or oldest.total != 3 or oldest.items[0].pain_locations != ["left knee"]:
        raise AssertionError(f"Unexpected first page: {oldest}")

    resolved = service.query_incidents(HealthIncidentQuery(status="resolved"))
    if resolved.total != 1 or resolved.items[0].pain_locations != ["neck"]:
        raise AssertionError(f"Unexpected status filter result: {resolved.items}")

    by_id = service.query_incidents(HealthIncidentQuery(incident_id=resolved.items[0].id))
    if by_id.total != 1:
        raise AssertionError(f"Expected lookup by id, got {by_id.total}")

    with pytest.raises(ValueError):
        HealthIncidentQuery(status="gone")


def test_update_incident() -> None:
    """Test incident updates and their validation."""
    store, service = _service()
    incident = service.query_incidents(HealthIncidentQuery(sort_order="asc", limit=1)).items[0]

    updated = service.update_incident(incident.id, {"status": {"improving": True}, "pain_intensity": 4})

    if not updated.status.improving or updated.status.worsening or updated.pain_intensity != 4:
        raise AssertionError(f"Unexpected updated incident: {updated}")

    stored = store.find("health-incidents", {"_id": incident.id})[0]
    if stored["status"]["improving"] is not True or stored["painIntensity"] != 4:
        raise AssertionError(f"Unexpected stored incident: {stored}")
    if stored["painLocations"] != ["left knee"] or stored["created_at"] != incident.to_document()["created_at"]:
        raise AssertionError("Expected untouched fields to be kept")

    with pytest.raises(ValidationError, match="No updates"):
        service.update_incident(incident.id, {})
    with pytest.raises(ValidationError, match="cannot be updated"):
        service.update_incident(incident.id, {"_id": "other"})
    with pytest.raises(ValidationError):
        service.update_incident(incident.id, {"painIntensity": "very"})
    with pytest.raises(NotFoundError):
        service.update_incident("missing", {"painIntensity": 2})


def test_reads_back_migrated_incidents_and_logs() -> None:
    """Test the service over collections written by the migration."""
    store = InMemoryCollectionStore(
        {
            "health-logs": [
                {"_id": "log-1", "incident_id": "knee", "timestamp": "2024-03-04T08:00:00Z", "status": "improving"},
                {"_id": "log-2", "incident_id": "knee", "timestamp": "2024-03-01T08:00:00Z", "pain_level": 6},
            ]
        }
    )
    MigrationEngine(store).run()
    service = HealthIncidentService(store)

    incidents = service.query_incidents()
    if incidents.total != 1:
        raise AssertionError(f"Expected one migrated incident, got {incidents.total}")

    incident = incidents.items[0]
    if not incident.status.improving or incident.pain_intensity != 6:
        raise AssertionError(f"Unexpected migrated incident: {incident}")

    logs = service.incident_logs(incident.id)
    if [log.id for log in logs] != ["log-2", "log-1"]:
        raise AssertionError(f"Expected logs oldest first, got {[log.id for log in logs]}")

    with pytest.raises(NotFoundError):
        service.incident_logs("missing")
