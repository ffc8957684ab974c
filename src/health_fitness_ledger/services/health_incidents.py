"""
Service over the normalized incident schema written by the migration.

Incidents are created, listed and updated directly; their log entries are
read back from the log collection through the owning incident id.
"""

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from pydantic import field_validator

from health_fitness_ledger.domain.health import IncidentStatusFlags, NormalizedIncident, NormalizedLog
from health_fitness_ledger.infrastructure.store.collections import ID_FIELD, CollectionStore
from health_fitness_ledger.services.queries import Page, PageQuery, paginate
from health_fitness_ledger.utils.exceptions import NotFoundError, ValidationError
from health_fitness_ledger.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

# Stored key for each NormalizedIncident field
INCIDENT_KEYS = {
    name: field.alias or name for name, field in NormalizedIncident.model_fields.items()
}
READ_ONLY_KEYS = {ID_FIELD, "created_at", "updated_at"}


class HealthIncidentQuery(PageQuery):
    """Filters for listing normalized incidents."""

    incident_id: str | None = None
    status: str | None = None
    sort_by: str = "dateStarted"

    @field_validator("status")
    @classmethod
    def _known_flag(cls, value: str | None) -> str | None:
        if value is not None and value not in IncidentStatusFlags.model_fields:
            allowed = ", ".join(IncidentStatusFlags.model_fields)
            raise ValueError(f"unknown status {value!r}; expected one of {allowed}")
        return value


def _stored_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Map snake_case field names onto stored keys; reject unknown fields."""
    stored = {INCIDENT_KEYS.get(key, key): value for key, value in data.items()}

    unknown = sorted(set(stored) - set(INCIDENT_KEYS.values()))
    if unknown:
        raise ValidationError(f"Unknown incident fields: {', '.join(unknown)}")

    return stored


class HealthIncidentService:
    """
    Service for normalized incidents and their logs.

    Args:
        store: Document store.
        incidents_collection: Collection of normalized incidents.
        logs_collection: Collection of normalized log entries.
    """

    def __init__(
        self,
        store: CollectionStore,
        incidents_collection: str = "health-incidents",
        logs_collection: str = "health-logs",
    ) -> None:
        self.store = store
        self.incidents_collection = incidents_collection
        self.logs_collection = logs_collection

    def create_incident(self, data: dict[str, Any]) -> NormalizedIncident:
        """
        Validate and store a new incident.

        ``dateStarted`` defaults to now; the identifier and timestamps are
        always generated here.

        Args:
            data: Incident fields, stored (camelCase) or snake_case names.

        Returns:
            Stored incident.

        Raises:
            ValidationError: If a field is unknown or has an invalid value.
        """
        payload = {k: v for k, v in _stored_keys(data).items() if k not in READ_ONLY_KEYS}
        now = utc_now()
        payload.setdefault("dateStarted", now)

        try:
            incident = NormalizedIncident.model_validate(
                {**payload, "created_at": now, "updated_at": now}
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid incident: {e}") from e

        self.store.insert_many(self.incidents_collection, [incident.to_document()])

        logger.info(f"Created incident {incident.id}")
        return incident

    def get_incident(self, incident_id: str) -> NormalizedIncident:
        documents = self.store.find(self.incidents_collection, {ID_FIELD: incident_id})
        if not documents:
            raise NotFoundError(f"Incident {incident_id} not found")
        return NormalizedIncident.model_validate(documents[0])

    def query_incidents(self, query: HealthIncidentQuery | None = None) -> Page[NormalizedIncident]:
        """
        List incidents, most recently started first by default.

        Args:
            query: Id or status flag filter, ordering and paging.

        Returns:
            Page of incidents with the total number of matches.
        """
        query = query or HealthIncidentQuery()

        filter = {ID_FIELD: query.incident_id} if query.incident_id else None
        documents = self.store.find(self.incidents_collection, filter)
        if query.status:
            documents = [
                doc for doc in documents if (doc.get("status") or {}).get(query.status) is True
            ]

        page, total = paginate(documents, query)

        logger.info(f"Found {total} incidents, returning {len(page)}")
        return Page[NormalizedIncident](
            items=[NormalizedIncident.model_validate(doc) for doc in page],
            total=total,
            skip=query.skip,
            limit=query.limit,
        )

    def update_incident(self, incident_id: str, updates: dict[str, Any]) -> NormalizedIncident:
        """
        Replace fields of a stored incident.

        Nested sections (``status``, ``symptoms``, ``treatments``) are
        replaced as a whole. ``updated_at`` is set to now.

        Args:
            incident_id: Identifier of the incident.
            updates: Fields to replace.

        Returns:
            Updated incident.

        Raises:
            ValidationError: If no updates are given, a field is unknown or
                read-only, or the incident becomes invalid.
            NotFoundError: If no incident has that id.
        """
        if not updates:
            raise ValidationError("No updates provided")

        fields = _stored_keys(updates)
        read_only = sorted(set(fields) & READ_ONLY_KEYS)
        if read_only:
            raise ValidationError(f"Fields cannot be updated: {', '.join(read_only)}")

        current = self.get_incident(incident_id)
        fields["updated_at"] = utc_now()

        try:
            incident = NormalizedIncident.model_validate({**current.to_document(), **fields})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid incident update: {e}") from e

        document = incident.to_document()
        self.store.update_one(
            self.incidents_collection,
            {ID_FIELD: incident_id},
            {key: document[key] for key in fields},
        )

        logger.info(f"Updated incident {incident_id}: {', '.join(sorted(updates))}")
        return incident

    def incident_logs(self, incident_id: str) -> list[NormalizedLog]:
        """
        Return the log entries of one incident, oldest first.

        Raises:
            NotFoundError: If no incident has that id.
        """
        self.get_incident(incident_id)

        logs: list[NormalizedLog] = []
        for document in self.store.find(self.logs_collection, {"incident_id": incident_id}):
            try:
                logs.append(NormalizedLog.model_validate(document))
            except PydanticValidationError as e:
                logger.warning(f"Skipping log {document.get(ID_FIELD)} of incident {incident_id}: {e}")

        logs.sort(key=lambda log: ensure_utc(log.timestamp))
        return logs
