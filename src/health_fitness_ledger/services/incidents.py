"""
Incident grouping service.

Groups flat health log entries into incidents by their free-text incident
key and derives per-incident statistics: pain trend figures, duration and
the union of symptoms, activities and triggers.

Grouping is forgiving: records without an incident key or timestamp are
left out and reported as a ``DataQualityWarning``. The migration engine
uses the same grouping behind a strict validation step instead.
"""

import logging
import statistics
import warnings
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from health_fitness_ledger.domain.health import HealthLogRecord, IncidentSummary, LogStatus
from health_fitness_ledger.infrastructure.store.collections import CollectionStore
from health_fitness_ledger.utils.exceptions import DataQualityWarning, NotFoundError, ValidationError
from health_fitness_ledger.utils.hashing import generate_object_id
from health_fitness_ledger.utils.parameters import IncidentsConfig
from health_fitness_ledger.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

REQUIRED_LOG_FIELDS = ("issue_type", "pain_level", "description", "incident_id", "body_area")
UPDATABLE_LOG_FIELDS = frozenset(
    {
        "timestamp",
        "incident_id",
        "issue_type",
        "pain_level",
        "description",
        "body_area",
        "status",
        "activities",
        "triggers",
        "symptoms",
    }
)


def _checked_pain_level(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 10:
        raise ValidationError("Pain level must be between 1 and 10")
    return value


def _checked_status(value: Any) -> LogStatus:
    try:
        return LogStatus(value)
    except ValueError as e:
        allowed = ", ".join(s.value for s in LogStatus)
        raise ValidationError(f"Invalid status {value!r}; expected one of {allowed}") from e


def split_valid_records(
    records: Iterable[HealthLogRecord],
) -> tuple[list[HealthLogRecord], list[HealthLogRecord]]:
    """
    Separate records that can be grouped from those that cannot.

    Args:
        records: Legacy log records.

    Returns:
        Tuple of (valid, invalid); invalid records lack an incident key or timestamp.
    """
    valid: list[HealthLogRecord] = []
    invalid: list[HealthLogRecord] = []

    for record in records:
        if record.missing_fields():
            invalid.append(record)
        else:
            valid.append(record)

    return valid, invalid


def partition_by_incident(
    records: Iterable[HealthLogRecord],
) -> dict[str, list[HealthLogRecord]]:
    """
    Partition valid records by exact incident key.

    Keys are compared as-is: "Back_Pain" and "back_pain" are different
    incidents. Each group is sorted by timestamp, oldest first; records with
    equal timestamps keep their input order.

    Args:
        records: Records that all have an incident key and a timestamp.

    Returns:
        Mapping of incident key to its chronologically sorted records, in
        order of first appearance.
    """
    groups: dict[str, list[HealthLogRecord]] = defaultdict(list)

    for record in records:
        groups[record.incident_key].append(record)  # type: ignore[index]

    for group in groups.values():
        group.sort(key=lambda r: ensure_utc(r.timestamp))  # type: ignore[arg-type]

    return dict(groups)


def _tag_union(records: list[HealthLogRecord], field: str) -> list[str]:
    tags: set[str] = set()
    for record in records:
        tags.update(tag for tag in getattr(record, field) if tag)
    return sorted(tags)


def summarize_incident(incident_key: str, records: list[HealthLogRecord]) -> IncidentSummary:
    """
    Build the summary of one incident.

    Args:
        incident_key: Grouping key shared by the records.
        records: The incident's records, sorted by timestamp ascending.

    Returns:
        Incident summary.
    """
    first = records[0]
    last = records[-1]

    first_log = first.timestamp
    last_log = last.timestamp
    duration = ensure_utc(last_log) - ensure_utc(first_log)  # type: ignore[arg-type]

    pain_levels = [r.pain_level for r in records if r.pain_level is not None]

    return IncidentSummary(
        incident_key=incident_key,
        issue_type=first.issue_type,
        first_log=first_log,
        last_log=last_log,
        duration_hours=duration.total_seconds() / 3600,
        log_count=len(records),
        max_pain_level=max(pain_levels) if pain_levels else None,
        avg_pain_level=round(statistics.mean(pain_levels), 1) if pain_levels else None,
        status=last.status,
        all_symptoms=_tag_union(records, "symptoms"),
        all_activities=_tag_union(records, "activities"),
        all_triggers=_tag_union(records, "triggers"),
    )


def group_into_incidents(logs: Iterable[HealthLogRecord]) -> list[IncidentSummary]:
    """
    Group legacy log records into incident summaries.

    Records missing an incident key or timestamp are excluded and reported
    with a ``DataQualityWarning``; the remaining records are always
    summarized.

    Args:
        logs: Legacy log records.

    Returns:
        One summary per distinct incident key, most recent first log first.
    """
    valid, invalid = split_valid_records(logs)

    if invalid:
        message = (
            f"Excluded {len(invalid)} health log(s) missing incident_id or timestamp: "
            f"{', '.join(str(r.id) for r in invalid)}"
        )
        logger.warning(message)
        warnings.warn(message, DataQualityWarning, stacklevel=2)

    summaries = [
        summarize_incident(key, records)
        for key, records in partition_by_incident(valid).items()
    ]
    summaries.sort(key=lambda s: ensure_utc(s.first_log), reverse=True)

    return summaries


class IncidentQuery(BaseModel):
    """Filters applied to log records before they are grouped."""

    issue_type: str | None = None
    status: LogStatus | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int | None = Field(None, ge=1)

    model_config = ConfigDict(use_enum_values=True)

    def matches(self, record: HealthLogRecord) -> bool:
        if self.issue_type and record.issue_type != self.issue_type:
            return False
        if self.status and record.status != self.status:
            return False
        if self.start_date or self.end_date:
            if record.timestamp is None:
                return False
            ts = ensure_utc(record.timestamp)
            if self.start_date and ts < ensure_utc(self.start_date):
                return False
            if self.end_date and ts > ensure_utc(self.end_date):
                return False
        return True


class RecentIncident(BaseModel):
    incident_key: str
    issue_type: str | None = None
    last_log: datetime
    status: str | None = None


class AutocompleteData(BaseModel):
    """Distinct values previously entered, for form autocompletion."""

    issue_types: list[str] = Field(default_factory=list)
    body_areas: list[str] = Field(default_factory=list)
    symptoms: list[str] = Field(default_factory=list)
    triggers: list[str] = Field(default_factory=list)
    activities: list[str] = Field(default_factory=list)
    incident_keys: list[RecentIncident] = Field(default_factory=list)


class IncidentService:
    """
    Service for reading health logs as incidents.

    Loads legacy log documents from the store, filters and groups them.
    """

    def __init__(
        self,
        store: CollectionStore,
        collection: str = "health-logs",
        config: IncidentsConfig | None = None,
    ) -> None:
        """
        Initialize incident service.

        Args:
            store: Document store.
            collection: Collection holding the flat health logs.
            config: Incident query configuration.
        """
        self.store = store
        self.collection = collection
        self.config = config or IncidentsConfig()

    def load_records(self) -> list[HealthLogRecord]:
        """
        Load all log records.

        Documents that cannot be read at all are left out with a
        ``DataQualityWarning``.

        Returns:
            Parsed log records.
        """
        records: list[HealthLogRecord] = []
        skipped: list[str] = []

        for document in self.store.find(self.collection):
            try:
                records.append(HealthLogRecord.model_validate(document))
            except PydanticValidationError as e:
                logger.warning(f"Skipping unreadable health log {document.get('_id')}: {e}")
                skipped.append(str(document.get("_id")))

        if skipped:
            warnings.warn(
                f"Skipped {len(skipped)} unreadable health log(s): {', '.join(skipped)}",
                DataQualityWarning,
                stacklevel=2,
            )

        return records

    def query(self, query: IncidentQuery | None = None) -> list[IncidentSummary]:
        """
        Return incident summaries for the logs matching a query.

        Args:
            query: Filters applied to individual logs before grouping.

        Returns:
            Summaries, most recent incident first, cut to the query limit.
        """
        query = query or IncidentQuery()
        records = [r for r in self.load_records() if query.matches(r)]

        summaries = group_into_incidents(records)
        limit = query.limit or self.config.default_limit

        logger.info(f"Grouped {len(records)} health logs into {len(summaries)} incidents")
        return summaries[:limit]

    def autocomplete(self) -> AutocompleteData:
        """
        Collect distinct previously used values.

        Returns:
            Sorted distinct issue types, body areas and tags, plus the most
            recently updated incident keys.
        """
        records = self.load_records()

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", DataQualityWarning)
            summaries = group_into_incidents(records)

        summaries.sort(key=lambda s: ensure_utc(s.last_log), reverse=True)
        recent = [
            RecentIncident(
                incident_key=s.incident_key,
                issue_type=s.issue_type,
                last_log=s.last_log,
                status=s.status,
            )
            for s in summaries[: self.config.autocomplete_incident_limit]
        ]

        return AutocompleteData(
            issue_types=sorted({r.issue_type for r in records if r.issue_type}),
            body_areas=sorted({r.body_area for r in records if r.body_area}),
            symptoms=_tag_union(records, "symptoms"),
            triggers=_tag_union(records, "triggers"),
            activities=_tag_union(records, "activities"),
            incident_keys=recent,
        )

    def create_log(self, data: dict[str, Any]) -> HealthLogRecord:
        """
        Validate and store a new health log.

        Args:
            data: Log fields as submitted by the user.

        Returns:
            Stored log record.

        Raises:
            ValidationError: If a required field is missing, the pain level
                is outside 1 to 10, or the status or timestamp is invalid.
        """
        for field in REQUIRED_LOG_FIELDS:
            if not data.get(field):
                raise ValidationError(f"Missing required field: {field}")

        pain_level = _checked_pain_level(data["pain_level"])
        status = _checked_status(data.get("status") or LogStatus.ACTIVE)

        now = utc_now()
        try:
            record = HealthLogRecord(
                timestamp=data.get("timestamp") or now,
                incident_key=data["incident_id"],
                issue_type=data["issue_type"],
                pain_level=pain_level,
                description=data["description"],
                body_area=data["body_area"],
                status=status,
                activities=data.get("activities") or [],
                triggers=data.get("triggers") or [],
                symptoms=data.get("symptoms") or [],
                created_at=now,
                updated_at=now,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid health log: {e}") from e

        if record.timestamp is None:
            raise ValidationError(f"Invalid timestamp: {data.get('timestamp')!r}")

        record.id = generate_object_id()
        self.store.insert_many(self.collection, [record.to_document()])

        logger.info(f"Created health log {record.id} for incident {record.incident_key}")
        return record

    def update_log(self, log_id: str, updates: dict[str, Any]) -> HealthLogRecord:
        """
        Apply field updates to a stored health log.

        Args:
            log_id: Identifier of the health log.
            updates: Stored field names and their new values.

        Returns:
            Updated log record.

        Raises:
            ValidationError: If no updates are given, a field is unknown,
                or a new pain level, status or timestamp is invalid.
            NotFoundError: If no health log has that id.
        """
        if not updates:
            raise ValidationError("No updates provided")

        unknown = sorted(set(updates) - UPDATABLE_LOG_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")

        fields = dict(updates)
        if fields.get("pain_level") is not None:
            fields["pain_level"] = _checked_pain_level(fields["pain_level"])
        if fields.get("status") is not None:
            fields["status"] = _checked_status(fields["status"]).value
        if "timestamp" in fields:
            parsed = HealthLogRecord.model_validate({"timestamp": fields["timestamp"]}).timestamp
            if parsed is None:
                raise ValidationError(f"Invalid timestamp: {fields['timestamp']!r}")
            fields["timestamp"] = parsed
        fields["updated_at"] = utc_now()

        document = self.store.update_one(self.collection, {"_id": log_id}, fields)
        if document is None:
            raise NotFoundError(f"Health log {log_id} not found")

        logger.info(f"Updated health log {log_id}: {', '.join(sorted(updates))}")
        return HealthLogRecord.model_validate(document)
