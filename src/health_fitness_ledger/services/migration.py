"""
Health log schema migration.

One-shot batch transform of the flat health log collection into the
normalized incident + log schema:

    CHECK -> TRANSFORM -> BACKUP -> INSERT_INCIDENTS -> REPLACE_LOGS -> DONE

A failed check or backup ends in ABORTED before anything destructive runs.
The engine is not resumable and assumes exclusive access to its collections
for the duration of a run. It does not detect an earlier completed run;
the check only reports whether the target collections already hold data.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from health_fitness_ledger.domain.health import (
    HealthLogRecord,
    IncidentStatusFlags,
    LogIssueType,
    NormalizedIncident,
    NormalizedLog,
)
from health_fitness_ledger.infrastructure.store.collections import ID_FIELD, CollectionStore
from health_fitness_ledger.services.incidents import partition_by_incident, split_valid_records
from health_fitness_ledger.utils.exceptions import BackupFailure, StorageError, ValidationError
from health_fitness_ledger.utils.hashing import compute_documents_digest, generate_object_id
from health_fitness_ledger.utils.parameters import MigrationConfig
from health_fitness_ledger.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


class MigrationState(str, Enum):
    """Steps of a migration run."""

    CHECK = "check"
    TRANSFORM = "transform"
    BACKUP = "backup"
    INSERT_INCIDENTS = "insert_incidents"
    REPLACE_LOGS = "replace_logs"
    DONE = "done"
    ABORTED = "aborted"


class InvalidRecord(BaseModel):
    """Legacy document that cannot be migrated, with the reasons why."""

    record_id: str | None = None
    problems: list[str]


class CheckReport(BaseModel):
    """Outcome of the read-only pre-migration check."""

    total_records: int = 0
    incident_count: int = 0
    missing_incident_key: int = 0
    missing_timestamp: int = 0
    invalid_records: list[InvalidRecord] = Field(default_factory=list)
    existing_incidents: int = 0
    existing_backup: int = 0

    @property
    def passed(self) -> bool:
        return not self.invalid_records

    def failure_summary(self) -> str:
        parts: list[str] = []
        if self.missing_incident_key:
            parts.append(f"{self.missing_incident_key} missing incident_id")
        if self.missing_timestamp:
            parts.append(f"{self.missing_timestamp} missing timestamp")
        return (
            f"{len(self.invalid_records)} of {self.total_records} health logs are invalid "
            f"({', '.join(parts)})"
        )


class MigrationPlan(BaseModel):
    """In-memory result of the transform step."""

    incidents: list[NormalizedIncident]
    logs: list[NormalizedLog]


class MigrationReport(BaseModel):
    """Summary of a migration run."""

    state: MigrationState
    dry_run: bool = False
    check_only: bool = False
    check: CheckReport | None = None
    steps_completed: list[MigrationState] = Field(default_factory=list)
    incidents_created: int = 0
    logs_created: int = 0
    records_backed_up: int = 0
    legacy_deleted: int = 0
    error: str | None = None
    started_at: datetime
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        if self.check is not None:
            data["check"]["passed"] = self.check.passed
        return data


class MigrationEngine:
    """
    Engine migrating flat health logs to normalized incidents and logs.

    Each step is exposed as a method; ``run`` drives them in order.
    """

    def __init__(self, store: CollectionStore, config: MigrationConfig | None = None) -> None:
        """
        Initialize migration engine.

        Args:
            store: Document store holding the legacy collection.
            config: Migration configuration (collection names, digest algorithm).
        """
        self.store = store
        self.config = config or MigrationConfig()
        self.state = MigrationState.CHECK

    def load_legacy_documents(self) -> list[dict[str, Any]]:
        """Load every document of the legacy collection, unmodified."""
        return self.store.find(self.config.legacy_collection)

    def check(
        self, documents: list[dict[str, Any]] | None = None
    ) -> tuple[CheckReport, list[HealthLogRecord]]:
        """
        Validate the legacy documents. Read-only.

        Args:
            documents: Legacy documents; loaded from the store when omitted.

        Returns:
            Tuple of (check report, parsed records that passed validation).
        """
        if documents is None:
            documents = self.load_legacy_documents()

        report = CheckReport(
            total_records=len(documents),
            existing_incidents=self.store.count(self.config.incidents_collection),
            existing_backup=self.store.count(self.config.backup_collection),
        )

        records: list[HealthLogRecord] = []
        for document in documents:
            try:
                records.append(HealthLogRecord.model_validate(document))
            except PydanticValidationError as e:
                # Not a mapping at all: report it under the key/timestamp rule.
                logger.warning(f"Health log {document!r:.80} is not a document: {e.error_count()} error(s)")
                records.append(HealthLogRecord())

        valid, invalid = split_valid_records(records)
        for record in invalid:
            missing = record.missing_fields()
            if "incident_id" in missing:
                report.missing_incident_key += 1
            if "timestamp" in missing:
                report.missing_timestamp += 1
            report.invalid_records.append(
                InvalidRecord(record_id=record.id, problems=[f"missing {name}" for name in missing])
            )

        report.incident_count = len({r.incident_key for r in valid})

        if report.existing_incidents:
            logger.warning(
                f"{self.config.incidents_collection} already holds "
                f"{report.existing_incidents} documents"
            )
        if report.existing_backup:
            logger.warning(
                f"{self.config.backup_collection} already holds "
                f"{report.existing_backup} documents"
            )

        if report.passed:
            logger.info(
                f"Check passed: {report.total_records} health logs, "
                f"{report.incident_count} incidents"
            )
        else:
            logger.error(f"Check failed: {report.failure_summary()}")

        return report, valid

    def transform(self, records: list[HealthLogRecord]) -> MigrationPlan:
        """
        Build normalized incidents and logs from legacy records. Pure.

        Each incident is seeded from its earliest record; its status flags
        come from its latest record. Every legacy record becomes one log
        that keeps its identifier and timestamps.

        Args:
            records: Valid legacy records.

        Returns:
            Migration plan.

        Raises:
            ValidationError: If a record lacks an incident key or timestamp.
        """
        _, invalid = split_valid_records(records)
        if invalid:
            raise ValidationError(
                f"Cannot transform {len(invalid)} health log(s) missing incident_id or timestamp"
            )

        incidents: list[NormalizedIncident] = []
        logs: list[NormalizedLog] = []

        for group in partition_by_incident(records).values():
            first = group[0]
            last = group[-1]

            incident = NormalizedIncident(
                pain_locations=[first.body_area] if first.body_area else [],
                pain_intensity=first.pain_level or 0,
                date_started=first.timestamp,
                description=first.description,
                status=IncidentStatusFlags.from_log_status(last.status),
                created_at=first.created_at,
                updated_at=last.updated_at,
            )
            incidents.append(incident)

            for record in group:
                logs.append(
                    NormalizedLog(
                        id=record.id or generate_object_id(),
                        timestamp=record.timestamp,
                        incident_id=incident.id,
                        issue_type=LogIssueType.UPDATE,
                        description=record.description,
                        created_at=record.created_at,
                        updated_at=record.updated_at,
                    )
                )

        logger.info(f"Transformed {len(logs)} health logs into {len(incidents)} incidents")
        return MigrationPlan(incidents=incidents, logs=logs)

    def backup(self, documents: list[dict[str, Any]]) -> int:
        """
        Copy the legacy documents unmodified into the backup collection.

        The copy is read back and compared by count and content digest.

        Args:
            documents: Legacy documents as loaded from the store.

        Returns:
            Number of backed up documents.

        Raises:
            BackupFailure: If the write fails or the copy does not match.
        """
        collection = self.config.backup_collection

        try:
            self.store.insert_many(collection, documents)
            legacy_ids = {doc.get(ID_FIELD) for doc in documents}
            copied = [
                doc for doc in self.store.find(collection) if doc.get(ID_FIELD) in legacy_ids
            ]
        except StorageError as e:
            raise BackupFailure(f"Backup to {collection} failed: {e}") from e

        if len(copied) != len(documents):
            raise BackupFailure(
                f"Backup to {collection} incomplete: {len(copied)} of {len(documents)} documents"
            )

        algorithm = self.config.digest_algorithm
        if compute_documents_digest(copied, algorithm) != compute_documents_digest(
            documents, algorithm
        ):
            raise BackupFailure(f"Backup to {collection} does not match the source documents")

        logger.info(f"Backed up {len(documents)} records to {collection}")
        return len(documents)

    def insert_incidents(self, plan: MigrationPlan) -> int:
        """Insert the planned incidents; returns the number inserted."""
        inserted = self.store.insert_many(
            self.config.incidents_collection,
            [incident.to_document() for incident in plan.incidents],
        )
        logger.info(f"Inserted {inserted} incidents into {self.config.incidents_collection}")
        return inserted

    def replace_logs(self, plan: MigrationPlan) -> tuple[int, int]:
        """
        Delete every legacy log, then insert the normalized logs.

        Returns:
            Tuple of (deleted, inserted).
        """
        collection = self.config.legacy_collection

        deleted = self.store.delete_many(collection)
        logger.info(f"Deleted {deleted} legacy health logs from {collection}")

        inserted = self.store.insert_many(collection, [log.to_document() for log in plan.logs])
        logger.info(f"Inserted {inserted} health logs into {collection}")

        return deleted, inserted

    def _abort(self, report: MigrationReport, message: str) -> None:
        self.state = MigrationState.ABORTED
        report.state = MigrationState.ABORTED
        report.error = message
        report.finished_at = utc_now()
        logger.error(f"Migration aborted: {message}")

    def _advance(self, report: MigrationReport, state: MigrationState) -> None:
        report.steps_completed.append(self.state)
        self.state = state
        report.state = state

    def run(self, dry_run: bool = False, check_only: bool = False) -> MigrationReport:
        """
        Run the migration.

        Args:
            dry_run: Run CHECK and TRANSFORM only and log what the remaining
                steps would do. Nothing is written.
            check_only: Run CHECK only and report. Nothing is transformed or written.

        Returns:
            Migration report. A check-only run returns its report even when
            the check fails.

        Raises:
            ValidationError: If the check fails (except in check-only mode).
            BackupFailure: If the backup fails; the primary collections are untouched.
            StorageError: If a later write fails; steps already completed stay applied.
        """
        self.state = MigrationState.CHECK
        report = MigrationReport(
            state=self.state, dry_run=dry_run, check_only=check_only, started_at=utc_now()
        )

        mode = "CHECK ONLY" if check_only else ("DRY RUN" if dry_run else "MIGRATION")
        logger.info(f"Starting health log migration ({mode})")

        documents = self.load_legacy_documents()
        check_report, records = self.check(documents)
        report.check = check_report

        if not check_report.passed:
            self._abort(report, check_report.failure_summary())
            if check_only:
                return report
            raise ValidationError(report.error or "Check failed", report=report)

        if check_only:
            report.steps_completed.append(MigrationState.CHECK)
            report.finished_at = utc_now()
            return report

        if not documents:
            logger.warning("No health logs to migrate")
            report.steps_completed.append(MigrationState.CHECK)
            self.state = MigrationState.DONE
            report.state = MigrationState.DONE
            report.finished_at = utc_now()
            return report

        self._advance(report, MigrationState.TRANSFORM)
        plan = self.transform(records)

        if dry_run:
            report.steps_completed.append(MigrationState.TRANSFORM)
            report.incidents_created = len(plan.incidents)
            report.logs_created = len(plan.logs)
            report.records_backed_up = len(documents)
            report.legacy_deleted = len(documents)
            report.finished_at = utc_now()

            logger.info(
                f"[DRY RUN] Would back up {len(documents)} records to "
                f"{self.config.backup_collection}"
            )
            logger.info(
                f"[DRY RUN] Would insert {len(plan.incidents)} incidents into "
                f"{self.config.incidents_collection}"
            )
            logger.info(
                f"[DRY RUN] Would delete {len(documents)} legacy health logs and insert "
                f"{len(plan.logs)} health logs into {self.config.legacy_collection}"
            )
            return report

        self._advance(report, MigrationState.BACKUP)
        try:
            report.records_backed_up = self.backup(documents)
        except BackupFailure as e:
            self._abort(report, str(e))
            e.report = report
            raise

        try:
            self._advance(report, MigrationState.INSERT_INCIDENTS)
            report.incidents_created = self.insert_incidents(plan)

            self._advance(report, MigrationState.REPLACE_LOGS)
            report.legacy_deleted, report.logs_created = self.replace_logs(plan)
        except StorageError as e:
            self._abort(report, f"{report.steps_completed[-1].value} completed, then: {e}")
            raise

        self._advance(report, MigrationState.DONE)
        report.finished_at = utc_now()

        logger.info(
            f"Migration completed: {report.incidents_created} incidents created, "
            f"{report.logs_created} logs created, {report.records_backed_up} records backed up"
        )
        return report
