"""
Command-line interface for Health Fitness Ledger.

Provides commands for the health log migration, incident reports, fitness
goals, lab results and Strava workout sync.
"""

import json
from datetime import datetime
from pathlib import Path

import typer

from health_fitness_ledger.infrastructure.parsers.csv_parser import CSVParser
from health_fitness_ledger.infrastructure.store.collections import CollectionStore, create_store
from health_fitness_ledger.infrastructure.strava_client.client import StravaClient
from health_fitness_ledger.services.goal_progress import GoalService
from health_fitness_ledger.services.health_incidents import HealthIncidentQuery, HealthIncidentService
from health_fitness_ledger.services.incidents import IncidentQuery, IncidentService
from health_fitness_ledger.services.lab_results import LabResultQuery, LabResultService
from health_fitness_ledger.services.migration import MigrationEngine, MigrationReport
from health_fitness_ledger.services.output import OutputService
from health_fitness_ledger.services.workouts import StravaSyncService, WorkoutService
from health_fitness_ledger.utils.exceptions import BackupFailure, HealthLedgerError, ValidationError
from health_fitness_ledger.utils.logging_config import get_logger, setup_logging
from health_fitness_ledger.utils.parameters import ParameterLoader
from health_fitness_ledger.utils.timezone_utils import parse_datetime

app = typer.Typer(help="Health Fitness Ledger - Health logs, labs and fitness tracking")

logger = get_logger(__name__)


def init_config(config_path: str = "config/config.yaml") -> ParameterLoader:
    """
    Initialize configuration and logging.

    Args:
        config_path: Path to configuration file.

    Returns:
        Parameter loader instance.
    """
    param_loader = ParameterLoader(config_path)
    setup_logging(param_loader.get_logging_config(), "health_fitness_ledger")
    return param_loader


def open_store(param_loader: ParameterLoader) -> CollectionStore:
    return create_store(param_loader.get_storage_config())


def _parse_date(value: str | None, param_loader: ParameterLoader) -> datetime | None:
    if not value:
        return None
    try:
        return parse_datetime(value, None, param_loader.config.timezone)
    except (ValueError, OverflowError) as e:
        raise ValidationError(f"Invalid date {value!r}: {e}") from e


def _echo_check(report: MigrationReport) -> None:
    check = report.check
    if check is None:
        return

    typer.echo(f"Health logs: {check.total_records}")
    typer.echo(f"Incidents: {check.incident_count}")
    typer.echo(f"Missing incident_id: {check.missing_incident_key}")
    typer.echo(f"Missing timestamp: {check.missing_timestamp}")
    if check.existing_incidents:
        typer.echo(f"Existing incidents: {check.existing_incidents}")
    if check.existing_backup:
        typer.echo(f"Existing backup records: {check.existing_backup}")
    for invalid in check.invalid_records:
        typer.echo(f"  - {invalid.record_id}: {', '.join(invalid.problems)}")


@app.command()
def check(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    Check whether the legacy health logs can be migrated.

    Read-only; exits with code 1 when any record is invalid.
    """
    try:
        param_loader = init_config(config_path)
        engine = MigrationEngine(open_store(param_loader), param_loader.get_migration_config())

        report = engine.run(check_only=True)
        _echo_check(report)

    except HealthLedgerError as e:
        logger.error(f"Check failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    if report.check is None or not report.check.passed:
        typer.echo("Check failed: resolve the records above before migrating", err=True)
        raise typer.Exit(code=1)

    typer.echo("Check passed")


@app.command()
def migrate(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
    dry_run: bool = typer.Option(False, help="Check and transform only; write nothing"),
) -> None:
    """
    Migrate legacy health logs to incidents and normalized logs.

    Backs up the legacy collection first and writes a JSON report to the
    output directory.
    """
    try:
        param_loader = init_config(config_path)
        output_service = OutputService(param_loader.get_output_config())
        engine = MigrationEngine(open_store(param_loader), param_loader.get_migration_config())

        try:
            report = engine.run(dry_run=dry_run)
        except (ValidationError, BackupFailure) as e:
            if isinstance(e.report, MigrationReport):
                _echo_check(e.report)
                output_service.write_migration_report(e.report)
            raise

        report_path = output_service.write_migration_report(report)

    except HealthLedgerError as e:
        logger.error(f"Migration failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    prefix = "[DRY RUN] Would create" if dry_run else "Created"
    typer.echo(f"{prefix} {report.incidents_created} incidents and {report.logs_created} logs")
    typer.echo(f"Records backed up: {report.records_backed_up}")
    typer.echo(f"Report written to {report_path}")


@app.command()
def incidents(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
    issue_type: str | None = typer.Option(None, help="Only logs of this issue type"),
    status: str | None = typer.Option(None, help="Only logs with this status"),
    start_date: str | None = typer.Option(None, help="Only logs on or after this date"),
    end_date: str | None = typer.Option(None, help="Only logs on or before this date"),
    limit: int | None = typer.Option(None, help="Maximum number of incidents"),
    output_format: str | None = typer.Option(None, help="Output format: csv, parquet, or both"),
) -> None:
    """
    Group legacy health logs into incidents and write the summaries.
    """
    try:
        param_loader = init_config(config_path)
        storage_config = param_loader.get_storage_config()
        output_config = param_loader.get_output_config()

        if output_format:
            if output_format == "both":
                output_config.formats = ["csv", "parquet"]
            else:
                output_config.formats = [output_format]

        try:
            query = IncidentQuery(
                issue_type=issue_type,
                status=status,
                start_date=_parse_date(start_date, param_loader),
                end_date=_parse_date(end_date, param_loader),
                limit=limit,
            )
        except ValueError as e:
            raise ValidationError(f"Invalid incident query: {e}") from e

        service = IncidentService(
            open_store(param_loader),
            storage_config.health_logs_collection,
            param_loader.get_incidents_config(),
        )
        summaries = service.query(query)

        OutputService(output_config).write_incidents(summaries)

    except HealthLedgerError as e:
        logger.error(f"Incident report failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(f"Found {len(summaries)} incidents")
    for summary in summaries:
        typer.echo(
            f"  {summary.incident_key}: {summary.log_count} logs, "
            f"{summary.duration_hours:.1f} h, max pain {summary.max_pain_level}, "
            f"status {summary.status}"
        )


@app.command("list-incidents")
def list_incidents(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
    status: str | None = typer.Option(None, help="Only incidents with this status flag set"),
    sort_by: str = typer.Option("dateStarted", help="Field to sort by"),
    sort_order: str = typer.Option("desc", help="Sort order: asc or desc"),
    limit: int = typer.Option(50, help="Maximum number of incidents"),
    skip: int = typer.Option(0, help="Number of incidents to skip"),
) -> None:
    """
    List migrated incidents.
    """
    try:
        param_loader = init_config(config_path)
        migration_config = param_loader.get_migration_config()

        try:
            query = HealthIncidentQuery(
                status=status, sort_by=sort_by, sort_order=sort_order, limit=limit, skip=skip
            )
        except ValueError as e:
            raise ValidationError(f"Invalid incident query: {e}") from e

        service = HealthIncidentService(
            open_store(param_loader),
            migration_config.incidents_collection,
            migration_config.legacy_collection,
        )
        page = service.query_incidents(query)

    except HealthLedgerError as e:
        logger.error(f"Incident listing failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(f"Showing {page.returned} of {page.total} incidents")
    for incident in page.items:
        flags = [name for name, value in incident.status.model_dump().items() if value]
        typer.echo(
            f"  {incident.id}: {', '.join(incident.pain_locations) or '-'}, "
            f"started {incident.date_started:%Y-%m-%d}, pain {incident.pain_intensity}, "
            f"status {', '.join(flags) or 'none'}"
        )


@app.command("list-labs")
def list_labs(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
    test_type: str | None = typer.Option(None, help="Only results of this test type"),
    ordered_by: str | None = typer.Option(None, help="Only results ordered by this provider"),
    start_date: str | None = typer.Option(None, help="Only results on or after this date"),
    end_date: str | None = typer.Option(None, help="Only results on or before this date"),
    sort_order: str = typer.Option("desc", help="Sort order by test date: asc or desc"),
    limit: int = typer.Option(50, help="Maximum number of results"),
    skip: int = typer.Option(0, help="Number of results to skip"),
) -> None:
    """
    List stored lab results.
    """
    try:
        param_loader = init_config(config_path)

        try:
            query = LabResultQuery(
                test_type=test_type,
                ordered_by=ordered_by,
                start_date=_parse_date(start_date, param_loader),
                end_date=_parse_date(end_date, param_loader),
                sort_order=sort_order,
                limit=limit,
                skip=skip,
            )
        except ValueError as e:
            raise ValidationError(f"Invalid lab result query: {e}") from e

        service = LabResultService(
            open_store(param_loader), param_loader.get_storage_config().lab_results_collection
        )
        page = service.query(query)

    except HealthLedgerError as e:
        logger.error(f"Lab result listing failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(f"Showing {page.returned} of {page.total} lab results")
    for result in page.items:
        flagged = [name for name, m in result.measurements().items() if m.flag.value != "normal"]
        typer.echo(
            f"  {result.test_date:%Y-%m-%d} {result.test_type} ({result.ordered_by})"
            + (f", flagged: {', '.join(flagged)}" if flagged else "")
        )


@app.command()
def autocomplete(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    Print previously used values for health log fields as JSON.
    """
    try:
        param_loader = init_config(config_path)
        service = IncidentService(
            open_store(param_loader),
            param_loader.get_storage_config().health_logs_collection,
            param_loader.get_incidents_config(),
        )
        data = service.autocomplete()

    except HealthLedgerError as e:
        logger.error(f"Autocomplete failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(json.dumps(data.model_dump(mode="json"), indent=2))


@app.command()
def goals(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
    status: str | None = typer.Option(None, help="Only goals with this status"),
    goal_type: str | None = typer.Option(None, help="Only goals of this type"),
    activity_type: str | None = typer.Option(None, help="Only goals for this activity type"),
) -> None:
    """
    Show fitness goals with progress computed from synced workouts.
    """
    try:
        param_loader = init_config(config_path)
        storage_config = param_loader.get_storage_config()

        service = GoalService(
            open_store(param_loader),
            storage_config.goals_collection,
            storage_config.workouts_collection,
        )
        results = service.list_goals(status=status, goal_type=goal_type, activity_type=activity_type)

    except HealthLedgerError as e:
        logger.error(f"Goal progress failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(f"Found {len(results)} goals")
    for goal, progress in results:
        label = goal.description or f"{goal.goal_type} {goal.activity_type or ''}".strip()
        typer.echo(
            f"  {label}: {progress.current_value} / {goal.target_value} {goal.unit} "
            f"({progress.percentage}%), {progress.remaining} remaining"
        )


@app.command("labs-trends")
def labs_trends(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
    test_type: str = typer.Option("lipid_panel", help="Lab test type"),
    start_date: str | None = typer.Option(None, help="Only results on or after this date"),
    end_date: str | None = typer.Option(None, help="Only results on or before this date"),
    limit: int = typer.Option(100, help="Maximum number of results"),
) -> None:
    """
    Write lab result trends to CSV.
    """
    try:
        param_loader = init_config(config_path)

        service = LabResultService(
            open_store(param_loader), param_loader.get_storage_config().lab_results_collection
        )
        trends = service.trends(
            test_type=test_type,
            start_date=_parse_date(start_date, param_loader),
            end_date=_parse_date(end_date, param_loader),
            limit=limit,
        )

        trends_path = OutputService(param_loader.get_output_config()).write_lab_trends(trends)

    except HealthLedgerError as e:
        logger.error(f"Lab trends failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(f"Wrote {trends.count} {test_type} results to {trends_path}")


@app.command("import-logs")
def import_logs(
    csv_file: Path = typer.Argument(..., help="Legacy health log CSV export"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    Import a legacy health log CSV export into the health log collection.
    """
    try:
        param_loader = init_config(config_path)

        parser = CSVParser(param_loader.get_csv_config(), param_loader.config.timezone)
        records = parser.parse(csv_file)

        store = open_store(param_loader)
        inserted = store.insert_many(
            param_loader.get_storage_config().health_logs_collection,
            [record.to_document() for record in records],
        )

    except HealthLedgerError as e:
        logger.error(f"Import failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(f"Imported {inserted} health logs from {csv_file.name}")


@app.command("sync-strava")
def sync_strava(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
    page: int = typer.Option(1, help="Page of activities to fetch"),
    per_page: int | None = typer.Option(None, help="Activities per page (max 200)"),
    after: int | None = typer.Option(None, help="Only activities after this unix timestamp"),
    before: int | None = typer.Option(None, help="Only activities before this unix timestamp"),
) -> None:
    """
    Sync one page of Strava activities into the workout cache.
    """
    try:
        param_loader = init_config(config_path)
        storage_config = param_loader.get_storage_config()

        with StravaClient(param_loader.get_strava_config()) as client:
            service = StravaSyncService(
                open_store(param_loader),
                client,
                storage_config.workouts_collection,
                storage_config.strava_tokens_collection,
            )
            result = service.sync(page=page, per_page=per_page, after=after, before=before)

    except HealthLedgerError as e:
        logger.error(f"Strava sync failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(f"Fetched {result.fetched} activities: {result.new} new, {result.updated} updated")


@app.command("workout-stats")
def workout_stats(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
    activity_type: str | None = typer.Option(None, help="Only workouts of this type"),
    start_date: str | None = typer.Option(None, help="Only workouts on or after this date"),
    end_date: str | None = typer.Option(None, help="Only workouts on or before this date"),
) -> None:
    """
    Summarize synced workouts per activity type and write them to CSV.
    """
    try:
        param_loader = init_config(config_path)

        service = WorkoutService(
            open_store(param_loader), param_loader.get_storage_config().workouts_collection
        )
        stats = service.stats(
            activity_type=activity_type,
            start_date=_parse_date(start_date, param_loader),
            end_date=_parse_date(end_date, param_loader),
        )

        stats_path = OutputService(param_loader.get_output_config()).write_workout_stats(stats)

    except HealthLedgerError as e:
        logger.error(f"Workout stats failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(f"Workouts: {stats.total_activities}")
    for type_stats in stats.by_type:
        typer.echo(
            f"  {type_stats.type}: {type_stats.count} activities, "
            f"{type_stats.distance / 1000:.2f} km, {type_stats.moving_time / 3600:.2f} h"
        )
    typer.echo(f"Stats written to {stats_path}")


if __name__ == "__main__":
    app()
