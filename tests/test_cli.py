"""Tests for the command-line interface."""

import json
from pathlib import Path

import yaml
from typer.testing import CliRunner

from health_fitness_ledger.cli.main import app
from health_fitness_ledger.infrastructure.store.collections import CollectionStore
from health_fitness_ledger.services.lab_results import LabResultService

runner = CliRunner()

LOGS_CSV = (
    "_id,incident_id,timestamp,issue_type,pain_level,body_area,status,symptoms\n"
    "log-1,knee,2024-03-01T08:00:00Z,knee_pain,6,left knee,active,swelling\n"
    "log-2,knee,2024-03-03T08:00:00Z,knee_pain,3,left knee,improving,swelling|stiffness\n"
    "log-3,neck,2024-02-10T20:00:00Z,neck_pain,2,neck,resolved,\n"
)


def _db_url(tmp_path: Path) -> str:
    (tmp_path / "data").mkdir(exist_ok=True)
    return f"sqlite:///{tmp_path / 'data' / 'ledger.db'}"


def _write_config(tmp_path: Path) -> Path:
    config = {
        "timezone": "UTC",
        "storage": {"backend": "sql", "url": _db_url(tmp_path)},
        "output": {"dir": str(tmp_path / "output"), "formats": ["csv"]},
        "logging": {"level": "INFO", "console": False, "file": None},
    }
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return config_path


def _import_logs(tmp_path: Path, config_path: Path) -> None:
    csv_path = tmp_path / "logs.csv"
    csv_path.write_text(LOGS_CSV, encoding="utf-8")

    result = runner.invoke(app, ["import-logs", str(csv_path), "--config-path", str(config_path)])
    if result.exit_code != 0:
        raise AssertionError(f"Import failed: {result.output}")
    if "Imported 3 health logs" not in result.output:
        raise AssertionError(f"Unexpected import output: {result.output}")


def test_missing_config_exits_with_error(tmp_path: Path) -> None:
    """Test that a missing configuration file fails cleanly."""
    result = runner.invoke(app, ["check", "--config-path", str(tmp_path / "missing.yaml")])

    if result.exit_code != 1:
        raise AssertionError(f"Expected exit code 1, got {result.exit_code}")


def test_import_check_and_migrate(tmp_path: Path) -> None:
    """Test the migration workflow end to end."""
    config_path = _write_config(tmp_path)
    _import_logs(tmp_path, config_path)

    check = runner.invoke(app, ["check", "--config-path", str(config_path)])
    if check.exit_code != 0 or "Check passed" not in check.output:
        raise AssertionError(f"Unexpected check result: {check.output}")

    dry_run = runner.invoke(app, ["migrate", "--dry-run", "--config-path", str(config_path)])
    if dry_run.exit_code != 0 or "Would create 2 incidents and 3 logs" not in dry_run.output:
        raise AssertionError(f"Unexpected dry run result: {dry_run.output}")

    store = CollectionStore(_db_url(tmp_path))
    if store.exists("health-incidents") or store.exists("health-logs-backup"):
        raise AssertionError("Expected the dry run to write nothing")

    migrate = runner.invoke(app, ["migrate", "--config-path", str(config_path)])
    if migrate.exit_code != 0 or "Created 2 incidents and 3 logs" not in migrate.output:
        raise AssertionError(f"Unexpected migration result: {migrate.output}")

    if store.count("health-incidents") != 2 or store.count("health-logs-backup") != 3:
        raise AssertionError("Expected incidents and backup to be written")

    report = json.loads((tmp_path / "output" / "migration_report.json").read_text(encoding="utf-8"))
    if report["state"] != "done" or report["records_backed_up"] != 3:
        raise AssertionError(f"Unexpected migration report: {report}")


def test_check_fails_on_invalid_logs(tmp_path: Path) -> None:
    """Test that check and migrate refuse invalid legacy logs."""
    config_path = _write_config(tmp_path)
    store = CollectionStore(_db_url(tmp_path))
    store.insert_many("health-logs", [{"_id": "orphan", "timestamp": "2024-01-01T00:00:00Z"}])

    check = runner.invoke(app, ["check", "--config-path", str(config_path)])
    if check.exit_code != 1:
        raise AssertionError(f"Expected check to fail, got exit code {check.exit_code}")
    if "orphan: missing incident_id" not in check.output:
        raise AssertionError(f"Expected the invalid record to be listed: {check.output}")

    migrate = runner.invoke(app, ["migrate", "--config-path", str(config_path)])
    if migrate.exit_code != 1:
        raise AssertionError(f"Expected migrate to fail, got exit code {migrate.exit_code}")
    if store.exists("health-logs-backup") or store.count("health-logs") != 1:
        raise AssertionError("Expected no writes after a failed check")

    report = json.loads((tmp_path / "output" / "migration_report.json").read_text(encoding="utf-8"))
    if report["state"] != "aborted":
        raise AssertionError(f"Expected aborted report, got {report['state']}")


def test_incidents_and_autocomplete(tmp_path: Path) -> None:
    """Test incident summaries and autocomplete output."""
    config_path = _write_config(tmp_path)
    _import_logs(tmp_path, config_path)

    incidents = runner.invoke(app, ["incidents", "--config-path", str(config_path)])
    if incidents.exit_code != 0 or "Found 2 incidents" not in incidents.output:
        raise AssertionError(f"Unexpected incidents output: {incidents.output}")
    if not (tmp_path / "output" / "incidents.csv").exists():
        raise AssertionError("Expected incidents CSV to be written")

    autocomplete = runner.invoke(app, ["autocomplete", "--config-path", str(config_path)])
    if autocomplete.exit_code != 0:
        raise AssertionError(f"Autocomplete failed: {autocomplete.output}")
    data = json.loads(autocomplete.output)
    if data["symptoms"] != ["stiffness", "swelling"]:
        raise AssertionError(f"Unexpected symptoms: {data['symptoms']}")
    if [i["incident_key"] for i in data["incident_keys"]] != ["knee", "neck"]:
        raise AssertionError(f"Unexpected recent incidents: {data['incident_keys']}")


def test_goals_and_workout_stats(tmp_path: Path) -> None:
    """Test goal progress and workout statistics commands."""
    config_path = _write_config(tmp_path)
    store = CollectionStore(_db_url(tmp_path))
    store.insert_many(
        "strava-workouts",
        [
            {
                "strava_id": 1,
                "athlete_id": 42,
                "type": "Run",
                "start_date": "2024-04-02T07:00:00Z",
                "distance": 10000.0,
                "moving_time": 3600.0,
            }
        ],
    )
    store.insert_many(
        "fitness-goals",
        [
            {
                "goal_type": "distance",
                "target_value": 20,
                "unit": "km",
                "time_period": "month",
                "start_date": "2024-04-01T00:00:00Z",
                "end_date": "2024-04-30T23:59:59Z",
                "description": "April running",
            }
        ],
    )

    goals = runner.invoke(app, ["goals", "--config-path", str(config_path)])
    if goals.exit_code != 0 or "April running: 10.0 / 20.0 km (50.0%)" not in goals.output:
        raise AssertionError(f"Unexpected goals output: {goals.output}")

    stats = runner.invoke(app, ["workout-stats", "--config-path", str(config_path)])
    if stats.exit_code != 0 or "Run: 1 activities, 10.00 km, 1.00 h" not in stats.output:
        raise AssertionError(f"Unexpected workout stats output: {stats.output}")
    if not (tmp_path / "output" / "workout_stats.csv").exists():
        raise AssertionError("Expected workout stats CSV to be written")


def test_sync_strava_without_account(tmp_path: Path) -> None:
    """Test that syncing without stored credentials fails cleanly."""
    config_path = _write_config(tmp_path)

    result = runner.invoke(app, ["sync-strava", "--config-path", str(config_path)])

    if result.exit_code != 1:
        raise AssertionError(f"Expected exit code 1, got {result.exit_code}")


def test_list_incidents_after_migration(tmp_path: Path) -> None:
    """Test listing migrated incidents by status flag."""
    config_path = _write_config(tmp_path)
    _import_logs(tmp_path, config_path)

    migrate = runner.invoke(app, ["migrate", "--config-path", str(config_path)])
    if migrate.exit_code != 0:
        raise AssertionError(f"Migration failed: {migrate.output}")

    listing = runner.invoke(app, ["list-incidents", "--config-path", str(config_path)])
    if listing.exit_code != 0 or "Showing 2 of 2 incidents" not in listing.output:
        raise AssertionError(f"Unexpected listing: {listing.output}")

    improving = runner.invoke(
        app, ["list-incidents", "--status", "improving", "--config-path", str(config_path)]
    )
    if "Showing 1 of 1 incidents" not in improving.output or "left knee" not in improving.output:
        raise AssertionError(f"Unexpected status listing: {improving.output}")

    invalid = runner.invoke(
        app, ["list-incidents", "--status", "healed", "--config-path", str(config_path)]
    )
    if invalid.exit_code != 1:
        raise AssertionError(f"Expected exit code 1 for an unknown status, got {invalid.exit_code}")


def test_list_labs(tmp_path: Path) -> None:
    """Test listing stored lab results."""
    config_path = _write_config(tmp_path)
    service = LabResultService(CollectionStore(_db_url(tmp_path)))
    for test_date, ldl in (("2024-01-10T08:00:00Z", 90), ("2024-06-10T08:00:00Z", 130)):
        service.create_result(
            {
                "test_date": test_date,
                "test_type": "lipid_panel",
                "ordered_by": "Dr. Rivera",
                "ldl_cholesterol": {
                    "value": ldl,
                    "unit": "mg/dL",
                    "reference_range": {"min": 0, "max": 100},
                },
            }
        )

    result = runner.invoke(app, ["list-labs", "--limit", "1", "--config-path", str(config_path)])
    if result.exit_code != 0 or "Showing 1 of 2 lab results" not in result.output:
        raise AssertionError(f"Unexpected listing: {result.output}")
    if "2024-06-10" not in result.output or "flagged: ldl_cholesterol" not in result.output:
        raise AssertionError(f"Expected the newest, flagged result first: {result.output}")
