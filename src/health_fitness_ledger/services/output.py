"""
Output service for writing reports to various formats.

Handles CSV and Parquet output for incident summaries and tabular reports,
and JSON output for the migration report.
"""

import json
import logging
from pathlib import Path
from typing import Any

import pandas as pd

from health_fitness_ledger.domain.health import IncidentSummary
from health_fitness_ledger.services.lab_results import LabTrends
from health_fitness_ledger.services.migration import MigrationReport
from health_fitness_ledger.services.workouts import WorkoutStats
from health_fitness_ledger.utils.parameters import OutputConfig

logger = logging.getLogger(__name__)


class OutputService:
    """
    Service for writing data to output files.

    Handles multiple output formats with proper serialization of list fields.
    """

    def __init__(self, config: OutputConfig) -> None:
        """
        Initialize output service.

        Args:
            config: Output configuration.
        """
        self.config = config
        self.output_dir = Path(config.dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def write_incidents(self, summaries: list[IncidentSummary]) -> list[Path]:
        """
        Write incident summaries to CSV and/or Parquet.

        Args:
            summaries: Incident summaries.

        Returns:
            Paths of the written files.
        """
        if not summaries:
            logger.warning("No incidents to write")
            return []

        written: list[Path] = []

        if "csv" in self.config.formats:
            written.append(self._write_incidents_csv(summaries))

        if "parquet" in self.config.formats:
            written.append(self._write_incidents_parquet(summaries))

        logger.info(f"Wrote {len(summaries)} incidents to output")
        return written

    def _write_incidents_csv(self, summaries: list[IncidentSummary]) -> Path:
        csv_path = self.output_dir / self.config.files.incidents_csv

        df = pd.DataFrame([s.to_dict(for_csv=True) for s in summaries])

        df.to_csv(csv_path, index=False, encoding="utf-8")
        logger.info(f"Wrote CSV to {csv_path}")
        return csv_path

    def _write_incidents_parquet(self, summaries: list[IncidentSummary]) -> Path:
        """
        Write incident summaries to Parquet, keeping tag lists as list columns.

        Args:
            summaries: Incident summaries.
        """
        parquet_path = self.output_dir / self.config.files.incidents_parquet

        df = pd.DataFrame([s.to_dict(for_csv=False) for s in summaries])

        for column in ("all_symptoms", "all_activities", "all_triggers"):
            df[column] = df[column].apply(lambda x: list(x) if x else [])

        df.to_parquet(  # type: ignore[call-overload]
            parquet_path,
            engine=self.config.parquet.engine,
            compression=self.config.parquet.compression,
            index=False,
        )
        logger.info(f"Wrote Parquet to {parquet_path}")
        return parquet_path

    def write_workout_stats(self, stats: WorkoutStats) -> Path:
        """
        Write per-type workout statistics to CSV, with a final totals row.

        Args:
            stats: Workout statistics.

        Returns:
            Path of the written file.
        """
        stats_path = self.output_dir / self.config.files.workout_stats

        rows: list[dict[str, Any]] = [t.model_dump() for t in stats.by_type]
        rows.append(
            {
                "type": "ALL",
                "count": stats.total_activities,
                "distance": stats.total_distance,
                "moving_time": stats.total_moving_time,
                "elevation": stats.total_elevation,
            }
        )

        df = pd.DataFrame(rows)
        df.to_csv(stats_path, index=False, encoding="utf-8")

        logger.info(f"Wrote workout stats for {len(stats.by_type)} types to {stats_path}")
        return stats_path

    def write_lab_trends(self, trends: LabTrends) -> Path:
        trends_path = self.output_dir / self.config.files.lab_trends

        df = pd.DataFrame([point.model_dump() for point in trends.data])
        df.to_csv(trends_path, index=False, encoding="utf-8")

        logger.info(f"Wrote {trends.count} lab trend points to {trends_path}")
        return trends_path

    def write_migration_report(self, report: MigrationReport) -> Path:
        """
        Write the migration report to JSON.

        Args:
            report: Migration report.

        Returns:
            Path of the written file.
        """
        report_path = self.output_dir / self.config.files.migration_report

        with open(report_path, "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, indent=2, default=str)

        logger.info(f"Wrote migration report to {report_path}")
        return report_path
