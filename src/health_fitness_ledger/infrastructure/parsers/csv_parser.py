"""
CSV parser for legacy health log exports.

Provides CSV parsing with encoding detection, delimiter detection, column
name normalization and conversion of each row into a ``HealthLogRecord``.
"""

import logging
from pathlib import Path
from typing import Any

import pandas as pd

from health_fitness_ledger.domain.health import HealthLogRecord
from health_fitness_ledger.utils.exceptions import ParsingError
from health_fitness_ledger.utils.parameters import CSVConfig
from health_fitness_ledger.utils.timezone_utils import parse_datetime

logger = logging.getLogger(__name__)

TAG_COLUMNS = ("activities", "triggers", "symptoms")
TEXT_COLUMNS = ("incident_id", "issue_type", "description", "body_area", "status")


class CSVParser:
    """
    Parser for health log CSV files.

    Handles encoding detection, delimiter detection, column normalization,
    and conversion to the legacy health log schema. Rows without an incident
    key or timestamp are kept so the migration check can report them.
    """

    def __init__(self, csv_config: CSVConfig, timezone: str = "UTC") -> None:
        """
        Initialize CSV parser.

        Args:
            csv_config: CSV parsing configuration.
            timezone: Timezone assigned to naive timestamps.
        """
        self.csv_config = csv_config
        self.timezone = timezone
        self.column_mappings = csv_config.column_mappings

    def _detect_encoding(self, file_path: Path) -> str:
        """
        Detect file encoding.

        Args:
            file_path: Path to CSV file.

        Returns:
            First configured encoding that decodes the whole file.
        """
        for encoding in self.csv_config.encodings:
            try:
                with open(file_path, encoding=encoding) as f:
                    f.read()
                logger.debug(f"Detected encoding: {encoding}")
                return encoding
            except (UnicodeDecodeError, LookupError):
                continue

        logger.warning("Encoding detection failed, using utf-8")
        return "utf-8"

    def _detect_delimiter(self, file_path: Path, encoding: str) -> str:
        with open(file_path, encoding=encoding) as f:
            first_line = f.readline()

        for delimiter in self.csv_config.delimiters:
            if delimiter in first_line:
                logger.debug(f"Detected delimiter: {repr(delimiter)}")
                return delimiter

        logger.warning("Delimiter detection failed, using comma")
        return ","

    def _normalize_column_names(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Rename export columns to stored field names.

        Args:
            df: DataFrame with original column names.

        Returns:
            DataFrame with normalized column names.
        """
        rename_map = {}

        for col in df.columns:
            col_stripped = col.strip()
            if col_stripped in self.column_mappings:
                rename_map[col] = self.column_mappings[col_stripped]
            elif col_stripped != col:
                rename_map[col] = col_stripped

        if rename_map:
            df = df.rename(columns=rename_map)
            logger.debug(f"Normalized columns: {list(rename_map.values())}")

        return df

    def _clean_text(self, value: Any) -> str | None:
        if value is None or pd.isna(value):
            return None
        text = str(value).strip()
        return text or None

    def _safe_int_conversion(self, value: Any) -> int | None:
        """
        Convert a cell to int, accepting "7", "7.0" and 7.0.

        Returns:
            Integer value, or None for empty or non-numeric cells.
        """
        if value is None or pd.isna(value):
            return None

        if isinstance(value, (int, float)):
            return int(value)

        try:
            return int(float(str(value).strip().replace(",", ".")))
        except ValueError:
            return None

    def _split_tags(self, value: Any) -> list[str]:
        text = self._clean_text(value)
        if text is None:
            return []
        return [tag.strip() for tag in text.split(self.csv_config.tag_separator) if tag.strip()]

    def _parse_timestamp(self, value: Any) -> Any:
        text = self._clean_text(value)
        if text is None:
            return None
        return parse_datetime(text, None, self.timezone)

    def _parse_row(self, row: pd.Series, columns: pd.Index) -> HealthLogRecord:
        if "timestamp" in columns:
            timestamp = self._parse_timestamp(row.get("timestamp"))
        elif "date" in columns:
            date_str = self._clean_text(row.get("date"))
            time_str = self._clean_text(row.get("time")) if "time" in columns else None
            timestamp = parse_datetime(date_str, time_str, self.timezone) if date_str else None
        else:
            timestamp = None

        data: dict[str, Any] = {name: self._clean_text(row.get(name)) for name in TEXT_COLUMNS}
        data.update({name: self._split_tags(row.get(name)) for name in TAG_COLUMNS})

        return HealthLogRecord(
            id=self._clean_text(row.get("_id")),
            timestamp=timestamp,
            incident_key=data["incident_id"],
            issue_type=data["issue_type"],
            pain_level=self._safe_int_conversion(row.get("pain_level")),
            description=data["description"],
            body_area=data["body_area"],
            status=data["status"].lower() if data["status"] else None,
            activities=data["activities"],
            triggers=data["triggers"],
            symptoms=data["symptoms"],
            created_at=self._parse_timestamp(row.get("created_at")),
            updated_at=self._parse_timestamp(row.get("updated_at")),
        )

    def parse(self, file_path: Path) -> list[HealthLogRecord]:
        """
        Parse a CSV file into legacy health log records.

        Rows that cannot be converted are logged and skipped.

        Args:
            file_path: Path to CSV file.

        Returns:
            List of health log records.

        Raises:
            ParsingError: If the file cannot be read as CSV.
        """
        try:
            encoding = self._detect_encoding(file_path)
            delimiter = self._detect_delimiter(file_path, encoding)
            df = pd.read_csv(file_path, encoding=encoding, sep=delimiter, dtype=str)
        except (OSError, ValueError) as e:
            raise ParsingError(f"Failed to parse CSV file {file_path}: {e}") from e

        df = self._normalize_column_names(df)

        if "incident_id" not in df.columns:
            logger.warning(f"{file_path.name} has no incident_id column")

        records: list[HealthLogRecord] = []

        for idx, row in df.iterrows():
            try:
                records.append(self._parse_row(row, df.columns))
            except (ValueError, TypeError, OverflowError) as e:
                logger.warning(f"Failed to parse row {idx}: {e}")
                continue

        logger.info(f"Parsed {len(records)} health logs from {file_path.name}")
        return records
