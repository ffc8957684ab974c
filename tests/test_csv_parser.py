"""Unit tests for CSV parser."""

from pathlib import Path

import pandas as pd
import pytest

from health_fitness_ledger.infrastructure.parsers.csv_parser import CSVParser
from health_fitness_ledger.utils.exceptions import ParsingError
from health_fitness_ledger.utils.parameters import CSVConfig


def test_normalize_export_columns() -> None:
    """Test normalization of export column names."""
    csv_config = CSVConfig(
        encodings=["utf-8"],
        delimiters=[","],
        column_mappings={
            "Incident": "incident_id",
            "Pain": "pain_level",
            "Area": "body_area",
        },
    )

    parser = CSVParser(csv_config)

    df = pd.DataFrame(
        {
            "Incident": ["knee"],
            " Pain ": ["4"],
            "Area": ["left knee"],
            " description": ["sore"],
        }
    )

    normalized_df = parser._normalize_column_names(df)

    for column in ("incident_id", "pain_level", "body_area", "description"):
        if column not in normalized_df.columns:
            raise AssertionError(f"Expected '{column}' column after normalization")


def test_safe_int_conversion() -> None:
    """Test pain level conversion from CSV cells."""
    parser = CSVParser(CSVConfig())

    cases = [("7", 7), ("7.0", 7), (" 3 ", 3), ("6,0", 6), ("", None), ("n/a", None), (None, None)]

    for value, expected in cases:
        result = parser._safe_int_conversion(value)
        if result != expected:
            raise AssertionError(f"Expected {expected} for {value!r}, got {result}")


def test_parse_semicolon_export(tmp_path: Path) -> None:
    """Test parsing a semicolon separated export with tags and local times."""
    csv_path = tmp_path / "health_logs.csv"
    csv_path.write_text(
        "_id;incident_id;date;time;issue_type;pain_level;body_area;status;symptoms;triggers\n"
        "log-1;knee;2024-03-01;08:30;knee_pain;6;left knee;Active;swelling| stiffness;running\n"
        "log-2;knee;2024-03-02;09:00;knee_pain;;left knee;improving;;\n"
        "log-3;;2024-03-03;10:00;knee_pain;2;left knee;resolved;;\n",
        encoding="utf-8",
    )

    parser = CSVParser(CSVConfig(delimiters=[";", ","]), timezone="America/Santiago")
    records = parser.parse(csv_path)

    if len(records) != 3:
        raise AssertionError(f"Expected 3 records, got {len(records)}")

    first = records[0]
    if first.id != "log-1" or first.incident_key != "knee":
        raise AssertionError(f"Unexpected identifiers: {first.id}, {first.incident_key}")
    if first.status != "active":
        raise AssertionError(f"Expected lower-cased status, got {first.status}")
    if first.symptoms != ["swelling", "stiffness"] or first.triggers != ["running"]:
        raise AssertionError(f"Unexpected tags: {first.symptoms}, {first.triggers}")
    if first.timestamp is None or first.timestamp.utcoffset() is None:
        raise AssertionError("Expected a timezone-aware timestamp")
    if first.timestamp.hour != 8 or first.timestamp.minute != 30:
        raise AssertionError(f"Expected local time 08:30, got {first.timestamp}")

    if records[1].pain_level is not None or records[1].symptoms != []:
        raise AssertionError("Expected empty cells to stay empty")

    if records[2].missing_fields() != ["incident_id"]:
        raise AssertionError("Expected the record without incident to be kept for reporting")


def test_parse_skips_unconvertible_rows(tmp_path: Path) -> None:
    """Test that rows with invalid timestamps are skipped and other values kept."""
    csv_path = tmp_path / "health_logs.csv"
    csv_path.write_text(
        "incident_id,timestamp,status\n"
        "knee,2024-03-01T08:00:00Z,active\n"
        "knee,2024-03-02T08:00:00Z,Worsening\n"
        "knee,2024-03-03T08:00:00Z,\n"
        "knee,not a date,active\n",
        encoding="utf-8",
    )

    records = CSVParser(CSVConfig()).parse(csv_path)

    if len(records) != 3:
        raise AssertionError(f"Expected 3 parsed records, got {len(records)}")
    if [r.status for r in records] != ["active", "worsening", None]:
        raise AssertionError(f"Unexpected statuses: {[r.status for r in records]}")


def test_parse_missing_file_raises(tmp_path: Path) -> None:
    """Test that unreadable files raise a parsing error."""
    with pytest.raises(ParsingError):
        CSVParser(CSVConfig()).parse(tmp_path / "missing.csv")
