"""Unit tests for lab flagging and the lab result service."""

from datetime import datetime, timezone

import pytest

from health_fitness_ledger.domain.labs import LabFlag, LabMeasurement, ReferenceRange, flag
from health_fitness_ledger.infrastructure.store.collections import InMemoryCollectionStore
from health_fitness_ledger.services.lab_results import LabResultQuery, LabResultService
from health_fitness_ledger.utils.exceptions import NotFoundError, ValidationError


def test_flag_high_and_normal() -> None:
    """Test flagging above and inside the reference range."""
    reference_range = ReferenceRange(min=0, max=200)

    if flag(250, reference_range) != LabFlag.HIGH:
        raise AssertionError("Expected 250 to be flagged high")
    if flag(150, reference_range) != LabFlag.NORMAL:
        raise AssertionError("Expected 150 to be flagged normal")


def test_flag_boundaries_are_normal() -> None:
    """Test that both range boundaries count as normal."""
    reference_range = ReferenceRange(min=40, max=60)

    for value in (40, 60):
        if flag(value, reference_range) != LabFlag.NORMAL:
            raise AssertionError(f"Expected boundary value {value} to be normal")

    if flag(39.9, reference_range) != LabFlag.LOW:
        raise AssertionError("Expected 39.9 to be flagged low")
    if flag(60.1, reference_range) != LabFlag.HIGH:
        raise AssertionError("Expected 60.1 to be flagged high")


def test_measurement_flag_is_derived() -> None:
    """Test that a measurement's flag follows its value."""
    measurement = LabMeasurement(value=130, unit="mg/dL", reference_range=ReferenceRange(min=0, max=100))

    if measurement.flag != LabFlag.HIGH:
        raise AssertionError(f"Expected high flag, got {measurement.flag}")

    measurement.value = 90
    if measurement.flag != LabFlag.NORMAL:
        raise AssertionError(f"Expected normal flag after value change, got {measurement.flag}")

    dumped = measurement.model_dump(mode="json")
    if dumped["flag"] != "normal":
        raise AssertionError(f"Expected flag in dump, got {dumped}")


def _lipid_payload(test_date: str, ldl: float, ldl_max: float = 100) -> dict:
    return {
        "test_date": test_date,
        "test_type": "lipid_panel",
        "ordered_by": "Dr. Rivera",
        "total_cholesterol": {"value": 180, "unit": "mg/dL", "reference_range": {"min": 0, "max": 200}},
        "ldl_cholesterol": {
            "value": ldl,
            "unit": "mg/dL",
            "reference_range": {"min": 0, "max": ldl_max},
            "flag": "normal",
        },
        "hdl_cholesterol": {"value": 35, "unit": "mg/dL", "reference_range": {"min": 40, "max": 60}},
    }


def test_create_result_computes_flags() -> None:
    """Test that stored flags are computed, not taken from input."""
    store = InMemoryCollectionStore()
    service = LabResultService(store)

    result = service.create_result(_lipid_payload("2024-03-01T08:00:00Z", ldl=130))

    stored = store.find("lab-results")
    if len(stored) != 1:
        raise AssertionError(f"Expected 1 stored result, got {len(stored)}")

    document = stored[0]
    if document["_id"] != result.id:
        raise AssertionError("Expected stored _id to match returned result")
    if document["ldl_cholesterol"]["flag"] != "high":
        raise AssertionError(f"Expected ldl flag high, got {document['ldl_cholesterol']['flag']}")
    if document["hdl_cholesterol"]["flag"] != "low":
        raise AssertionError(f"Expected hdl flag low, got {document['hdl_cholesterol']['flag']}")
    if document["total_cholesterol"]["flag"] != "normal":
        raise AssertionError("Expected total cholesterol flag normal")


def test_create_result_requires_fields() -> None:
    """Test that missing required fields are rejected without writes."""
    store = InMemoryCollectionStore()
    service = LabResultService(store)

    payload = _lipid_payload("2024-03-01T08:00:00Z", ldl=90)
    del payload["ordered_by"]

    with pytest.raises(ValidationError, match="ordered_by"):
        service.create_result(payload)

    if store.count("lab-results") != 0:
        raise AssertionError("Expected no stored results")


def test_trends_sorted_with_latest_reference_ranges() -> None:
    """Test trend rows are oldest first and ranges come from the latest result."""
    store = InMemoryCollectionStore()
    service = LabResultService(store)

    service.create_result(_lipid_payload("2024-06-01T08:00:00Z", ldl=95, ldl_max=130))
    service.create_result(_lipid_payload("2024-01-15T08:00:00Z", ldl=120))
    service.create_result({**_lipid_payload("2024-02-01T08:00:00Z", ldl=1), "test_type": "metabolic"})

    trends = service.trends()

    if trends.count != 2:
        raise AssertionError(f"Expected 2 lipid panel rows, got {trends.count}")

    dates = [point.date for point in trends.data]
    if dates != ["2024-01-15", "2024-06-01"]:
        raise AssertionError(f"Expected ascending dates, got {dates}")

    first = trends.data[0]
    if first.ldl != 120 or first.ldl_flag != "high":
        raise AssertionError(f"Unexpected first row: {first}")
    if first.date_label != "Jan 15, 2024":
        raise AssertionError(f"Unexpected date label: {first.date_label}")
    if first.triglycerides is not None:
        raise AssertionError("Expected missing triglycerides to stay empty")

    ranges = trends.reference_ranges or {}
    if ranges["ldl"] is None or ranges["ldl"].max != 130:
        raise AssertionError(f"Expected ldl range from latest result, got {ranges.get('ldl')}")
    if ranges["triglycerides"] is not None:
        raise AssertionError("Expected no triglycerides range")


def test_trends_date_window_and_empty() -> None:
    """Test date window filtering and the empty case."""
    store = InMemoryCollectionStore()
    service = LabResultService(store)

    if service.trends().reference_ranges is not None:
        raise AssertionError("Expected no reference ranges without results")

    service.create_result(_lipid_payload("2024-01-15T08:00:00Z", ldl=120))
    service.create_result(_lipid_payload("2024-06-01T08:00:00Z", ldl=95))

    trends = service.trends(start_date=datetime(2024, 3, 1, tzinfo=timezone.utc))
    if [p.date for p in trends.data] != ["2024-06-01"]:
        raise AssertionError(f"Expected only June result, got {trends.data}")


def test_query_filters_sorts_and_pages() -> None:
    """Test lab result listings."""
    store = InMemoryCollectionStore()
    service = LabResultService(store)

    service.create_result(_lipid_payload("2024-01-15T08:00:00Z", ldl=120))
    service.create_result(_lipid_payload("2024-06-01T08:00:00Z", ldl=95))
    service.create_result({**_lipid_payload("2024-03-01T08:00:00Z", ldl=90), "ordered_by": "Dr. Chen"})

    newest_first = service.query()
    dates = [r.test_date.strftime("%Y-%m-%d") for r in newest_first.items]
    if dates != ["2024-06-01", "2024-03-01", "2024-01-15"] or newest_first.total != 3:
        raise AssertionError(f"Unexpected default listing: {dates}, total {newest_first.total}")

    page = service.query(LabResultQuery(sort_order="asc", skip=1, limit=1))
    if page.total != 3 or page.returned != 1:
        raise AssertionError(f"Unexpected page counts: {page.total}, {page.returned}")
    if page.items[0].test_date.month != 3:
        raise AssertionError(f"Expected the March result, got {page.items[0].test_date}")

    by_doctor = service.query(LabResultQuery(ordered_by="Dr. Rivera", end_date=datetime(2024, 2, 1, tzinfo=timezone.utc)))
    if by_doctor.total != 1 or by_doctor.items[0].test_date.month != 1:
        raise AssertionError(f"Unexpected filtered listing: {by_doctor.items}")


def test_update_result_rederives_flags() -> None:
    """Test that changed values and ranges get matching flags."""
    store = InMemoryCollectionStore()
    service = LabResultService(store)
    created = service.create_result(_lipid_payload("2024-03-01T08:00:00Z", ldl=130))

    updated = service.update_result(
        created.id,
        {
            "ldl_cholesterol": {
                "value": 90,
                "unit": "mg/dL",
                "reference_range": {"min": 0, "max": 100},
                "flag": "high",
            },
            "hdl_cholesterol": {"value": 35, "unit": "mg/dL", "reference_range": {"min": 30, "max": 60}},
            "notes": "Retest after diet change",
        },
    )

    document = store.find("lab-results", {"_id": created.id})[0]
    if document["ldl_cholesterol"]["flag"] != "normal" or updated.ldl_cholesterol.flag != LabFlag.NORMAL:
        raise AssertionError(f"Expected ldl flag normal, got {document['ldl_cholesterol']}")
    if document["hdl_cholesterol"]["flag"] != "normal":
        raise AssertionError(f"Expected hdl flag normal after range change, got {document['hdl_cholesterol']}")
    if document["notes"] != "Retest after diet change" or document["ordered_by"] != "Dr. Rivera":
        raise AssertionError(f"Unexpected stored fields: {document}")
    if updated.id != created.id or store.count("lab-results") != 1:
        raise AssertionError("Expected the result to be updated in place")


def test_update_result_errors() -> None:
    """Test invalid lab result updates."""
    store = InMemoryCollectionStore()
    service = LabResultService(store)
    created = service.create_result(_lipid_payload("2024-03-01T08:00:00Z", ldl=130))

    with pytest.raises(ValidationError, match="No updates"):
        service.update_result(created.id, {})
    with pytest.raises(ValidationError):
        service.update_result(created.id, {"ldl_cholesterol": {"value": 90}})
    with pytest.raises(NotFoundError):
        service.update_result("missing", {"notes": "x"})

    if store.find("lab-results")[0]["ldl_cholesterol"]["value"] != 130:
        raise AssertionError("Expected the stored result to be unchanged")
