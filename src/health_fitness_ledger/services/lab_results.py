"""
Lab result service: creation and updates with automatic flagging, listings
and chart-ready trends.
"""

import logging
from datetime import datetime
from typing import Any

from dateutil.parser import isoparse
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from health_fitness_ledger.domain.labs import LIPID_PANEL_FIELDS, LabResult, ReferenceRange
from health_fitness_ledger.infrastructure.store.collections import CollectionStore
from health_fitness_ledger.services.queries import Page, PageQuery, paginate
from health_fitness_ledger.utils.exceptions import NotFoundError, ValidationError
from health_fitness_ledger.utils.hashing import generate_object_id
from health_fitness_ledger.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

REQUIRED_LAB_FIELDS = ("test_date", "test_type", "ordered_by")

# Chart series name for each lipid panel field
TREND_SERIES = {
    "total_cholesterol": "total_cholesterol",
    "ldl_cholesterol": "ldl",
    "hdl_cholesterol": "hdl",
    "triglycerides": "triglycerides",
}


class LabTrendPoint(BaseModel):
    """One lab result flattened into a chart row."""

    date: str
    date_label: str
    total_cholesterol: float | None = None
    total_cholesterol_flag: str | None = None
    ldl: float | None = None
    ldl_flag: str | None = None
    hdl: float | None = None
    hdl_flag: str | None = None
    triglycerides: float | None = None
    triglycerides_flag: str | None = None
    ordered_by: str | None = None
    notes: str | None = None


class LabTrends(BaseModel):
    data: list[LabTrendPoint] = Field(default_factory=list)
    reference_ranges: dict[str, ReferenceRange | None] | None = None

    @property
    def count(self) -> int:
        return len(self.data)


class LabResultQuery(PageQuery):
    """Filters for listing lab results."""

    test_type: str | None = None
    ordered_by: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    sort_by: str = "test_date"

    def in_window(self, document: dict[str, Any]) -> bool:
        value = document.get("test_date")
        if not value:
            return False
        test_date = ensure_utc(isoparse(value))
        if self.start_date and test_date < ensure_utc(self.start_date):
            return False
        if self.end_date and test_date > ensure_utc(self.end_date):
            return False
        return True


def _trend_point(result: LabResult) -> LabTrendPoint:
    row: dict[str, Any] = {
        "date": result.test_date.strftime("%Y-%m-%d"),
        "date_label": f"{result.test_date.strftime('%b')} {result.test_date.day}, {result.test_date.year}",
        "ordered_by": result.ordered_by,
        "notes": result.notes,
    }

    for field, series in TREND_SERIES.items():
        measurement = getattr(result, field)
        if measurement is not None:
            row[series] = measurement.value
            row[f"{series}_flag"] = measurement.flag.value

    return LabTrendPoint(**row)


class LabResultService:
    """Service for storing lab results and reading them back as trends."""

    def __init__(self, store: CollectionStore, collection: str = "lab-results") -> None:
        self.store = store
        self.collection = collection

    def create_result(self, data: dict[str, Any]) -> LabResult:
        """
        Validate and store a lab result.

        Flags of the lipid panel measurements are derived from their values
        and reference ranges; flags in the input are ignored.

        Args:
            data: Lab result fields as submitted by the user.

        Returns:
            Stored lab result.

        Raises:
            ValidationError: If a required field is missing or a measurement
                is malformed.
        """
        missing = [name for name in REQUIRED_LAB_FIELDS if not data.get(name)]
        if missing:
            raise ValidationError(f"Missing required lab result fields: {', '.join(missing)}")

        now = utc_now()
        payload = self._strip_flags(data)

        try:
            result = LabResult(**{**payload, "created_at": now, "updated_at": now})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid lab result: {e}") from e

        result.id = generate_object_id()
        self.store.insert_many(self.collection, [result.to_document()])

        flagged = [
            name for name, m in result.measurements().items() if m.flag.value != "normal"
        ]
        logger.info(
            f"Created {result.test_type} lab result {result.id}"
            + (f" (flagged: {', '.join(flagged)})" if flagged else "")
        )
        return result

    def _strip_flags(self, payload: dict[str, Any]) -> dict[str, Any]:
        payload = {key: value for key, value in payload.items() if key not in ("_id", "id")}
        for field in LIPID_PANEL_FIELDS:
            measurement = payload.get(field)
            if isinstance(measurement, dict):
                payload[field] = {k: v for k, v in measurement.items() if k != "flag"}
        return payload

    def get_result(self, result_id: str) -> LabResult:
        documents = self.store.find(self.collection, {"_id": result_id})
        if not documents:
            raise NotFoundError(f"Lab result {result_id} not found")
        return LabResult.model_validate(documents[0])

    def query(self, query: LabResultQuery | None = None) -> Page[LabResult]:
        """
        List lab results, newest test first by default.

        Args:
            query: Filters, ordering and paging.

        Returns:
            Page of lab results with the total number of matches.
        """
        query = query or LabResultQuery()

        filter: dict[str, Any] = {}
        if query.test_type:
            filter["test_type"] = query.test_type
        if query.ordered_by:
            filter["ordered_by"] = query.ordered_by

        documents = self.store.find(self.collection, filter)
        if query.start_date or query.end_date:
            documents = [doc for doc in documents if query.in_window(doc)]

        page, total = paginate(documents, query)

        logger.info(f"Found {total} lab results, returning {len(page)}")
        return Page[LabResult](
            items=[LabResult.model_validate(doc) for doc in page],
            total=total,
            skip=query.skip,
            limit=query.limit,
        )

    def update_result(self, result_id: str, updates: dict[str, Any]) -> LabResult:
        """
        Apply field updates to a stored lab result.

        The merged result is validated as a whole and every measurement flag
        is derived again, so a changed value or range always gets a matching
        flag. Flags in ``updates`` are ignored.

        Args:
            result_id: Identifier of the lab result.
            updates: Fields to replace.

        Returns:
            Updated lab result.

        Raises:
            ValidationError: If no updates are given or the result becomes invalid.
            NotFoundError: If no lab result has that id.
        """
        if not updates:
            raise ValidationError("No updates provided")

        current = self.get_result(result_id)
        merged = {**current.to_document(), **self._strip_flags(updates), "updated_at": utc_now()}

        try:
            result = LabResult.model_validate(self._strip_flags(merged))
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid lab result update: {e}") from e

        result.id = current.id
        document = result.to_document()
        for field in LIPID_PANEL_FIELDS:
            # Removed measurements must not survive the field-wise update.
            if field not in document:
                document[field] = None

        self.store.update_one(self.collection, {"_id": result_id}, document)

        logger.info(f"Updated lab result {result_id}: {', '.join(sorted(updates))}")
        return result

    def trends(
        self,
        test_type: str = "lipid_panel",
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 100,
    ) -> LabTrends:
        """
        Return lab results of one test type as chart rows, oldest first.

        Args:
            test_type: Test type to include.
            start_date: Inclusive lower bound on the test date.
            end_date: Inclusive upper bound on the test date.
            limit: Maximum number of rows.

        Returns:
            Trend rows plus the reference ranges of the most recent result
            (None when there are no results).
        """
        results = [
            LabResult.model_validate(doc)
            for doc in self.store.find(self.collection, {"test_type": test_type})
        ]

        if start_date:
            results = [r for r in results if ensure_utc(r.test_date) >= ensure_utc(start_date)]
        if end_date:
            results = [r for r in results if ensure_utc(r.test_date) <= ensure_utc(end_date)]

        results.sort(key=lambda r: ensure_utc(r.test_date))
        results = results[:limit]

        trends = LabTrends(data=[_trend_point(r) for r in results])

        if results:
            latest = results[-1]
            trends.reference_ranges = {
                series: (
                    getattr(latest, field).reference_range
                    if getattr(latest, field) is not None
                    else None
                )
                for field, series in TREND_SERIES.items()
            }

        logger.info(f"Built {trends.count} {test_type} trend points")
        return trends
