"""
Lab result domain models.

A measurement's flag is always derived from its value and reference range;
it is never stored as independent state.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class LabFlag(str, Enum):
    """Classification of a lab value against its reference range."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class ReferenceRange(BaseModel):
    """Clinically expected band for a lab measurement, inclusive on both ends."""

    min: float
    max: float


def flag(value: float, reference_range: ReferenceRange) -> LabFlag:
    """
    Classify a lab value against its reference range.

    Boundary values are normal.

    Args:
        value: Measured value.
        reference_range: Inclusive reference range.

    Returns:
        LOW below the range, HIGH above it, NORMAL otherwise.
    """
    if value < reference_range.min:
        return LabFlag.LOW
    if value > reference_range.max:
        return LabFlag.HIGH
    return LabFlag.NORMAL


class LabMeasurement(BaseModel):
    """Single numeric lab value with its reference range."""

    value: float
    unit: str = ""
    reference_range: ReferenceRange

    @computed_field  # type: ignore[prop-decorator]
    @property
    def flag(self) -> LabFlag:
        return flag(self.value, self.reference_range)


class OpenReferenceRange(BaseModel):
    min: float | None = None
    max: float | None = None


class CustomLabResult(BaseModel):
    """Free-form lab result; the flag is whatever the lab reported."""

    test_name: str
    value: float | str
    unit: str | None = None
    reference_range: OpenReferenceRange | None = None
    flag: str | None = None


LIPID_PANEL_FIELDS = (
    "total_cholesterol",
    "ldl_cholesterol",
    "hdl_cholesterol",
    "triglycerides",
)


class LabResult(BaseModel):
    """One lab visit: lipid panel measurements plus optional custom results."""

    id: str | None = Field(None, alias="_id")
    test_date: datetime
    test_type: str = Field(description="lipid_panel, metabolic, custom, ...")
    ordered_by: str
    lab_name: str | None = None

    total_cholesterol: LabMeasurement | None = None
    ldl_cholesterol: LabMeasurement | None = None
    hdl_cholesterol: LabMeasurement | None = None
    triglycerides: LabMeasurement | None = None

    custom_results: list[CustomLabResult] = Field(default_factory=list)

    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    def measurements(self) -> dict[str, LabMeasurement]:
        """Return the lipid panel measurements that are present, keyed by field name."""
        present: dict[str, LabMeasurement] = {}
        for name in LIPID_PANEL_FIELDS:
            measurement = getattr(self, name)
            if measurement is not None:
                present[name] = measurement
        return present

    def to_document(self) -> dict[str, Any]:
        """Convert to the stored document shape, flags included."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
