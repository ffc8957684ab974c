"""
Health log and incident domain models.

Two schemas live side by side here:

- the legacy flat schema, where every ``HealthLogRecord`` carries a free-text
  ``incident_id`` grouping key, and
- the normalized schema, where a ``NormalizedIncident`` owns its
  ``NormalizedLog`` entries through a generated identifier.

Stored documents keep the field names the application has always used
(``_id``, ``incident_id``, ``pain_level``, ``painLocations`` ...). Python code
uses snake_case attribute names; aliases map between the two.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from health_fitness_ledger.utils.hashing import generate_object_id


class LogStatus(str, Enum):
    """Status of a legacy health log entry."""

    ACTIVE = "active"
    IMPROVING = "improving"
    RESOLVED = "resolved"


class LogIssueType(str, Enum):
    """Issue type of a normalized log entry."""

    UPDATE = "update"
    DOCTOR_VISIT_NOTES = "doctor_visit_notes"


class HealthLogRecord(BaseModel):
    """
    Flat legacy health log entry.

    Loading is lenient so that historical documents are never rejected for
    their shape: unparseable timestamps become None, pain levels are rounded
    to int or dropped, scalar tags are wrapped in a list and ``status`` keeps
    whatever string was stored. ``incident_key`` and ``timestamp`` stay
    optional so damaged documents can be reported; grouping and migration
    require both.
    """

    id: str | None = Field(None, alias="_id", description="Document identifier")
    timestamp: datetime | None = Field(None, description="Point in time the entry describes")
    incident_key: str | None = Field(
        None, alias="incident_id", description="Free-text incident grouping key"
    )
    issue_type: str | None = None
    pain_level: int | None = Field(None, description="Pain level, 1 to 10")
    description: str | None = None
    body_area: str | None = None
    status: str | None = Field(None, description="active, improving, resolved or legacy free text")
    activities: list[str] = Field(default_factory=list)
    triggers: list[str] = Field(default_factory=list)
    symptoms: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator(
        "id", "incident_key", "issue_type", "description", "body_area", "status", mode="before"
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return None

    @field_validator("timestamp", "created_at", "updated_at", mode="before")
    @classmethod
    def _lenient_datetime(cls, value: Any) -> Any:
        if isinstance(value, dict) and "$date" in value:
            value = value["$date"]
        if isinstance(value, datetime):
            return value
        if isinstance(value, str) and value.strip():
            try:
                return date_parser.parse(value)
            except (ValueError, OverflowError):
                return None
        return None

    @field_validator("pain_level", mode="before")
    @classmethod
    def _lenient_pain_level(cls, value: Any) -> Any:
        if isinstance(value, bool) or value is None:
            return None
        if isinstance(value, str):
            try:
                value = float(value.strip())
            except ValueError:
                return None
        if isinstance(value, (int, float)):
            if not math.isfinite(value):
                return None
            return int(round(value))
        return None

    @field_validator("activities", "triggers", "symptoms", mode="before")
    @classmethod
    def _as_tag_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        if isinstance(value, (list, tuple, set)):
            return [str(tag) for tag in value if tag is not None and str(tag).strip()]
        return [str(value)]

    def missing_fields(self) -> list[str]:
        """
        List the grouping fields this record lacks.

        Returns:
            Stored field names (``incident_id``, ``timestamp``) that are empty.
        """
        missing: list[str] = []
        if not self.incident_key:
            missing.append("incident_id")
        if self.timestamp is None:
            missing.append("timestamp")
        return missing

    def to_document(self) -> dict[str, Any]:
        """Convert to the stored document shape."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class IncidentSummary(BaseModel):
    """Aggregate view over all legacy log entries sharing one incident key."""

    incident_key: str
    issue_type: str | None = None
    first_log: datetime
    last_log: datetime
    duration_hours: float
    log_count: int
    max_pain_level: int | None = None
    avg_pain_level: float | None = None
    status: str | None = None
    all_symptoms: list[str] = Field(default_factory=list)
    all_activities: list[str] = Field(default_factory=list)
    all_triggers: list[str] = Field(default_factory=list)

    def to_dict(self, for_csv: bool = False) -> dict[str, Any]:
        """
        Convert summary to dictionary representation.

        Args:
            for_csv: If True, join tag lists into ``;`` separated strings.

        Returns:
            Dictionary representation of the summary.
        """
        data = self.model_dump(mode="json")

        if for_csv:
            for key in ("all_symptoms", "all_activities", "all_triggers"):
                data[key] = ";".join(data[key])

        return data


class CamelModel(BaseModel):
    """Base for normalized incident documents, stored with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PainQuality(CamelModel):
    sharp: bool = False
    dull: bool = False
    throbbing: bool = False
    stabbing: bool = False
    aching: bool = False
    heavy: bool = False
    burning: bool = False
    other: str = ""


class OtherSymptoms(CamelModel):
    stiffness: bool = False
    instability: bool = False
    catching: bool = False
    popping: bool = False
    locking: bool = False
    other: str = ""


class Sensations(CamelModel):
    bruising: bool = False
    swelling: bool = False
    numbness: bool = False
    tingling: bool = False
    weakness: bool = False


class WhenMostSevere(CamelModel):
    morning: bool = False
    afternoon: bool = False
    evening: bool = False
    consistent_all_day: bool = False
    interrupts_sleep: bool = False
    other: str = ""


class WhatMakesWorse(CamelModel):
    rest: bool = False
    activity: bool = False
    sleeping: bool = False
    kneeling: bool = False
    other: str = ""


class WhatMakesBetter(CamelModel):
    rest: bool = False
    activity: bool = False
    ice: bool = False
    medication: bool = False
    brace: bool = False
    other: str = ""


class SymptomTiming(CamelModel):
    when_most_severe: WhenMostSevere = Field(default_factory=WhenMostSevere)
    what_makes_worse: WhatMakesWorse = Field(default_factory=WhatMakesWorse)
    what_makes_better: WhatMakesBetter = Field(default_factory=WhatMakesBetter)


class SymptomQuestionnaire(CamelModel):
    """Symptom part of the intake questionnaire attached to an incident."""

    pain_quality: PainQuality = Field(default_factory=PainQuality)
    other_symptoms: OtherSymptoms = Field(default_factory=OtherSymptoms)
    sensations: Sensations = Field(default_factory=Sensations)
    timing: SymptomTiming = Field(default_factory=SymptomTiming)


class PriorPhysician(CamelModel):
    seen: bool | None = None
    provider: str = ""
    when: str = ""


class PriorSurgery(CamelModel):
    had: bool | None = None
    surgery: str = ""
    when: str = ""


class TreatmentTrial(CamelModel):
    tried: bool = False
    helpful: bool | None = None


class OtherTreatmentTrial(TreatmentTrial):
    description: str = ""


class TreatmentsTried(CamelModel):
    massage_therapy: TreatmentTrial = Field(default_factory=TreatmentTrial)
    physical_therapy: TreatmentTrial = Field(default_factory=TreatmentTrial)
    chiropractic_therapy: TreatmentTrial = Field(default_factory=TreatmentTrial)
    acupuncture: TreatmentTrial = Field(default_factory=TreatmentTrial)
    bracing: TreatmentTrial = Field(default_factory=TreatmentTrial)
    injections: TreatmentTrial = Field(default_factory=TreatmentTrial)
    medication: TreatmentTrial = Field(default_factory=TreatmentTrial)
    other: OtherTreatmentTrial = Field(default_factory=OtherTreatmentTrial)


class StudiesCompleted(CamelModel):
    x_rays: bool = False
    mri: bool = False
    ct_scan: bool = False
    emg_nerve_study: bool = False
    bone_scan: bool = False
    ultrasound: bool = False
    other: str = ""


class TreatmentHistory(CamelModel):
    """Treatment part of the intake questionnaire attached to an incident."""

    prior_physician: PriorPhysician = Field(default_factory=PriorPhysician)
    prior_surgery: PriorSurgery = Field(default_factory=PriorSurgery)
    treatments_tried: TreatmentsTried = Field(default_factory=TreatmentsTried)
    studies_completed: StudiesCompleted = Field(default_factory=StudiesCompleted)


class IncidentStatusFlags(CamelModel):
    worsening: bool = False
    resolved: bool = False
    improving: bool = False
    constant: bool = False
    occasional: bool = False

    @classmethod
    def from_log_status(cls, status: str | None) -> "IncidentStatusFlags":
        """
        Map a legacy log status onto incident status flags.

        Args:
            status: Legacy status value (active, improving, resolved).

        Returns:
            Flags with at most one flag set; unknown values set none.
        """
        if status == LogStatus.ACTIVE:
            return cls(worsening=True)
        if status == LogStatus.RESOLVED:
            return cls(resolved=True)
        if status == LogStatus.IMPROVING:
            return cls(improving=True)
        return cls()


class NormalizedIncident(CamelModel):
    """Incident entity of the normalized schema; owns its log entries."""

    id: str = Field(default_factory=generate_object_id, alias="_id")
    pain_locations: list[str] = Field(default_factory=list)
    pain_intensity: int = 0
    date_started: datetime
    injury_source: str = ""
    description: str | None = None
    symptoms: SymptomQuestionnaire = Field(default_factory=SymptomQuestionnaire)
    treatments: TreatmentHistory = Field(default_factory=TreatmentHistory)
    status: IncidentStatusFlags = Field(default_factory=IncidentStatusFlags)
    created_at: datetime | None = Field(None, alias="created_at")
    updated_at: datetime | None = Field(None, alias="updated_at")

    def to_document(self) -> dict[str, Any]:
        """Convert to the stored document shape."""
        return self.model_dump(by_alias=True, mode="json")


class NormalizedLog(BaseModel):
    """Log entry of the normalized schema, bound to one incident."""

    id: str = Field(alias="_id")
    timestamp: datetime
    incident_id: str = Field(description="Identifier of the owning NormalizedIncident")
    issue_type: LogIssueType = LogIssueType.UPDATE
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    def to_document(self) -> dict[str, Any]:
        """Convert to the stored document shape."""
        return self.model_dump(by_alias=True, mode="json")
