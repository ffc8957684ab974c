"""
Fitness domain models: goals, cached Strava workouts and Strava credentials.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GoalType(str, Enum):
    DISTANCE = "distance"
    DURATION = "duration"
    ELEVATION = "elevation"
    FREQUENCY = "frequency"
    CUSTOM = "custom"


class TimePeriod(str, Enum):
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    CUSTOM = "custom"


class GoalStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class FitnessGoal(BaseModel):
    """
    User-defined fitness goal.

    ``current_value`` is a cache of the last computed progress and is
    recomputed from the workout history on every read.
    """

    id: str | None = Field(None, alias="_id")
    goal_type: GoalType
    activity_type: str | None = Field(None, description="Workout type filter, e.g. Run")
    sport_type: str | None = Field(None, description="Workout sport type filter, e.g. TrailRun")
    target_value: float
    current_value: float = 0.0
    unit: str = Field(description="km, mi, hours, minutes, m, ft, activities, ...")
    time_period: TimePeriod
    start_date: datetime
    end_date: datetime | None = None
    status: GoalStatus = GoalStatus.ACTIVE
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    def to_document(self) -> dict[str, Any]:
        """Convert to the stored document shape."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class GoalProgress(BaseModel):
    """Progress of a goal computed from matching workouts."""

    current_value: float
    percentage: float
    remaining: float


class Workout(BaseModel):
    """Strava activity as cached in the workouts collection."""

    id: str | None = Field(None, alias="_id")
    strava_id: int
    athlete_id: int
    name: str = ""
    type: str
    sport_type: str | None = None
    start_date: datetime
    start_date_local: datetime | None = None
    distance: float = Field(0.0, description="Metres")
    moving_time: float = Field(0.0, description="Seconds")
    elapsed_time: float = Field(0.0, description="Seconds")
    total_elevation_gain: float = Field(0.0, description="Metres")
    average_speed: float | None = None
    max_speed: float | None = None
    average_heartrate: float | None = None
    max_heartrate: float | None = None
    calories: float | None = None
    device_name: str | None = None
    description: str | None = None
    trainer: bool = False
    commute: bool = False
    sync_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("distance", "moving_time", "elapsed_time", "total_elevation_gain", mode="before")
    @classmethod
    def _none_to_zero(cls, value: Any) -> Any:
        return 0.0 if value is None else value

    @classmethod
    def from_activity(cls, activity: dict[str, Any], synced_at: datetime) -> "Workout":
        """
        Build a cached workout from a raw Strava API activity.

        Args:
            activity: Activity payload from the Strava API.
            synced_at: Time of the sync run.

        Returns:
            Workout ready to be upserted by ``strava_id``.
        """
        return cls(
            strava_id=activity["id"],
            athlete_id=activity["athlete"]["id"],
            name=activity.get("name", ""),
            type=activity["type"],
            sport_type=activity.get("sport_type"),
            start_date=activity["start_date"],
            start_date_local=activity.get("start_date_local"),
            distance=activity.get("distance"),
            moving_time=activity.get("moving_time"),
            elapsed_time=activity.get("elapsed_time"),
            total_elevation_gain=activity.get("total_elevation_gain"),
            average_speed=activity.get("average_speed"),
            max_speed=activity.get("max_speed"),
            average_heartrate=activity.get("average_heartrate"),
            max_heartrate=activity.get("max_heartrate"),
            calories=activity.get("calories"),
            device_name=activity.get("device_name"),
            description=activity.get("description"),
            trainer=activity.get("trainer", False),
            commute=activity.get("commute", False),
            sync_date=synced_at,
            updated_at=synced_at,
        )

    def to_document(self) -> dict[str, Any]:
        """Convert to the stored document shape."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class StravaCredentials(BaseModel):
    """
    OAuth tokens for one Strava athlete.

    Passed explicitly to the client; refreshed tokens come back as a new
    instance that the caller persists.
    """

    access_token: str
    refresh_token: str
    expires_at: int = Field(description="Unix timestamp (seconds)")
    athlete_id: int | None = None

    def expires_within(self, margin_seconds: int, now: datetime | None = None) -> bool:
        """
        Check whether the access token expires within a margin.

        Args:
            margin_seconds: Seconds before expiry that already count as expired.
            now: Reference time; defaults to the current time.

        Returns:
            True if the token should be refreshed before use.
        """
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= int(now.timestamp()) + margin_seconds
