"""
Goal progress service.

Computes the progress of fitness goals from the cached workout history.
The goal's stored ``current_value`` is never trusted: it is recomputed on
every read so it always agrees with the live workouts.
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from health_fitness_ledger.domain.fitness import (
    FitnessGoal,
    GoalProgress,
    GoalStatus,
    GoalType,
    Workout,
)
from health_fitness_ledger.infrastructure.store.collections import CollectionStore
from health_fitness_ledger.utils.exceptions import ValidationError
from health_fitness_ledger.utils.hashing import generate_object_id
from health_fitness_ledger.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

METERS_TO_MILES = 0.000621371
METERS_TO_FEET = 3.28084

REQUIRED_GOAL_FIELDS = ("goal_type", "target_value", "unit", "time_period", "start_date")


def _matching_workouts(
    goal: FitnessGoal, workouts: Iterable[Workout], now: datetime
) -> list[Workout]:
    window_start = ensure_utc(goal.start_date)
    window_end = ensure_utc(goal.end_date) if goal.end_date else ensure_utc(now)

    matching: list[Workout] = []
    for workout in workouts:
        if not window_start <= ensure_utc(workout.start_date) <= window_end:
            continue
        if goal.activity_type and workout.type != goal.activity_type:
            continue
        if goal.sport_type and workout.sport_type != goal.sport_type:
            continue
        matching.append(workout)

    return matching


def _aggregate(goal: FitnessGoal, workouts: list[Workout]) -> float:
    if goal.goal_type == GoalType.DISTANCE:
        meters = sum(w.distance for w in workouts)
        if goal.unit == "km":
            return meters / 1000
        if goal.unit == "mi":
            return meters * METERS_TO_MILES
        return meters

    if goal.goal_type == GoalType.DURATION:
        seconds = sum(w.moving_time for w in workouts)
        if goal.unit == "hours":
            return seconds / 3600
        if goal.unit == "minutes":
            return seconds / 60
        return seconds

    if goal.goal_type == GoalType.ELEVATION:
        meters = sum(w.total_elevation_gain for w in workouts)
        if goal.unit == "ft":
            return meters * METERS_TO_FEET
        return meters

    if goal.goal_type == GoalType.FREQUENCY:
        return float(len(workouts))

    return 0.0


def compute_progress(
    goal: FitnessGoal, activities: Iterable[Workout], now: datetime | None = None
) -> GoalProgress:
    """
    Compute the progress of a goal from workouts.

    Workouts count when their start date falls inside
    ``[goal.start_date, goal.end_date or now]`` and they match the goal's
    activity and sport type filters, if set.

    Args:
        goal: Fitness goal.
        activities: Candidate workouts; non-matching ones are ignored.
        now: End of the window for open-ended goals; defaults to the current time.

    Returns:
        Current value (2 decimals), percentage capped at 100 (1 decimal)
        and remaining amount (never negative).

    Raises:
        ValidationError: If the goal's target value is zero.
    """
    if goal.target_value == 0:
        raise ValidationError(f"Goal {goal.id or '<new>'} has a target value of 0")

    matching = _matching_workouts(goal, activities, now or utc_now())
    current_value = round(_aggregate(goal, matching), 2)

    percentage = min(current_value / goal.target_value * 100, 100)
    remaining = max(goal.target_value - current_value, 0)

    return GoalProgress(
        current_value=current_value,
        percentage=round(percentage, 1),
        remaining=remaining,
    )


class GoalService:
    """
    Service for reading and creating fitness goals.

    Attaches freshly computed progress to every goal it returns.
    """

    def __init__(
        self,
        store: CollectionStore,
        goals_collection: str = "fitness-goals",
        workouts_collection: str = "strava-workouts",
    ) -> None:
        """
        Initialize goal service.

        Args:
            store: Document store.
            goals_collection: Collection holding goals.
            workouts_collection: Collection holding cached workouts.
        """
        self.store = store
        self.goals_collection = goals_collection
        self.workouts_collection = workouts_collection

    def _load_workouts(self) -> list[Workout]:
        return [Workout.model_validate(doc) for doc in self.store.find(self.workouts_collection)]

    def list_goals(
        self,
        status: str | None = None,
        goal_type: str | None = None,
        activity_type: str | None = None,
        now: datetime | None = None,
    ) -> list[tuple[FitnessGoal, GoalProgress]]:
        """
        List goals with recomputed progress, newest first.

        Args:
            status: Optional status filter.
            goal_type: Optional goal type filter.
            activity_type: Optional activity type filter.
            now: Reference time for open-ended goals.

        Returns:
            Pairs of goal (with ``current_value`` refreshed) and progress.
        """
        filter: dict[str, Any] = {}
        if status:
            filter["status"] = status
        if goal_type:
            filter["goal_type"] = goal_type
        if activity_type:
            filter["activity_type"] = activity_type

        goals = [FitnessGoal.model_validate(doc) for doc in self.store.find(self.goals_collection, filter)]
        goals.sort(key=lambda g: ensure_utc(g.created_at or g.start_date), reverse=True)

        workouts = self._load_workouts()
        results: list[tuple[FitnessGoal, GoalProgress]] = []

        for goal in goals:
            if goal.target_value == 0:
                logger.warning(f"Skipping goal {goal.id}: target value is 0")
                continue

            progress = compute_progress(goal, workouts, now)
            goal.current_value = progress.current_value
            results.append((goal, progress))

        logger.info(f"Computed progress for {len(results)} goals")
        return results

    def create_goal(self, data: dict[str, Any]) -> FitnessGoal:
        """
        Validate and store a new goal.

        Args:
            data: Goal fields as submitted by the user.

        Returns:
            Stored goal.

        Raises:
            ValidationError: If required fields are missing, the target is
                zero or a field has an invalid value.
        """
        missing = [name for name in REQUIRED_GOAL_FIELDS if not data.get(name)]
        if missing:
            raise ValidationError(f"Missing required goal fields: {', '.join(missing)}")

        now = utc_now()
        try:
            goal = FitnessGoal(
                goal_type=data["goal_type"],
                activity_type=data.get("activity_type"),
                sport_type=data.get("sport_type"),
                target_value=data["target_value"],
                unit=data["unit"],
                time_period=data["time_period"],
                start_date=data["start_date"],
                end_date=data.get("end_date"),
                status=GoalStatus.ACTIVE,
                description=data.get("description"),
                created_at=now,
                updated_at=now,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid goal: {e}") from e

        goal.id = generate_object_id()
        self.store.insert_many(self.goals_collection, [goal.to_document()])

        logger.info(f"Created {goal.goal_type} goal {goal.id}")
        return goal
