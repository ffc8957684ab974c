"""
Workout services: Strava activity sync and workout summary statistics.
"""

import logging
from datetime import datetime
from typing import Any

import pandas as pd
from pydantic import BaseModel, Field

from health_fitness_ledger.domain.fitness import StravaCredentials, Workout
from health_fitness_ledger.infrastructure.store.collections import CollectionStore
from health_fitness_ledger.infrastructure.strava_client.client import StravaClient
from health_fitness_ledger.utils.exceptions import AuthenticationError
from health_fitness_ledger.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class SyncResult(BaseModel):
    fetched: int = 0
    new: int = 0
    updated: int = 0
    page: int = 1
    per_page: int = 30


class StravaSyncService:
    """
    Service syncing Strava activities into the workouts collection.

    Workouts are upserted by Strava activity id, so repeated syncs of the
    same page update existing entries instead of duplicating them.
    """

    def __init__(
        self,
        store: CollectionStore,
        client: StravaClient,
        workouts_collection: str = "strava-workouts",
        tokens_collection: str = "strava-tokens",
    ) -> None:
        """
        Initialize sync service.

        Args:
            store: Document store.
            client: Strava API client.
            workouts_collection: Collection holding cached workouts.
            tokens_collection: Collection holding Strava credentials.
        """
        self.store = store
        self.client = client
        self.workouts_collection = workouts_collection
        self.tokens_collection = tokens_collection

    def load_credentials(self) -> StravaCredentials:
        """
        Load the stored Strava credentials.

        Raises:
            AuthenticationError: If no Strava account is connected.
        """
        documents = self.store.find(self.tokens_collection)
        if not documents:
            raise AuthenticationError("Strava account not connected")
        return StravaCredentials.model_validate(documents[0])

    def save_credentials(self, credentials: StravaCredentials) -> None:
        self.store.upsert(
            self.tokens_collection,
            {"athlete_id": credentials.athlete_id},
            {**credentials.model_dump(), "updated_at": utc_now()},
        )

    def sync(
        self,
        page: int = 1,
        per_page: int | None = None,
        after: int | None = None,
        before: int | None = None,
    ) -> SyncResult:
        """
        Fetch one page of activities and upsert them as workouts.

        Refreshes and persists the credentials first if they are about to expire.

        Args:
            page: Page number.
            per_page: Page size; defaults to the client configuration.
            after: Only activities after this unix timestamp.
            before: Only activities before this unix timestamp.

        Returns:
            Counts of fetched, new and updated workouts.
        """
        credentials = self.load_credentials()
        fresh = self.client.ensure_fresh(credentials)
        if fresh is not credentials:
            self.save_credentials(fresh)

        activities = self.client.get_activities(
            fresh, page=page, per_page=per_page, after=after, before=before
        )

        synced_at = utc_now()
        result = SyncResult(
            fetched=len(activities),
            page=page,
            per_page=per_page or self.client.config.per_page,
        )

        for activity in activities:
            workout = Workout.from_activity(activity, synced_at)
            inserted = self.store.upsert(
                self.workouts_collection, {"strava_id": workout.strava_id}, workout.to_document()
            )
            if inserted:
                result.new += 1
            else:
                result.updated += 1

        logger.info(
            f"Synced {result.fetched} Strava activities: {result.new} new, {result.updated} updated"
        )
        return result


class TypeStats(BaseModel):
    type: str
    count: int
    distance: float
    moving_time: float
    elevation: float
    avg_distance: float
    avg_moving_time: float


class WorkoutStats(BaseModel):
    """Summary statistics over a set of workouts."""

    total_activities: int = 0
    total_distance: float = 0.0
    total_moving_time: float = 0.0
    total_elevation: float = 0.0
    by_type: list[TypeStats] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


def calculate_workout_stats(workouts: list[Workout]) -> WorkoutStats:
    """
    Summarize workouts overall and per activity type.

    Args:
        workouts: Workouts to summarize.

    Returns:
        Totals (metres, seconds) plus per-type counts, totals and averages,
        ordered by count descending.
    """
    if not workouts:
        return WorkoutStats()

    df = pd.DataFrame(
        [
            {
                "type": w.type,
                "distance": w.distance,
                "moving_time": w.moving_time,
                "elevation": w.total_elevation_gain,
            }
            for w in workouts
        ]
    )

    grouped = df.groupby("type").agg(
        count=("distance", "size"),
        distance=("distance", "sum"),
        moving_time=("moving_time", "sum"),
        elevation=("elevation", "sum"),
        avg_distance=("distance", "mean"),
        avg_moving_time=("moving_time", "mean"),
    )
    grouped = grouped.reset_index().sort_values(["count", "type"], ascending=[False, True])
    grouped[["avg_distance", "avg_moving_time"]] = grouped[["avg_distance", "avg_moving_time"]].round(2)

    return WorkoutStats(
        total_activities=len(df),
        total_distance=float(df["distance"].sum()),
        total_moving_time=float(df["moving_time"].sum()),
        total_elevation=float(df["elevation"].sum()),
        by_type=[
            TypeStats(
                type=str(row["type"]),
                count=int(row["count"]),
                distance=float(row["distance"]),
                moving_time=float(row["moving_time"]),
                elevation=float(row["elevation"]),
                avg_distance=float(row["avg_distance"]),
                avg_moving_time=float(row["avg_moving_time"]),
            )
            for row in grouped.to_dict(orient="records")
        ],
    )


class WorkoutService:
    """Service for reading cached workouts."""

    def __init__(self, store: CollectionStore, collection: str = "strava-workouts") -> None:
        self.store = store
        self.collection = collection

    def list_workouts(
        self,
        activity_type: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> list[Workout]:
        """
        List cached workouts, most recent first.

        Args:
            activity_type: Optional workout type filter.
            start_date: Inclusive lower bound on the start date.
            end_date: Inclusive upper bound on the start date.

        Returns:
            Matching workouts.
        """
        filter = {"type": activity_type} if activity_type else None
        workouts = [Workout.model_validate(doc) for doc in self.store.find(self.collection, filter)]

        if start_date:
            workouts = [w for w in workouts if ensure_utc(w.start_date) >= ensure_utc(start_date)]
        if end_date:
            workouts = [w for w in workouts if ensure_utc(w.start_date) <= ensure_utc(end_date)]

        workouts.sort(key=lambda w: ensure_utc(w.start_date), reverse=True)
        return workouts

    def stats(
        self,
        activity_type: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> WorkoutStats:
        workouts = self.list_workouts(activity_type, start_date, end_date)
        stats = calculate_workout_stats(workouts)
        logger.info(f"Summarized {stats.total_activities} workouts")
        return stats
