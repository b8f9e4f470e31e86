"""Metric sources: one fetch/parse capability shared by every WHOOP feed."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from whoopterm.clients.whoop import PROFILE_PATH, WhoopClient
from whoopterm.config import Config
from whoopterm.models import Profile, Recovery, Sleep, Workout

METRIC_RECOVERY = "recovery"
METRIC_SLEEP = "sleep"
METRIC_WORKOUTS = "workouts"
METRIC_PROFILE = "profile"


def _scored(record: dict[str, Any]) -> bool:
    return bool(record.get("score"))


def _scored_night(record: dict[str, Any]) -> bool:
    return _scored(record) and not record.get("nap", False)


def _any(record: dict[str, Any]) -> bool:
    return True


@dataclass(frozen=True)
class MetricSource:
    """How to fetch, filter and parse one metric feed."""

    key: str
    path: str
    record_type: type
    collection: bool = True
    include: Callable[[dict[str, Any]], bool] = _any

    def fetch(
        self,
        client: WhoopClient,
        token: str,
        now: datetime,
        should_abort: Optional[Callable[[], bool]] = None,
    ) -> Any:
        """Fetch the raw payload to cache: a filtered record list, or one object."""
        if not self.collection:
            return client.get_object(self.path, token)
        start = now - timedelta(days=Config.LOOKBACK_DAYS)
        records = client.get_collection(self.path, token, start, now, should_abort=should_abort)
        return [r for r in records if self.include(r)]

    def parse(self, payload: Any) -> list:
        """Turn a cached payload into immutable records (newest first for collections)."""
        if payload is None:
            return []
        if not self.collection:
            return [self.record_type.from_api(payload)]
        return [self.record_type.from_api(item) for item in payload]


SOURCES: dict[str, MetricSource] = {
    METRIC_RECOVERY: MetricSource(METRIC_RECOVERY, "/v2/recovery", Recovery, include=_scored),
    METRIC_SLEEP: MetricSource(METRIC_SLEEP, "/v2/activity/sleep", Sleep, include=_scored_night),
    METRIC_WORKOUTS: MetricSource(METRIC_WORKOUTS, "/v2/activity/workout", Workout, include=_scored),
    METRIC_PROFILE: MetricSource(METRIC_PROFILE, PROFILE_PATH, Profile, collection=False),
}

ALL_METRIC_KEYS = frozenset(SOURCES)
