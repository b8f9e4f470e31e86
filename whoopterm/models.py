"""Value objects: OAuth credential and WHOOP metric records."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


@dataclass(frozen=True)
class Credential:
    """OAuth credential as persisted in tokens.json."""

    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime
    scope: str = ""

    @classmethod
    def from_token_response(
        cls,
        data: dict[str, Any],
        now: datetime,
        previous: Optional["Credential"] = None,
    ) -> "Credential":
        """Build a credential from a token endpoint response.

        A refresh response without a new refresh token keeps the previous one.
        """
        refresh_token = data.get("refresh_token")
        if not refresh_token and previous is not None:
            refresh_token = previous.refresh_token
        scope = data.get("scope")
        if scope is None:
            scope = previous.scope if previous is not None else ""
        return cls(
            access_token=data["access_token"],
            refresh_token=refresh_token,
            expires_at=now + timedelta(seconds=int(data.get("expires_in") or 0)),
            scope=scope,
        )

    def is_valid(self, now: datetime, skew: float = 0) -> bool:
        """True when the token stays valid for more than ``skew`` seconds."""
        return now < self.expires_at - timedelta(seconds=skew)


# ── Profile ─────────────────────────────────────────────

@dataclass(frozen=True)
class Profile:
    user_id: int
    email: str
    first_name: str
    last_name: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Profile":
        return cls(
            user_id=int(data.get("user_id", 0)),
            email=data.get("email", ""),
            first_name=data.get("first_name", ""),
            last_name=data.get("last_name", ""),
        )


# ── Recovery ────────────────────────────────────────────

@dataclass(frozen=True)
class RecoveryScore:
    recovery_score: float
    resting_heart_rate: float
    hrv_rmssd_milli: float
    user_calibrating: bool = False
    spo2_percentage: Optional[float] = None
    skin_temp_celsius: Optional[float] = None


@dataclass(frozen=True)
class Recovery:
    cycle_id: int
    sleep_id: str
    created_at: datetime
    score_state: str
    score: Optional[RecoveryScore] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Recovery":
        raw = data.get("score")
        score = None
        if raw:
            score = RecoveryScore(
                recovery_score=float(raw.get("recovery_score", 0)),
                resting_heart_rate=float(raw.get("resting_heart_rate", 0)),
                hrv_rmssd_milli=float(raw.get("hrv_rmssd_milli", 0)),
                user_calibrating=bool(raw.get("user_calibrating", False)),
                spo2_percentage=raw.get("spo2_percentage"),
                skin_temp_celsius=raw.get("skin_temp_celsius"),
            )
        return cls(
            cycle_id=int(data.get("cycle_id", 0)),
            sleep_id=str(data.get("sleep_id", "")),
            created_at=parse_datetime(data.get("created_at")),
            score_state=data.get("score_state", ""),
            score=score,
        )


# ── Sleep ───────────────────────────────────────────────

@dataclass(frozen=True)
class SleepStages:
    in_bed_milli: int = 0
    awake_milli: int = 0
    no_data_milli: int = 0
    light_milli: int = 0
    slow_wave_milli: int = 0
    rem_milli: int = 0
    cycle_count: int = 0
    disturbance_count: int = 0

    @property
    def asleep_milli(self) -> int:
        return self.light_milli + self.slow_wave_milli + self.rem_milli


@dataclass(frozen=True)
class SleepScore:
    stages: SleepStages
    respiratory_rate: Optional[float] = None
    performance_percentage: Optional[float] = None
    consistency_percentage: Optional[float] = None
    efficiency_percentage: Optional[float] = None


@dataclass(frozen=True)
class Sleep:
    id: str
    start: datetime
    end: datetime
    nap: bool
    score_state: str
    score: Optional[SleepScore] = None

    @property
    def hours_in_bed(self) -> float:
        if self.score is None:
            return 0.0
        return self.score.stages.in_bed_milli / 3_600_000

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Sleep":
        raw = data.get("score")
        score = None
        if raw:
            summary = raw.get("stage_summary") or {}
            score = SleepScore(
                stages=SleepStages(
                    in_bed_milli=int(summary.get("total_in_bed_time_milli", 0)),
                    awake_milli=int(summary.get("total_awake_time_milli", 0)),
                    no_data_milli=int(summary.get("total_no_data_time_milli", 0)),
                    light_milli=int(summary.get("total_light_sleep_time_milli", 0)),
                    slow_wave_milli=int(summary.get("total_slow_wave_sleep_time_milli", 0)),
                    rem_milli=int(summary.get("total_rem_sleep_time_milli", 0)),
                    cycle_count=int(summary.get("sleep_cycle_count", 0)),
                    disturbance_count=int(summary.get("disturbance_count", 0)),
                ),
                respiratory_rate=raw.get("respiratory_rate"),
                performance_percentage=raw.get("sleep_performance_percentage"),
                consistency_percentage=raw.get("sleep_consistency_percentage"),
                efficiency_percentage=raw.get("sleep_efficiency_percentage"),
            )
        return cls(
            id=str(data.get("id", "")),
            start=parse_datetime(data.get("start")),
            end=parse_datetime(data.get("end")),
            nap=bool(data.get("nap", False)),
            score_state=data.get("score_state", ""),
            score=score,
        )


# ── Workout ─────────────────────────────────────────────

ZONE_KEYS = (
    "zone_zero_milli",
    "zone_one_milli",
    "zone_two_milli",
    "zone_three_milli",
    "zone_four_milli",
    "zone_five_milli",
)


@dataclass(frozen=True)
class WorkoutScore:
    strain: float
    average_heart_rate: int
    max_heart_rate: int
    kilojoule: float
    percent_recorded: float = 0.0
    zone_durations: tuple[int, ...] = field(default_factory=lambda: (0,) * len(ZONE_KEYS))
    distance_meter: Optional[float] = None
    altitude_gain_meter: Optional[float] = None


@dataclass(frozen=True)
class Workout:
    id: str
    start: Optional[datetime]
    end: Optional[datetime]
    sport_name: str
    score_state: str
    score: Optional[WorkoutScore] = None

    @property
    def duration_minutes(self) -> int:
        """Whole minutes between start and end, or -1 when either is missing."""
        if self.start is None or self.end is None:
            return -1
        return int((self.end - self.start).total_seconds() // 60)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Workout":
        raw = data.get("score")
        score = None
        if raw:
            zones = raw.get("zone_durations") or {}
            score = WorkoutScore(
                strain=float(raw.get("strain", 0)),
                average_heart_rate=int(raw.get("average_heart_rate", 0)),
                max_heart_rate=int(raw.get("max_heart_rate", 0)),
                kilojoule=float(raw.get("kilojoule", 0)),
                percent_recorded=float(raw.get("percent_recorded", 0)),
                zone_durations=tuple(int(zones.get(k, 0) or 0) for k in ZONE_KEYS),
                distance_meter=raw.get("distance_meter"),
                altitude_gain_meter=raw.get("altitude_gain_meter"),
            )
        return cls(
            id=str(data.get("id", "")),
            start=parse_datetime(data.get("start")),
            end=parse_datetime(data.get("end")),
            sport_name=data.get("sport_name", "") or "activity",
            score_state=data.get("score_state", ""),
            score=score,
        )
