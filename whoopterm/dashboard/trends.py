"""Simple trend aggregation over already-fetched records."""

from dataclasses import dataclass
from statistics import mean
from typing import Optional, Sequence

from whoopterm.models import Recovery, Sleep, Workout

TREND_UP = "up"
TREND_DOWN = "down"
TREND_FLAT = "flat"


@dataclass(frozen=True)
class Trend:
    label: str
    value: Optional[float]
    unit: str
    direction: str
    higher_is_better: bool = True
    samples: int = 0


def direction(values: Sequence[float], tolerance: float = 0.03) -> str:
    """Compare the older half to the newer half; ``values`` are newest first."""
    if len(values) < 2:
        return TREND_FLAT
    half = len(values) // 2
    newer = mean(values[:half])
    older = mean(values[-half:])
    if older == 0:
        return TREND_FLAT
    change = (newer - older) / abs(older)
    if change > tolerance:
        return TREND_UP
    if change < -tolerance:
        return TREND_DOWN
    return TREND_FLAT


def _average(label: str, values: list[float], unit: str, higher_is_better: bool = True) -> Trend:
    return Trend(
        label=label,
        value=mean(values) if values else None,
        unit=unit,
        direction=direction(values),
        higher_is_better=higher_is_better,
        samples=len(values),
    )


def compute_trends(
    recoveries: Sequence[Recovery],
    sleeps: Sequence[Sleep],
    workouts: Sequence[Workout],
) -> list[Trend]:
    scored = [r.score for r in recoveries if r.score is not None]
    nights = [s for s in sleeps if s.score is not None]
    strains = [w.score.strain for w in workouts if w.score is not None]

    return [
        _average("Recovery", [s.recovery_score for s in scored], "%"),
        _average("HRV", [s.hrv_rmssd_milli for s in scored], "ms"),
        _average("Resting HR", [s.resting_heart_rate for s in scored], "bpm", higher_is_better=False),
        _average("Sleep", [s.hours_in_bed for s in nights], "h"),
        Trend(
            label="Total strain",
            value=sum(strains) if strains else None,
            unit="",
            direction=direction(strains),
            samples=len(strains),
        ),
        Trend(
            label="Workouts",
            value=float(len(strains)),
            unit="",
            direction=TREND_FLAT,
            samples=len(strains),
        ),
    ]
