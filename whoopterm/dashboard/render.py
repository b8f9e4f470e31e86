"""Render snapshot: a pure function of dashboard state and cache contents.

The snapshot is a list of styled text lines; the screen layer only has to
paint them. Building one never writes anything, so it can be recomputed on
every frame and asserted on in tests.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from whoopterm import __version__
from whoopterm.dashboard.state import (
    VIEW_SLEEP_HISTORY,
    VIEW_TITLES,
    VIEW_TODAY,
    VIEW_TRENDS,
    VIEW_WORKOUTS,
    VIEWS,
    DashboardState,
)
from whoopterm.dashboard.trends import TREND_DOWN, TREND_UP, compute_trends
from whoopterm.models import Profile, Sleep, Workout
from whoopterm.services.cache import CacheStore
from whoopterm.services.metrics import (
    METRIC_PROFILE,
    METRIC_RECOVERY,
    METRIC_SLEEP,
    METRIC_WORKOUTS,
    SOURCES,
)

logger = logging.getLogger(__name__)

# Styles understood by the screen layer
STYLE_NORMAL = "normal"
STYLE_DIM = "dim"
STYLE_LABEL = "label"
STYLE_VALUE = "value"
STYLE_TITLE = "title"
STYLE_GOOD = "good"
STYLE_WARN = "warn"
STYLE_BAD = "bad"
STYLE_SELECTED = "selected"
STYLE_ALERT = "alert"

BAR_FILL = "█"
BAR_EMPTY = "░"
BAR_WIDTH = 20

SLEEP_HISTORY_ROWS = 7
WORKOUT_ROWS = 10

FOOTER_HINTS = "  ←/→ View  ↑/↓ Select  Enter Details  r Refresh  q Quit"

Segment = tuple[str, str]
Line = tuple[Segment, ...]


@dataclass(frozen=True)
class Snapshot:
    header: Line
    tabs: Line
    body: tuple[Line, ...]
    footer: Line
    alert: Optional[str] = None

    def lines(self) -> list[Line]:
        return [self.header, self.tabs, *self.body, self.footer]

    def text(self) -> str:
        """Plain-text rendering, mostly for tests and logs."""
        rows = ["".join(text for text, _ in line) for line in self.lines()]
        if self.alert:
            rows.append(f"[!] {self.alert}")
        return "\n".join(rows)


# ── Formatting helpers ──────────────────────────────────

def horizontal_bar(value: float, maximum: float, width: int = BAR_WIDTH) -> str:
    if width <= 0:
        return ""
    if maximum <= 0:
        return BAR_EMPTY * width
    ratio = min(1.0, max(0.0, value / maximum))
    filled = int(ratio * width)
    return BAR_FILL * filled + BAR_EMPTY * (width - filled)


def format_duration(minutes: int) -> str:
    if minutes < 0:
        return "--"
    hours, mins = divmod(int(minutes), 60)
    if hours > 0:
        return f"{hours}h{mins:02d}m"
    return f"{mins}m"


def format_date(value: Optional[datetime]) -> str:
    return value.strftime("%b %d") if value else "--"


def format_age(then: Optional[datetime], now: datetime) -> str:
    if then is None:
        return "never"
    seconds = max(0, int((now - then).total_seconds()))
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    return f"{seconds // 3600}h ago"


def recovery_style(score: float) -> str:
    if score >= 67:
        return STYLE_GOOD
    if score >= 33:
        return STYLE_WARN
    return STYLE_BAD


def sleep_style(hours: float) -> str:
    if hours >= 7.0:
        return STYLE_GOOD
    if hours >= 6.0:
        return STYLE_WARN
    return STYLE_BAD


def strain_style(strain: float) -> str:
    if strain >= 15.0:
        return STYLE_BAD
    if strain >= 10.0:
        return STYLE_WARN
    return STYLE_GOOD


def _label_value(label: str, value: str, style: str = STYLE_VALUE) -> Line:
    return ((f"  {label:<12}", STYLE_LABEL), (value, style))


def _blank() -> Line:
    return (("", STYLE_NORMAL),)


def _section(title: str) -> Line:
    return ((f" {title} ", STYLE_TITLE),)


def _dim(text: str) -> Line:
    return ((f"  {text}", STYLE_DIM),)


# ── Data access ─────────────────────────────────────────

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

SORT_ATTRS = {
    METRIC_RECOVERY: "created_at",
    METRIC_SLEEP: "start",
    METRIC_WORKOUTS: "start",
}


def load_records(cache: CacheStore) -> dict[str, list]:
    """Parse every cached payload into records; unparseable payloads yield nothing."""
    records: dict[str, list] = {}
    for key, source in SOURCES.items():
        entry = cache.get(key)
        if entry is None:
            records[key] = []
            continue
        try:
            parsed = source.parse(entry.payload)
            if key in SORT_ATTRS:
                parsed = _newest_first(parsed, SORT_ATTRS[key])
            records[key] = parsed
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            logger.warning(f"Cached {key} payload could not be parsed: {e}")
            records[key] = []
    return records


def _newest_first(records: list, attr: str) -> list:
    return sorted(records, key=lambda r: getattr(r, attr) or EPOCH, reverse=True)


def item_counts(cache: CacheStore) -> dict[str, int]:
    """Number of selectable rows per view."""
    records = load_records(cache)
    return {
        VIEW_TODAY: 0,
        VIEW_SLEEP_HISTORY: min(len(records[METRIC_SLEEP]), SLEEP_HISTORY_ROWS),
        VIEW_WORKOUTS: min(len(records[METRIC_WORKOUTS]), WORKOUT_ROWS),
        VIEW_TRENDS: len(compute_trends(records[METRIC_RECOVERY], records[METRIC_SLEEP], records[METRIC_WORKOUTS])),
    }


def _staleness(cache: CacheStore, state: DashboardState, metric_key: str, now: datetime) -> Optional[Line]:
    """A marker line when the metric is not backed by fresh data."""
    entry = cache.get(metric_key)
    status = state.status_for(metric_key)
    if entry is None:
        if status and status.reason:
            return ((f"  {metric_key}: unavailable ({status.reason})", STYLE_BAD),)
        return None
    if cache.is_fresh(entry, now=now):
        return None
    reason = f", {status.reason}" if status and status.reason else ""
    return ((f"  stale: fetched {format_age(entry.fetched_at, now)}{reason}", STYLE_WARN),)


# ── Views ───────────────────────────────────────────────

def _today(records: dict[str, list]) -> list[Line]:
    lines: list[Line] = [_section("Recovery")]
    recoveries = [r for r in records[METRIC_RECOVERY] if r.score]
    if recoveries:
        score = recoveries[0].score
        style = recovery_style(score.recovery_score)
        lines.append((
            (f"  {int(score.recovery_score):3d}% ", style),
            (horizontal_bar(score.recovery_score, 100), style),
        ))
        lines.append(_label_value("RHR", f"{score.resting_heart_rate:.0f} bpm"))
        lines.append(_label_value("HRV", f"{score.hrv_rmssd_milli:.1f} ms"))
        if score.spo2_percentage is not None:
            lines.append(_label_value("SpO₂", f"{score.spo2_percentage:.0f}%"))
        if score.skin_temp_celsius is not None:
            lines.append(_label_value("Skin", f"{score.skin_temp_celsius:.1f}°C"))
        if score.user_calibrating:
            lines.append(_dim("calibrating"))
    else:
        lines.append(_dim("No recovery data"))

    lines.append(_blank())
    lines.append(_section("Last Night's Sleep"))
    nights = records[METRIC_SLEEP]
    if not nights:
        lines.append(_dim("No sleep data"))
    elif nights[0].score is None:
        lines.append(_dim("Sleep not scored"))
    else:
        lines.extend(_sleep_detail(nights[0]))
    return lines


def _sleep_detail(sleep: Sleep) -> list[Line]:
    score = sleep.score
    stages = score.stages
    total = stages.in_bed_milli // 60000
    lines = [
        _label_value("Duration", format_duration(total)),
        _label_value("Efficiency", f"{score.efficiency_percentage or 0:.0f}%"),
        _label_value("Performance", f"{score.performance_percentage or 0:.0f}%"),
    ]
    if total > 0:
        for label, milli, style in (
            ("Awake", stages.awake_milli, STYLE_WARN),
            ("Light", stages.light_milli, STYLE_VALUE),
            ("Deep", stages.slow_wave_milli, STYLE_TITLE),
            ("REM", stages.rem_milli, STYLE_GOOD),
        ):
            mins = milli // 60000
            lines.append((
                (f"  {label:<6}{format_duration(mins):>7} ", STYLE_LABEL),
                (horizontal_bar(mins, total), style),
                (f" {int(mins / total * 100):2d}%", STYLE_DIM),
            ))
    return lines


def _sleep_history(records: dict[str, list], state: DashboardState) -> list[Line]:
    nights = records[METRIC_SLEEP][:SLEEP_HISTORY_ROWS]
    lines: list[Line] = [_section("Sleep History (7d)")]
    if not nights:
        lines.append(_dim("No sleep data"))
        return lines

    lines.append(((f"  {'Date':<8}{'Hours':>7}  {'Sleep':<{BAR_WIDTH}}  Eff.", STYLE_LABEL),))
    for index, night in enumerate(nights):
        hours = night.hours_in_bed
        efficiency = (night.score.efficiency_percentage or 0) if night.score else 0
        selected = index == state.selected_index
        marker = "▶ " if selected else "  "
        lines.append((
            (f"{marker}{format_date(night.start):<8}{hours:>6.1f}h  ", STYLE_SELECTED if selected else STYLE_VALUE),
            (horizontal_bar(hours * 10, 100), sleep_style(hours)),
            (f"  {int(efficiency)}%", STYLE_DIM),
        ))
        if selected and state.expanded and night.score:
            lines.extend(_sleep_detail(night))
    return lines


def _workouts(records: dict[str, list], state: DashboardState) -> list[Line]:
    workouts = records[METRIC_WORKOUTS][:WORKOUT_ROWS]
    lines: list[Line] = [_section("Recent Workouts")]
    if not workouts:
        lines.append(_dim("No workouts"))
        return lines

    lines.append(((f"  {'Date':<8}{'Activity':<16}{'Strain':<14}{'Duration':<10}Avg HR", STYLE_LABEL),))
    for index, workout in enumerate(workouts):
        score = workout.score
        strain = score.strain if score else 0.0
        selected = index == state.selected_index
        marker = "▶ " if selected else "  "
        lines.append((
            (f"{marker}{format_date(workout.start):<8}{workout.sport_name[:15]:<16}", STYLE_SELECTED if selected else STYLE_VALUE),
            (f"{horizontal_bar(strain * 5, 100, 8)} {strain:4.1f} ", strain_style(strain)),
            (f"{format_duration(workout.duration_minutes):<10}{score.average_heart_rate if score else '--'}", STYLE_DIM),
        ))
        if selected and state.expanded and score:
            lines.extend(_workout_detail(workout))
    return lines


def _workout_detail(workout: Workout) -> list[Line]:
    score = workout.score
    lines = [
        _label_value("Max HR", f"{score.max_heart_rate} bpm"),
        _label_value("Energy", f"{score.kilojoule:.0f} kJ ({score.kilojoule / 4.184:.0f} kcal)"),
    ]
    if score.distance_meter:
        lines.append(_label_value("Distance", f"{score.distance_meter / 1000:.2f} km"))
    if score.altitude_gain_meter:
        lines.append(_label_value("Climb", f"{score.altitude_gain_meter:.0f} m"))
    total = sum(score.zone_durations)
    for zone, milli in enumerate(score.zone_durations):
        mins = milli // 60000
        lines.append((
            (f"  Zone {zone}  {format_duration(mins):>7} ", STYLE_LABEL),
            (horizontal_bar(milli, total, 12), STYLE_VALUE),
        ))
    return lines


def _trends(records: dict[str, list], state: DashboardState) -> list[Line]:
    trends = compute_trends(records[METRIC_RECOVERY], records[METRIC_SLEEP], records[METRIC_WORKOUTS])
    lines: list[Line] = [_section("Trends (7d)")]
    arrows = {TREND_UP: "↑", TREND_DOWN: "↓"}
    for index, trend in enumerate(trends):
        selected = index == state.selected_index
        marker = "▶ " if selected else "  "
        if trend.value is None:
            value, style = "--", STYLE_DIM
        else:
            value = f"{trend.value:.1f}{trend.unit}"
            improving = (trend.direction == TREND_UP) == trend.higher_is_better
            style = STYLE_VALUE if trend.direction not in arrows else (STYLE_GOOD if improving else STYLE_WARN)
        lines.append((
            (f"{marker}{trend.label:<14}", STYLE_SELECTED if selected else STYLE_LABEL),
            (f"{value:>10} {arrows.get(trend.direction, '→')}", style),
        ))
        if selected and state.expanded:
            lines.append(_dim(f"{trend.samples} samples"))
    return lines


# ── Snapshot ────────────────────────────────────────────

def _header(state: DashboardState, records: dict[str, list], cache: CacheStore, now: datetime) -> Line:
    profiles = records[METRIC_PROFILE]
    name = profiles[0].full_name if profiles and isinstance(profiles[0], Profile) and profiles[0].full_name else "WHOOPTERM"

    reference = state.last_refresh_at
    if reference is None:
        fetched = [entry.fetched_at for entry in cache.entries().values()]
        reference = max(fetched) if fetched else None

    header: list[Segment] = [
        (name, STYLE_TITLE),
        ("  |  ", STYLE_DIM),
        (f"Last updated: {format_age(reference, now)}", STYLE_LABEL),
        ("  |  ", STYLE_DIM),
        (f"v{__version__}", STYLE_DIM),
    ]
    if state.pending_refresh:
        header.append(("  syncing…", STYLE_WARN))
    return tuple(header)


def _tabs(state: DashboardState) -> Line:
    segments: list[Segment] = []
    for number, view in enumerate(VIEWS, start=1):
        style = STYLE_SELECTED if view == state.active_view else STYLE_DIM
        segments.append((f" {number} {VIEW_TITLES[view]} ", style))
    return tuple(segments)


VIEW_METRICS = {
    VIEW_TODAY: (METRIC_RECOVERY, METRIC_SLEEP),
    VIEW_SLEEP_HISTORY: (METRIC_SLEEP,),
    VIEW_WORKOUTS: (METRIC_WORKOUTS,),
    VIEW_TRENDS: (METRIC_RECOVERY, METRIC_SLEEP, METRIC_WORKOUTS),
}


def build_snapshot(state: DashboardState, cache: CacheStore, now: datetime) -> Snapshot:
    records = load_records(cache)

    if state.active_view == VIEW_TODAY:
        body = _today(records)
    elif state.active_view == VIEW_SLEEP_HISTORY:
        body = _sleep_history(records, state)
    elif state.active_view == VIEW_WORKOUTS:
        body = _workouts(records, state)
    else:
        body = _trends(records, state)

    for metric_key in VIEW_METRICS[state.active_view]:
        marker = _staleness(cache, state, metric_key, now)
        if marker:
            body.append(marker)

    alert = None
    if state.auth_required:
        alert = "Authorization required. Run: whoopterm --auth"
    elif state.message:
        alert = state.message

    return Snapshot(
        header=_header(state, records, cache, now),
        tabs=_tabs(state),
        body=tuple(body),
        footer=((FOOTER_HINTS, STYLE_DIM),),
        alert=alert,
    )
