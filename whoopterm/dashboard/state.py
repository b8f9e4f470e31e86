"""Dashboard view-state machine.

``DashboardState`` is immutable; every transition takes a state and returns
the next one together with a command for the event loop. Nothing here does
I/O, so transitions can be tested without a terminal.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Mapping, Optional

VIEW_TODAY = "today"
VIEW_SLEEP_HISTORY = "sleep_history"
VIEW_WORKOUTS = "workouts"
VIEW_TRENDS = "trends"

VIEWS = (VIEW_TODAY, VIEW_SLEEP_HISTORY, VIEW_WORKOUTS, VIEW_TRENDS)

VIEW_TITLES = {
    VIEW_TODAY: "Today",
    VIEW_SLEEP_HISTORY: "Sleep History",
    VIEW_WORKOUTS: "Workouts",
    VIEW_TRENDS: "Trends",
}

# Commands returned to the event loop
CMD_NONE = None
CMD_SYNC = "sync"
CMD_SYNC_FORCE = "sync_force"
CMD_QUIT = "quit"

KEY_BINDINGS = {
    "right": "next_view",
    "tab": "next_view",
    "l": "next_view",
    "left": "prev_view",
    "btab": "prev_view",
    "h": "prev_view",
    "down": "select_next",
    "j": "select_next",
    "up": "select_prev",
    "k": "select_prev",
    "enter": "toggle_expand",
    " ": "toggle_expand",
    "r": "refresh",
    "q": "quit",
    "esc": "quit",
    "1": "goto_view",
    "2": "goto_view",
    "3": "goto_view",
    "4": "goto_view",
}


@dataclass(frozen=True)
class MetricStatus:
    """Outcome of the last sync for one metric, as shown in the dashboard."""

    metric_key: str
    outcome: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class DashboardState:
    active_view: str = VIEW_TODAY
    selections: tuple[int, ...] = (0,) * len(VIEWS)
    expanded: bool = False
    last_refresh_at: Optional[datetime] = None
    last_sync_started_at: Optional[datetime] = None
    pending_refresh: bool = False
    refresh_queued: bool = False
    statuses: tuple[MetricStatus, ...] = ()
    auth_required: bool = False
    message: Optional[str] = None
    quitting: bool = False

    @property
    def view_index(self) -> int:
        return VIEWS.index(self.active_view)

    @property
    def selected_index(self) -> int:
        return self.selections[self.view_index]

    def status_for(self, metric_key: str) -> Optional[MetricStatus]:
        for status in self.statuses:
            if status.metric_key == metric_key:
                return status
        return None


def initial_state(default_view: str = VIEW_TODAY) -> DashboardState:
    if default_view not in VIEWS:
        default_view = VIEW_TODAY
    return DashboardState(active_view=default_view)


def clamp(index: int, item_count: int) -> int:
    if item_count <= 0:
        return 0
    return max(0, min(index, item_count - 1))


def _set_view(state: DashboardState, view: str) -> DashboardState:
    return replace(state, active_view=view, expanded=False)


def next_view(state: DashboardState) -> DashboardState:
    return _set_view(state, VIEWS[(state.view_index + 1) % len(VIEWS)])


def prev_view(state: DashboardState) -> DashboardState:
    return _set_view(state, VIEWS[(state.view_index - 1) % len(VIEWS)])


def goto_view(state: DashboardState, number: int) -> DashboardState:
    if 1 <= number <= len(VIEWS):
        return _set_view(state, VIEWS[number - 1])
    return state


def move_selection(state: DashboardState, delta: int, item_count: int) -> DashboardState:
    selections = list(state.selections)
    selections[state.view_index] = clamp(state.selected_index + delta, item_count)
    return replace(state, selections=tuple(selections))


def clamp_selections(state: DashboardState, item_counts: Mapping[str, int]) -> DashboardState:
    """Re-clamp every view's selection after the underlying data changed."""
    selections = tuple(
        clamp(index, item_counts.get(view, 0)) for view, index in zip(VIEWS, state.selections)
    )
    if selections == state.selections:
        return state
    return replace(state, selections=selections)


def toggle_expand(state: DashboardState) -> DashboardState:
    return replace(state, expanded=not state.expanded)


def request_refresh(state: DashboardState) -> tuple[DashboardState, Optional[str]]:
    """User asked for a forced refresh; queue it if a sync is already running."""
    if state.pending_refresh:
        return replace(state, refresh_queued=True), CMD_NONE
    return replace(state, pending_refresh=True, message=None), CMD_SYNC_FORCE


def request_quit(state: DashboardState) -> tuple[DashboardState, Optional[str]]:
    return replace(state, quitting=True), CMD_QUIT


def sync_started(state: DashboardState, now: datetime) -> DashboardState:
    return replace(state, pending_refresh=True, last_sync_started_at=now)


def tick(state: DashboardState, now: datetime, interval_seconds: float) -> tuple[DashboardState, Optional[str]]:
    """Periodic, cache-aware background sync."""
    if state.quitting:
        return state, CMD_NONE
    if state.pending_refresh:
        return state, CMD_NONE
    if state.refresh_queued:
        return replace(state, refresh_queued=False, pending_refresh=True), CMD_SYNC_FORCE
    if state.last_sync_started_at is None:
        return state, CMD_SYNC
    if (now - state.last_sync_started_at).total_seconds() >= interval_seconds:
        return state, CMD_SYNC
    return state, CMD_NONE


def sync_completed(
    state: DashboardState,
    statuses: tuple[MetricStatus, ...],
    now: datetime,
    auth_required: bool,
    message: Optional[str] = None,
) -> DashboardState:
    return replace(
        state,
        pending_refresh=False,
        last_refresh_at=now,
        statuses=statuses,
        auth_required=auth_required,
        message=message,
    )


def sync_crashed(state: DashboardState, message: str) -> DashboardState:
    return replace(state, pending_refresh=False, message=message)


def handle_key(
    state: DashboardState,
    key: str,
    item_counts: Mapping[str, int],
) -> tuple[DashboardState, Optional[str]]:
    """Map a normalized key name to a transition."""
    action = KEY_BINDINGS.get(key)
    if action is None:
        # Any other key dismisses a message
        if state.message:
            return replace(state, message=None), CMD_NONE
        return state, CMD_NONE

    if action == "quit":
        return request_quit(state)
    if action == "refresh":
        return request_refresh(state)
    if action == "next_view":
        return next_view(state), CMD_NONE
    if action == "prev_view":
        return prev_view(state), CMD_NONE
    if action == "goto_view":
        return goto_view(state, int(key)), CMD_NONE
    if action == "toggle_expand":
        return toggle_expand(state), CMD_NONE

    count = item_counts.get(state.active_view, 0)
    if action == "select_next":
        return move_selection(state, 1, count), CMD_NONE
    if action == "select_prev":
        return move_selection(state, -1, count), CMD_NONE
    return state, CMD_NONE
