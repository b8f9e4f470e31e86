from whoopterm.dashboard.app import DashboardApp, run_dashboard
from whoopterm.dashboard.state import DashboardState

__all__ = ['DashboardApp', 'DashboardState', 'run_dashboard']
