"""
Route tracking and back-navigation rules.

There is no renderer here; the Navigator only records where the learner is
so the idle monitor, the envelope and the test clock can react to route
changes and force hard navigations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from loguru import logger

from lms_companion.config import Settings

ROOT_ROUTE = "/"
DASHBOARD_ROUTE = "/Dashboard"
TEST_ROUTE = "/test"
TEST_REPORT_ROUTE = "/test-report"


@dataclass(frozen=True)
class NavigationEvent:
    path: str
    replace: bool = False
    hard: bool = False


RouteListener = Callable[[NavigationEvent], None]


@dataclass
class Navigator:
    """Current route plus listeners notified on every change."""

    current_route: str = ROOT_ROUTE
    history: list[NavigationEvent] = field(default_factory=list)
    _listeners: list[RouteListener] = field(default_factory=list, repr=False)

    def subscribe(self, listener: RouteListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def navigate(self, path: str, replace: bool = False) -> None:
        self._go(NavigationEvent(path=path, replace=replace))

    def hard_navigate(self, path: str) -> None:
        """Full reload to ``path``; used after logout, 401/403 and test expiry."""
        logger.debug(f"Hard navigation to {path}")
        self._go(NavigationEvent(path=path, replace=True, hard=True))

    def _go(self, event: NavigationEvent) -> None:
        self.current_route = event.path
        self.history.append(event)
        for listener in list(self._listeners):
            listener(event)


def is_login_route(path: str, settings: Settings) -> bool:
    if path == ROOT_ROUTE:
        return True
    return settings.show_maintenance and path == f"/{settings.login_path}/login"


# =============================================================================
# Back-navigation rules
# =============================================================================

NAVIGATION_RULES: dict[str, str | None] = {
    "/Dashboard": None,
    "/SubjectOverview": "/Dashboard",
    "/Subject-Roadmap": "/SubjectOverview",
    "/practice-coding/": "/Subject-Roadmap",
    "/test": "/Dashboard",
    "/test-introduction": "/test",
    "/test-section": "/test-introduction",
    "/mcq-temp": "/test-section",
    "/coding-temp": "/test-section",
    "/dynamic-coding-editor": "/test-section",
    "/test-report": "/test",
    "/Report-Problem": "/Dashboard",
    "/Profile": "/Dashboard",
    "/EditProfile": "/Profile",
    "/FAQ": "/Dashboard",
    "/Placement": "/Dashboard",
    "/Reports": "/Dashboard",
    "/Online-Session": "/Dashboard",
    "/project-roadmap": "/Dashboard",
    "/project-tasks": "/project-roadmap",
    "/editor": "/project-tasks",
}

NAVIGATION_DESCRIPTIONS: dict[str, str] = {
    "/Dashboard": "Main dashboard",
    "/SubjectOverview": "Subject overview",
    "/Subject-Roadmap": "Subject roadmap",
    "/practice-coding/": "Practice coding",
    "/test": "Tests",
    "/test-introduction": "Test introduction",
    "/test-section": "Test sections",
    "/mcq-temp": "MCQ test",
    "/coding-temp": "Coding test",
    "/dynamic-coding-editor": "Coding editor",
    "/test-report": "Test report",
    "/Report-Problem": "Report a problem",
    "/Profile": "Profile",
    "/EditProfile": "Edit profile",
    "/FAQ": "FAQ",
    "/Placement": "Placement",
    "/Reports": "Reports",
    "/Online-Session": "Online session",
    "/project-roadmap": "Project roadmap",
    "/project-tasks": "Project tasks",
    "/editor": "Project editor",
}

_RULES_BY_LOWER = {route.lower(): route for route in NAVIGATION_RULES}


def _match_route(path: str) -> str | None:
    lowered = path.lower()
    if lowered in _RULES_BY_LOWER:
        return _RULES_BY_LOWER[lowered]
    # Routes ending in "/" are prefixes (e.g. /practice-coding/<id>)
    for lower_route, route in _RULES_BY_LOWER.items():
        if lower_route.endswith("/") and lowered.startswith(lower_route):
            return route
    return None


def get_back_navigation_path(path: str) -> str | None:
    """Where "back" leads from ``path``; None when back is disabled."""
    if path == ROOT_ROUTE:
        return DASHBOARD_ROUTE
    if path.lower().startswith("/testing/coding/"):
        return DASHBOARD_ROUTE

    route = _match_route(path)
    if route is None:
        return DASHBOARD_ROUTE
    return NAVIGATION_RULES[route]


def is_back_navigation_allowed(path: str) -> bool:
    return get_back_navigation_path(path) is not None


def get_navigation_description(path: str) -> str:
    route = _match_route(path)
    if route is None:
        return "Unknown page"
    return NAVIGATION_DESCRIPTIONS.get(route, route)


def validate_navigation_rules() -> list[str]:
    """Return a list of problems found in the rules table (empty when valid)."""
    problems = []
    seen: set[str] = set()
    for route, target in NAVIGATION_RULES.items():
        if not route.startswith("/"):
            problems.append(f"Route must start with '/': {route}")
        if route.lower() in seen:
            problems.append(f"Duplicate route: {route}")
        seen.add(route.lower())
        if target is not None and not target.startswith("/"):
            problems.append(f"Back target must start with '/': {route} -> {target}")
    return problems
