"""Process-wide tool session.

One session per server process: it owns the HTTP client, the severity cache
(shared by every aggregation search made in the session) and the notification
stream.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from mcp_alert_triage_server.core.aggregation import SeverityCache
from mcp_alert_triage_server.core.config import TriageConfig, resolve_config
from mcp_alert_triage_server.core.console import TriageConsole
from mcp_alert_triage_server.core.models import SearchForm, View
from mcp_alert_triage_server.core.notifications import NotificationChannel
from mcp_alert_triage_server.core.search_client import ElasticSearchClient, SearchClient


@dataclass
class TriageSession:
    config: TriageConfig
    client: SearchClient
    severity_cache: SeverityCache = field(default_factory=SeverityCache)
    notifications: NotificationChannel = field(default_factory=NotificationChannel)

    def console(self, view: View, form: SearchForm) -> TriageConsole:
        return TriageConsole(
            self.client,
            config=self.config,
            view=view,
            form=form,
            severity_cache=self.severity_cache,
            notifications=self.notifications,
        )


_SESSION: TriageSession | None = None


def get_session() -> TriageSession:
    """Return the process session, creating it from the environment on first use."""
    global _SESSION
    if _SESSION is None:
        config = resolve_config()
        _SESSION = TriageSession(config=config, client=ElasticSearchClient(config))
    return _SESSION


def set_session(session: TriageSession | None) -> None:
    global _SESSION
    _SESSION = session
