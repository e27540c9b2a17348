from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mcp_time_server.oauth.config import OAuthConfig
    from mcp_time_server.oauth.service import OAuthService


@dataclass(frozen=True)
class MainAppContext:
    """
    Context holding the resolved OAuth configuration and the service that
    owns the process-wide stores, created once at server construction.
    """

    config: OAuthConfig
    service: OAuthService
    oauth_enabled: bool = False
