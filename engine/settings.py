"""
Engine runtime settings.

Plain values only; infra/config.py builds these from the environment.
"""

from dataclasses import dataclass
from typing import Literal, Optional

import httpx

DelayMode = Literal["scheduled", "inline"]
TieBreak = Literal["updated_at", "created_at"]

DEFAULT_STAMP_SERVER_URL = "https://stampgen.thepotentialcompany.com"


@dataclass
class EngineSettings:
    # delay node: "scheduled" suspends and resumes via sweep,
    # "inline" sleeps inside the request (capped)
    delay_mode: DelayMode = "scheduled"
    inline_delay_max_seconds: float = 20.0

    # flow matcher tie-break among equal priorities
    tie_break: TieBreak = "updated_at"

    # hard cap on nodes visited in a single walk
    max_steps: int = 500

    # a running execution not saved for this long belongs to a dead invocation
    running_lease_seconds: float = 300.0

    stamp_server_url: str = DEFAULT_STAMP_SERVER_URL

    # apiCall node transport; None means real network
    http_transport: Optional[httpx.AsyncBaseTransport] = None
