# Overview: Explicit actor context passed into every mutating service call.

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ActorContext:
    """
    Who is performing an operation, and from where.

    Routes build this from the authenticated request; CLI commands and the
    scheduler build it explicitly. Services never read request globals.
    """
    user_id: int
    ip_address: str | None = None
    user_agent: str | None = None
