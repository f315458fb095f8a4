"""Session state models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class SessionState(BaseModel):
    authenticated: bool = False
    auth_attempts: int = 0
    max_auth_attempts: int = 3
    tickle_interval_seconds: float = 30.0
    tickle_active: bool = False

    @property
    def exhausted(self) -> bool:
        return self.auth_attempts >= self.max_auth_attempts


class SessionStatus(BaseModel):
    authenticated: bool
    host: str
    port: int
    auth_attempts: int
    max_auth_attempts: int
    tickle_active: bool
    authenticated_at: datetime | None = None
    last_error: str | None = None
