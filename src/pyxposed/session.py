"""Caller-supplied provider session."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class Session(BaseModel):
    """Authenticated provider session.

    The library never creates or refreshes sessions; callers obtain the
    tokens elsewhere and pass them in.  An incomplete session is not an
    error, lookups simply return no result.

    Parameters
    ----------
    auth_token : str
        Value of the ``auth_token`` cookie.
    csrf_token : str
        Value of the ``ct0`` cookie, echoed in the ``x-csrf-token`` header.
    is_authenticated : bool
        Caller-side login flag.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    auth_token: str = ""
    csrf_token: str = ""
    is_authenticated: bool = False

    @property
    def is_complete(self) -> bool:
        """Whether both tokens required by the provider are present."""
        return bool(self.auth_token) and bool(self.csrf_token)

    def cookie_header(self) -> str:
        return f"auth_token={self.auth_token}; ct0={self.csrf_token}"
