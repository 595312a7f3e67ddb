"""Credential holder shared by every WinCC REST call."""

from __future__ import annotations

import base64
from typing import Optional


class SessionCredentials:
    """The single authentication identity used for outbound WinCC requests.

    One instance exists per process and is handed to the dispatch client.
    Writes are last-write-wins: a login running while other requests are in
    flight may or may not be seen by them, but every request builds its
    Authorization value in one step and never mixes old and new fields.
    """

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        bearer_token: Optional[str] = None,
    ):
        self._username = username or None
        self._password = password or None
        self._bearer_token = bearer_token or None

    @property
    def username(self) -> Optional[str]:
        return self._username

    @property
    def mode(self) -> str:
        """Return which credential is active: ``bearer``, ``basic`` or ``none``."""
        if self._bearer_token:
            return "bearer"
        if self._username and self._password:
            return "basic"
        return "none"

    def set_basic_credentials(self, username: str, password: str) -> None:
        """Replace the stored user/password and drop any bearer token."""
        if not username:
            raise ValueError("Username cannot be empty.")
        if not password:
            raise ValueError("Password cannot be empty.")
        self._username = username
        self._password = password
        self._bearer_token = None

    def authorization_header(self) -> Optional[str]:
        """Return the Authorization header value, or None if no credential is set.

        A bearer token always wins over username/password.
        """
        if self._bearer_token:
            return f"Bearer {self._bearer_token}"
        if self._username and self._password:
            token = base64.b64encode(f"{self._username}:{self._password}".encode("utf-8")).decode("ascii")
            return f"Basic {token}"
        return None
