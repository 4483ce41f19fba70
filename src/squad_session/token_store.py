from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from loguru import logger

from squad_session.models import Credentials
from squad_session.token_validator import expires_at


@runtime_checkable
class TokenStore(Protocol):
    def get_access_token(self) -> str | None: ...

    def get_refresh_token(self) -> str | None: ...

    def save_tokens(self, access_token: str, refresh_token: str) -> None: ...

    def clear_tokens(self) -> None: ...

    def get_user_id(self) -> str | None: ...

    def save_user_id(self, user_id: str) -> None: ...


def get_credentials(store: TokenStore) -> Credentials | None:
    access = store.get_access_token()
    refresh = store.get_refresh_token()
    if not access or not refresh:
        return None
    return Credentials(
        access_token=access,
        refresh_token=refresh,
        access_expires_at=expires_at(access),
        refresh_expires_at=expires_at(refresh),
    )


def _check_pair(access_token: str, refresh_token: str) -> None:
    if not access_token or not refresh_token:
        raise ValueError("Both access and refresh tokens are required")


class InMemoryTokenStore:
    def __init__(self, access_token: str | None = None, refresh_token: str | None = None):
        self._lock = threading.Lock()
        self._access: str | None = None
        self._refresh: str | None = None
        self._user_id: str | None = None
        if access_token or refresh_token:
            self.save_tokens(access_token or "", refresh_token or "")

    def get_access_token(self) -> str | None:
        with self._lock:
            return self._access

    def get_refresh_token(self) -> str | None:
        with self._lock:
            return self._refresh

    def save_tokens(self, access_token: str, refresh_token: str) -> None:
        _check_pair(access_token, refresh_token)
        with self._lock:
            self._access = access_token
            self._refresh = refresh_token

    def clear_tokens(self) -> None:
        with self._lock:
            self._access = None
            self._refresh = None

    def get_user_id(self) -> str | None:
        with self._lock:
            return self._user_id

    def save_user_id(self, user_id: str) -> None:
        with self._lock:
            self._user_id = user_id

    def clear_all(self) -> None:
        with self._lock:
            self._access = None
            self._refresh = None
            self._user_id = None


class FileTokenStore:
    """JSON file store for the CLI. Writes go through a temp file + rename."""

    def __init__(self, path: str):
        self._path = Path(path)
        self._lock = threading.Lock()

    def get_access_token(self) -> str | None:
        return self._read().get("accessToken")

    def get_refresh_token(self) -> str | None:
        return self._read().get("refreshToken")

    def save_tokens(self, access_token: str, refresh_token: str) -> None:
        _check_pair(access_token, refresh_token)
        with self._lock:
            data = self._read()
            data["accessToken"] = access_token
            data["refreshToken"] = refresh_token
            self._write(data)

    def clear_tokens(self) -> None:
        with self._lock:
            data = self._read()
            data.pop("accessToken", None)
            data.pop("refreshToken", None)
            self._write(data)

    def get_user_id(self) -> str | None:
        return self._read().get("userId")

    def save_user_id(self, user_id: str) -> None:
        with self._lock:
            data = self._read()
            data["userId"] = user_id
            self._write(data)

    def _read(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as ex:
            logger.warning(f"Token file {self._path} is unreadable, treating it as empty: {ex}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Token file {self._path} does not hold a JSON object, treating it as empty")
            return {}
        return data

    def _write(self, data: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".tokens-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self._path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
