"""Token persistence and token lifecycle classification."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from .errors import INTERNAL_ERROR, BloggerMcpError, Outcome
from .logging import get_logger
from .models import TokenSet, TokenStatus, now_ms

__all__ = [
    "REFRESH_WINDOW_MS",
    "BlogIdCache",
    "CredentialStore",
    "classify",
    "has_refresh_token",
    "is_expired",
    "needs_refresh",
]

REFRESH_WINDOW_MS = 5 * 60 * 1000


def is_expired(tokens: TokenSet, *, now: int | None = None) -> bool:
    if tokens.expiry_date is None:
        return False
    current = now_ms() if now is None else now
    return current >= tokens.expiry_date


def needs_refresh(tokens: TokenSet, *, now: int | None = None) -> bool:
    if tokens.expiry_date is None:
        return False
    current = now_ms() if now is None else now
    return current >= tokens.expiry_date - REFRESH_WINDOW_MS


def has_refresh_token(tokens: TokenSet | None) -> bool:
    return bool(tokens and tokens.refresh_token)


def classify(tokens: TokenSet | None, *, now: int | None = None) -> TokenStatus:
    """Classify a token set as ``valid``, ``needs_refresh``, ``expired`` or ``missing``.

    An expired token set that cannot be refreshed counts as missing.
    """

    if tokens is None or not tokens.access_token:
        return "missing"
    current = now_ms() if now is None else now
    if is_expired(tokens, now=current):
        return "expired" if tokens.refresh_token else "missing"
    if needs_refresh(tokens, now=current):
        return "needs_refresh"
    return "valid"


def _write_json_atomic(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
            handle.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class CredentialStore:
    """Single-slot token file; every save overwrites the whole file."""

    def __init__(self, path: str | Path, *, logger: logging.Logger | None = None) -> None:
        self._path = Path(path)
        self._logger = logger or get_logger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    def save(self, tokens: TokenSet) -> Outcome[Path]:
        """Persist ``tokens``; I/O failures are logged and reported, never raised."""

        try:
            _write_json_atomic(self._path, tokens.to_dict())
        except OSError as exc:
            self._logger.error(
                "credentials.save.failed",
                extra={"context": {"path": str(self._path), "error": str(exc)}},
            )
            return Outcome.failure(
                BloggerMcpError(
                    INTERNAL_ERROR,
                    f"Failed to save tokens: {exc}",
                    details={"path": str(self._path)},
                )
            )
        self._logger.info("credentials.saved", extra={"context": {"path": str(self._path)}})
        return Outcome.success(self._path)

    def load(self) -> TokenSet | None:
        """Return the persisted token set, or None when absent or unreadable."""

        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            self._logger.error(
                "credentials.load.failed",
                extra={"context": {"path": str(self._path), "error": str(exc)}},
            )
            return None
        if not isinstance(data, dict):
            self._logger.error(
                "credentials.load.failed",
                extra={"context": {"path": str(self._path), "error": "token file must contain a JSON object"}},
            )
            return None
        try:
            return TokenSet.from_dict(data)
        except (TypeError, ValueError) as exc:
            self._logger.error(
                "credentials.load.failed",
                extra={"context": {"path": str(self._path), "error": str(exc)}},
            )
            return None

    def clear(self) -> bool:
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            self._logger.error(
                "credentials.clear.failed",
                extra={"context": {"path": str(self._path), "error": str(exc)}},
            )
            return False
        self._logger.info("credentials.cleared", extra={"context": {"path": str(self._path)}})
        return True

    def has_valid_tokens(self) -> bool:
        tokens = self.load()
        return tokens is not None and bool(tokens.access_token)

    def status(self, *, now: int | None = None) -> TokenStatus:
        return classify(self.load(), now=now)


class BlogIdCache:
    """Remembers the blog id resolved for a blog URL."""

    def __init__(self, path: str | Path, *, logger: logging.Logger | None = None) -> None:
        self._path = Path(path)
        self._logger = logger or get_logger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    def load(self, blog_url: str) -> str | None:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            self._logger.warning("blog_id_cache.unreadable", extra={"context": {"path": str(self._path)}})
            return None
        if not isinstance(data, dict):
            return None
        if data.get("blogUrl") != blog_url or not data.get("blogId"):
            return None
        return str(data["blogId"])

    def save(self, blog_url: str, blog_id: str) -> bool:
        try:
            _write_json_atomic(self._path, {"blogUrl": blog_url, "blogId": blog_id})
        except OSError as exc:
            self._logger.warning(
                "blog_id_cache.save.failed",
                extra={"context": {"path": str(self._path), "error": str(exc)}},
            )
            return False
        return True
