"""Student photo lookup through the school's Google Workspace directory.

The kitchen terminal shows the student's Google profile photo when one can
be found. Lookups are best effort: :mod:`eligibility` never lets a resolver
failure fail a check-in.
"""

from __future__ import annotations

import abc
import json
import threading
from typing import Any, Mapping, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from app_logging import get_logger

_logger = get_logger("mealtracker.identity")

DIRECTORY_SCOPES = ["https://www.googleapis.com/auth/admin.directory.user.readonly"]

# Google serves 96px thumbnails by default; the terminal wants a larger one.
_SMALL_PHOTO = "=s96-c"
_LARGE_PHOTO = "=s256-c"


class AvatarResolver(abc.ABC):
    """Interface: map an email address to a photo URL, or ``None``."""

    @abc.abstractmethod
    def resolve(self, email: str) -> Optional[str]:
        ...


class NullAvatarResolver(AvatarResolver):
    def resolve(self, email: str) -> Optional[str]:
        return None


class DirectoryAvatarResolver(AvatarResolver):
    """Look up ``thumbnailPhotoUrl`` with the Admin SDK Directory API.

    Uses service-account credentials with domain-wide delegation,
    impersonating ``subject`` (a Workspace admin). The discovery client is
    built on first use and reused afterwards.
    """

    def __init__(self, credentials, subject: Optional[str] = None) -> None:
        if subject:
            credentials = credentials.with_subject(subject)
        self._credentials = credentials
        self._service = None
        self._lock = threading.Lock()

    @classmethod
    def from_service_account(cls, info: Optional[Mapping[str, Any]] = None,
                             path: Optional[str] = None,
                             subject: Optional[str] = None) -> "DirectoryAvatarResolver":
        if info:
            creds = service_account.Credentials.from_service_account_info(info, scopes=DIRECTORY_SCOPES)
        elif path:
            creds = service_account.Credentials.from_service_account_file(path, scopes=DIRECTORY_SCOPES)
        else:
            raise RuntimeError("Directory lookups require a service account JSON or file path.")
        return cls(creds, subject=subject)

    def _directory(self):
        with self._lock:
            if self._service is None:
                self._service = build("admin", "directory_v1", credentials=self._credentials,
                                      cache_discovery=False)
            return self._service

    def resolve(self, email: str) -> Optional[str]:
        try:
            user = self._directory().users().get(userKey=email, projection="basic").execute()
        except HttpError as exc:
            if exc.resp.status == 404:
                return None
            raise
        photo = user.get("thumbnailPhotoUrl")
        if not photo:
            return None
        return photo.replace(_SMALL_PHOTO, _LARGE_PHOTO)


def build_avatar_resolver(config: Mapping[str, Any]) -> AvatarResolver:
    """Pick a resolver from application config.

    Without service-account credentials every lookup returns ``None`` and
    the terminal shows the placeholder image.
    """
    raw = config.get("GOOGLE_SERVICE_ACCOUNT_JSON")
    path = config.get("GOOGLE_SERVICE_ACCOUNT_FILE")
    if not raw and not path:
        return NullAvatarResolver()
    info = json.loads(raw) if raw else None
    resolver = DirectoryAvatarResolver.from_service_account(
        info=info, path=path, subject=config.get("GOOGLE_DIRECTORY_SUBJECT")
    )
    _logger.info("directory avatar lookups enabled")
    return resolver


__all__ = [
    "AvatarResolver",
    "DirectoryAvatarResolver",
    "NullAvatarResolver",
    "build_avatar_resolver",
]
