"""Application configuration module.

Settings are read from environment variables, with a local ``.env`` file
loaded first when present. Hosted Postgres providers still hand out
``postgres://`` URLs while SQLAlchemy only understands ``postgresql://``, so
the prefix is normalised here. Without a ``DATABASE_URL`` the application
falls back to a local SQLite file.
"""

import os
from datetime import datetime, timezone

from dotenv import load_dotenv


def utc_now() -> datetime:
    """Return the current UTC instant as a naive ``datetime``.

    All timestamps are stored naive-in-UTC so SQLite and Postgres compare
    them the same way.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Config:
    """Base configuration class.

    Flask-SQLAlchemy reads ``SQLALCHEMY_DATABASE_URI`` from here. The
    ``CLOCK`` entry is the single source of "now" for the eligibility and
    dashboard code; tests replace it with a frozen callable.
    """

    load_dotenv()

    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-this-secret-in-prod')

    _db_url = os.environ.get('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)
    SQLALCHEMY_DATABASE_URI = _db_url or 'sqlite:///mealtracker.db'

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    CLOCK = staticmethod(utc_now)

    # Shown on the kitchen terminal when no profile photo can be resolved.
    AVATAR_PLACEHOLDER_URL = os.environ.get('AVATAR_PLACEHOLDER_URL', '/person-placeholder.jpg')

    # Google Admin Directory lookups for student photos. Either the raw JSON
    # or a path to the service account key; the subject is the domain admin
    # the service account impersonates.
    GOOGLE_SERVICE_ACCOUNT_JSON = os.environ.get('GOOGLE_SERVICE_ACCOUNT_JSON')
    GOOGLE_SERVICE_ACCOUNT_FILE = os.environ.get('GOOGLE_SERVICE_ACCOUNT_FILE')
    GOOGLE_DIRECTORY_SUBJECT = os.environ.get('GOOGLE_DIRECTORY_SUBJECT')

    STUDENT_EMAIL_DOMAIN = os.environ.get('STUDENT_EMAIL_DOMAIN', 'student.laverdad.edu.ph')
    ADMIN_EMAIL_DOMAIN = os.environ.get('ADMIN_EMAIL_DOMAIN', 'laverdad.edu.ph')

    DEFAULT_PAGE_SIZE = int(os.environ.get('DEFAULT_PAGE_SIZE', 10))
