"""Application-wide Flask extensions."""

from flask_sqlalchemy import SQLAlchemy


# A single SQLAlchemy handle shared across the application. The engine is
# configured in :func:`aquadaily.create_app` and only used when
# ``STORAGE_BACKEND=database``.
db = SQLAlchemy()
