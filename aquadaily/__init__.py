"""Flask application factory."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from flask import Flask

from .config import Settings, load_settings
from .extensions import db
from .services.ai_service import InsightService
from .services.hydration_store import HydrationStore
from .services.storage_service import DatabaseStorage, KeyValueStorage, MemoryStorage, StorageService

logger = logging.getLogger(__name__)


def build_storage(settings: Settings) -> KeyValueStorage:
    """Return the backing storage selected by ``STORAGE_BACKEND``."""

    if settings.storage_backend == 'database':
        return DatabaseStorage()
    if settings.storage_backend == 'memory':
        return MemoryStorage()
    return StorageService(settings.data_dir, redis_url=settings.redis_url)


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[KeyValueStorage] = None,
    insight_service: Optional[InsightService] = None,
) -> Flask:
    """Configure and return the Flask application.

    ``storage`` and ``insight_service`` override what ``settings`` would build,
    which is how tests inject in-memory storage and fake Gemini clients.
    """

    settings = settings or load_settings()

    app = Flask(__name__)
    app.config['SECRET_KEY'] = settings.secret_key
    app.config['SESSION_TOKEN_SECRET'] = settings.token_secret

    database_uri = settings.database_uri
    if not database_uri:
        if settings.storage_backend == 'database' and settings.is_production:
            raise RuntimeError('DATABASE_URL is required in production when STORAGE_BACKEND=database.')
        default_sqlite_path = Path(app.instance_path) / 'aquadaily.db'
        default_sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        database_uri = f'sqlite:///{default_sqlite_path}'

    app.config['SQLALCHEMY_DATABASE_URI'] = database_uri
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {'pool_pre_ping': True}
    app.config.setdefault('SQLALCHEMY_TRACK_MODIFICATIONS', False)

    # Ensure models are registered with SQLAlchemy before any table creation.
    from . import models  # noqa: F401

    db.init_app(app)

    storage = storage if storage is not None else build_storage(settings)
    app.hydration_store = HydrationStore(
        storage,
        settings.token_secret,
        tz=settings.local_timezone,
        session_lifetime=settings.session_lifetime,
    )
    app.insight_service = insight_service or InsightService(storage, api_key=settings.gemini_api_key)

    with app.app_context():
        if isinstance(storage, DatabaseStorage):
            db.create_all()
        app.hydration_store.seed()

    from .routes import main_bp

    app.register_blueprint(main_bp)

    settings.log_status()
    return app
