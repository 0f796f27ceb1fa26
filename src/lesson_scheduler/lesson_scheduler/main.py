from __future__ import annotations

import importlib
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask

from config import get_settings_module

from .common.logging_setup import configure_logging
from .container import build_container
from .core.constants import DEFAULT_LOCK_TIMEOUT_SECONDS, DEFAULT_READ_ATTEMPTS
from .database.bootstrap import apply_schema, apply_seed_sql, list_tables
from .slots.controller import register as register_slots


def create_app() -> Flask:
    load_dotenv(override=False)
    app = Flask(__name__)

    settings_module = get_settings_module()
    settings = importlib.import_module(settings_module)
    db_config = getattr(settings, "DB_CONFIG")
    app.config["DEBUG"] = bool(getattr(settings, "DEBUG", False))
    app.config["TESTING"] = bool(getattr(settings, "TESTING", False))
    app.config["ENFORCE_NO_CONFLICT"] = bool(getattr(settings, "ENFORCE_NO_CONFLICT", False))

    logger = configure_logging(
        level=getattr(settings, "LOG_LEVEL", "INFO"),
        log_file=getattr(settings, "LOG_FILE", None),
    )

    # Helpful startup info to avoid "connected but no tables" confusion.
    logger.info(
        "settings=%s db=%s@%s:%s/%s",
        settings_module,
        db_config.get("user"),
        db_config.get("host"),
        db_config.get("port", 3306),
        db_config.get("database"),
    )

    database_dir = Path(__file__).resolve().parents[3] / "database"
    if bool(getattr(settings, "AUTO_INIT_DB", False)):
        apply_schema(db_config, schema_path=database_dir / "schema.sql")
        logger.info("schema ready (tables=%d)", len(list_tables(db_config)))
    if bool(getattr(settings, "AUTO_SEED_DB", False)):
        apply_seed_sql(db_config, seed_path=database_dir / "seed.sql")
        logger.info("demo seed ready")

    container = build_container(
        db_config=db_config,
        lock_timeout_seconds=int(getattr(settings, "ADVISORY_LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT_SECONDS)),
        read_attempts=int(getattr(settings, "READ_ATTEMPTS", DEFAULT_READ_ATTEMPTS)),
    )
    app.extensions["lesson_scheduler"] = container

    register_slots(app, container)

    return app
