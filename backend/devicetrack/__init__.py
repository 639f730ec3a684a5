# backend/devicetrack/__init__.py
from __future__ import annotations

import logging

from flask import Flask

from .config import Config
from .extensions import db


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)

    # Overrides must land before extensions build their engines
    if overrides:
        app.config.update(overrides)

    app.logger.setLevel(logging.getLevelName(str(app.config["LOG_LEVEL"]).upper()))

    # Initialize extensions
    db.init_app(app)

    # Import models so metadata is complete before create_all()
    from . import models  # noqa: F401

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
