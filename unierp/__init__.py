import logging
import os
from datetime import date, datetime, timedelta
from decimal import Decimal
from logging.handlers import RotatingFileHandler

from flask import Flask
from flask.json.provider import DefaultJSONProvider

from . import db
from .config import Config
from .errors import ok, register_error_handlers


class ErpJSONProvider(DefaultJSONProvider):
    """JSON for MySQL row values: DATE/DATETIME, DECIMAL and TIME (timedelta)."""

    @staticmethod
    def default(o):
        if isinstance(o, (date, datetime)):
            return o.isoformat()
        if isinstance(o, Decimal):
            return float(o)
        if isinstance(o, timedelta):
            minutes = int(o.total_seconds() // 60)
            return f"{minutes // 60:02d}:{minutes % 60:02d}"
        return DefaultJSONProvider.default(o)


def configure_logging(app):
    level = getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO)
    logging.basicConfig(level=level)
    app.logger.setLevel(level)

    if app.config.get("LOG_FILE"):
        handler = RotatingFileHandler(app.config["LOG_FILE"], maxBytes=1_000_000, backupCount=3)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        logging.getLogger().addHandler(handler)


def create_app(test_config=None):
    app = Flask(__name__)
    app.json = ErpJSONProvider(app)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)
    configure_logging(app)

    db.init_app(app)
    register_error_handlers(app)

    from . import (approvals, attendance, auth, courses, dashboard, fees, grades, hostel,
                   messages, profile, timetable, users)
    for module in (auth, approvals, users, attendance, grades, fees, messages, courses,
                   timetable, hostel, profile, dashboard):
        app.register_blueprint(module.bp)

    @app.route("/")
    def index():
        return ok({"name": app.config["INSTITUTION_NAME"], "status": "ok"})

    return app
