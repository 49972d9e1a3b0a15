from flask import Flask
from flasgger import Swagger
from prometheus_flask_exporter import PrometheusMetrics
from flask_cors import CORS
import os

from .logging_setup import setup_logging
from .errors import register_error_handlers
from .routes import analysis_routes, health, project_routes
from .config import DevelopmentConfig, ProductionConfig, TestingConfig

__version__ = "1.0.0"


def create_app(config_name: str = "development", overrides=None):
    app = Flask(__name__)

    config_map = {
        "development": DevelopmentConfig,
        "production": ProductionConfig,
        "testing": TestingConfig,
    }
    app.config.from_object(config_map.get(config_name.lower(), DevelopmentConfig))
    if overrides:
        app.config.update(overrides)

    setup_logging(app)

    # CORS_ORIGINS unset or '*' -> any origin; otherwise a comma-separated allow list
    cors_origin = os.getenv("CORS_ORIGINS", "*").strip()
    cors_common_kwargs = dict(
        supports_credentials=False,
        methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS", "HEAD"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "X-Requested-With",
            "X-Request-ID",
            "Accept",
            "Origin",
            "Cache-Control",
        ],
    )
    if cors_origin in ("*", ""):
        CORS(app, resources={r"/*": {"origins": "*"}}, **cors_common_kwargs)
    else:
        origins_list = [o.strip() for o in cors_origin.split(",") if o.strip()]
        CORS(app, resources={r"/*": {"origins": origins_list}}, **cors_common_kwargs)

    from .models import db, init_app as init_models
    from .services import dispatch, job_store

    init_models(app)
    job_store.init_app(app)
    dispatch.init_app(app)
    register_error_handlers(app)

    if app.config.get("AUTO_CREATE_TABLES"):
        with app.app_context():
            db.create_all()

    # Swagger
    swagger_template = {
        "swagger": "2.0",
        "info": {
            "title": "PageSpeed Analyzer API",
            "description": "Submit page analyses, poll their jobs and manage the projects they belong to.",
            "version": __version__,
        },
        "basePath": "/",
    }
    swagger_config = {
        "headers": [],
        "specs": [
            {
                "endpoint": "apispec_1",
                "route": "/apispec_1.json",
                "rule_filter": lambda rule: True,
                "model_filter": lambda tag: True,
            }
        ],
        "static_url_path": "/flasgger_static",
        "swagger_ui": True,
        "specs_route": "/apidocs/",
    }
    Swagger(app, template=swagger_template, config=swagger_config)

    # Blueprints
    app.register_blueprint(health.bp)
    app.register_blueprint(analysis_routes.bp)
    app.register_blueprint(project_routes.bp)

    # Metrics
    metrics = PrometheusMetrics(app, path="/metrics")
    metrics.info("app_info", "PageSpeed Analyzer service", version=__version__)

    return app
