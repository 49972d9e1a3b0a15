# pagespeed_analyzer/models/__init__.py
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()


def init_app(app):
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)
    db.init_app(app)
    migrate.init_app(app, db)


# register models on the metadata
from .project import Project, Application, Environment  # noqa
from .job import AnalysisJob, JobStatus  # noqa

__all__ = ["db", "migrate", "Project", "Application", "Environment", "AnalysisJob", "JobStatus"]
