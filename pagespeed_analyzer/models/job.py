from datetime import datetime

from pagespeed_analyzer.models import db
from pagespeed_analyzer.models.types import JSONBCompat


class JobStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = frozenset({COMPLETED, FAILED})
    ALL = frozenset({PENDING, COMPLETED, FAILED})


def _iso(dt):
    return dt.replace(microsecond=0).isoformat() + "Z" if dt else None


class AnalysisJob(db.Model):
    __tablename__ = "analysis_jobs"
    __table_args__ = {"sqlite_autoincrement": True}  # ids are never reused

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.String(64), index=True, nullable=True)
    url = db.Column(db.Text, nullable=False)
    device = db.Column(db.String(16), nullable=False, default="desktop")
    status = db.Column(db.String(20), nullable=False, default=JobStatus.PENDING, index=True)
    result = db.Column(JSONBCompat(), nullable=True)          # only when completed
    error_message = db.Column(db.Text, nullable=True)         # only when failed

    # optional provenance from the project registry
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    application_id = db.Column(db.Integer, db.ForeignKey("applications.id", ondelete="SET NULL"), nullable=True)
    environment_id = db.Column(db.Integer, db.ForeignKey("environments.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "input": {"url": self.url, "device": self.device},
            "status": self.status,
            "projectId": self.project_id,
            "applicationId": self.application_id,
            "environmentId": self.environment_id,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "completedAt": _iso(self.completed_at),
        }
        if self.status == JobStatus.COMPLETED:
            data["result"] = self.result
        elif self.status == JobStatus.FAILED:
            data["errorMessage"] = self.error_message
        return data

    def __repr__(self):
        return f"<AnalysisJob {self.id} {self.status} {self.url}>"
