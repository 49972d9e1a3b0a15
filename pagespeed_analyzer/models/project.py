from datetime import datetime

from pagespeed_analyzer.models import db


def _iso(dt):
    return dt.replace(microsecond=0).isoformat() + "Z" if dt else None


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    applications = db.relationship(
        "Application",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Application.id",
    )

    def to_dict(self, nested: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if nested:
            data["applications"] = [a.to_dict(nested=True) for a in self.applications]
        return data


class Application(db.Model):
    __tablename__ = "applications"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    project = db.relationship("Project", back_populates="applications")
    environments = db.relationship(
        "Environment",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="Environment.id",
    )

    def to_dict(self, nested: bool = False) -> dict:
        data = {
            "id": self.id,
            "projectId": self.project_id,
            "name": self.name,
            "description": self.description,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if nested:
            data["environments"] = [e.to_dict() for e in self.environments]
        return data


class Environment(db.Model):
    __tablename__ = "environments"

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.Integer, db.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(50), nullable=False)            # dev, staging, prod...
    display_name = db.Column(db.String(200), nullable=False)
    url = db.Column(db.Text, nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    application = db.relationship("Application", back_populates="environments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "applicationId": self.application_id,
            "name": self.name,
            "displayName": self.display_name,
            "url": self.url,
            "description": self.description,
            "isActive": self.is_active,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
