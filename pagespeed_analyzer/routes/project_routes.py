# pagespeed_analyzer/routes/project_routes.py
"""Projects -> applications -> environments registry that feeds URLs to /api/analyze."""
from flask import Blueprint, jsonify, request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from pagespeed_analyzer.errors import NotFoundError, StorageError, ValidationError
from pagespeed_analyzer.models import db
from pagespeed_analyzer.models.project import Application, Environment, Project
from pagespeed_analyzer.services.submitter import is_absolute_url

bp = Blueprint("projects", __name__, url_prefix="/api")


# --- helpers ---

def _body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _text(data: dict, key: str, required: bool = False):
    value = data.get(key)
    if value is None:
        if required:
            raise ValidationError(f"Missing '{key}'", details={"field": key})
        return None
    if not isinstance(value, str) or (required and not value.strip()):
        raise ValidationError(f"'{key}' must be a non-empty string", details={"field": key})
    return value.strip()


def _url(data: dict, required: bool = False):
    value = _text(data, "url", required=required)
    if value is not None and not is_absolute_url(value):
        raise ValidationError("'url' must be an absolute http(s) URL", details={"field": "url"})
    return value


def _get_or_404(model, obj_id: int, label: str):
    obj = db.session.get(model, obj_id)
    if obj is None:
        raise NotFoundError(f"{label} not found", details={"id": obj_id})
    return obj


def _commit():
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError("Could not save changes", details=str(e)) from e


def _apply(obj, data: dict, fields: dict):
    """fields: json key -> (attribute, parser, nullable)"""
    for key, (attr, parse, nullable) in fields.items():
        if key not in data:
            continue
        if data[key] is None:
            if not nullable:
                raise ValidationError(f"'{key}' cannot be null", details={"field": key})
            setattr(obj, attr, None)
            continue
        setattr(obj, attr, parse(data))


def _bool(key: str):
    def parse(data: dict):
        value = data.get(key)
        if not isinstance(value, bool):
            raise ValidationError(f"'{key}' must be a boolean", details={"field": key})
        return value
    return parse


PROJECT_FIELDS = {
    "name": ("name", lambda d: _text(d, "name", required=True), False),
    "description": ("description", lambda d: _text(d, "description"), True),
}
APPLICATION_FIELDS = PROJECT_FIELDS
ENVIRONMENT_FIELDS = {
    "name": ("name", lambda d: _text(d, "name", required=True), False),
    "displayName": ("display_name", lambda d: _text(d, "displayName", required=True), False),
    "url": ("url", lambda d: _url(d, required=True), False),
    "description": ("description", lambda d: _text(d, "description"), True),
    "isActive": ("is_active", _bool("isActive"), False),
}


# --- projects ---

@bp.get("/projects")
def list_projects():
    """
    Projects: list, newest first
    ---
    tags: [Projects]
    responses:
      200: {description: OK}
    """
    projects = db.session.execute(
        select(Project).order_by(Project.created_at.desc(), Project.id.desc())
    ).scalars()
    return jsonify([p.to_dict() for p in projects]), 200


@bp.post("/projects")
def create_project():
    """
    Projects: create
    ---
    tags: [Projects]
    consumes: [application/json]
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [name]
          properties:
            name: {type: string, example: "Shop"}
            description: {type: string}
    responses:
      201: {description: Created}
      400: {description: Invalid body}
    """
    data = _body()
    project = Project(name=_text(data, "name", required=True), description=_text(data, "description"))
    db.session.add(project)
    _commit()
    return jsonify(project.to_dict()), 201


@bp.get("/projects/<int:project_id>")
def get_project(project_id: int):
    """
    Projects: detail with applications and environments
    ---
    tags: [Projects]
    parameters:
      - {in: path, name: project_id, required: true, type: integer}
    responses:
      200: {description: OK}
      404: {description: Not found}
    """
    return jsonify(_get_or_404(Project, project_id, "Project").to_dict(nested=True)), 200


@bp.patch("/projects/<int:project_id>")
def update_project(project_id: int):
    """
    Projects: partial update
    ---
    tags: [Projects]
    parameters:
      - {in: path, name: project_id, required: true, type: integer}
    responses:
      200: {description: OK}
      400: {description: Invalid body}
      404: {description: Not found}
    """
    project = _get_or_404(Project, project_id, "Project")
    _apply(project, _body(), PROJECT_FIELDS)
    _commit()
    return jsonify(project.to_dict()), 200


@bp.delete("/projects/<int:project_id>")
def delete_project(project_id: int):
    """
    Projects: delete (cascades to applications and environments)
    ---
    tags: [Projects]
    parameters:
      - {in: path, name: project_id, required: true, type: integer}
    responses:
      204: {description: Deleted}
      404: {description: Not found}
    """
    db.session.delete(_get_or_404(Project, project_id, "Project"))
    _commit()
    return "", 204


@bp.get("/project-structure")
def project_structure():
    """
    Projects: full tree projects -> applications -> environments
    ---
    tags: [Projects]
    responses:
      200: {description: OK}
    """
    projects = db.session.execute(select(Project).order_by(Project.id)).scalars()
    return jsonify([p.to_dict(nested=True) for p in projects]), 200


# --- applications ---

@bp.get("/projects/<int:project_id>/applications")
def list_applications(project_id: int):
    """
    Applications: list for a project
    ---
    tags: [Applications]
    parameters:
      - {in: path, name: project_id, required: true, type: integer}
    responses:
      200: {description: OK}
      404: {description: Project not found}
    """
    _get_or_404(Project, project_id, "Project")
    apps = db.session.execute(
        select(Application)
        .where(Application.project_id == project_id)
        .order_by(Application.created_at.desc(), Application.id.desc())
    ).scalars()
    return jsonify([a.to_dict() for a in apps]), 200


@bp.post("/projects/<int:project_id>/applications")
def create_application(project_id: int):
    """
    Applications: create inside a project
    ---
    tags: [Applications]
    consumes: [application/json]
    parameters:
      - {in: path, name: project_id, required: true, type: integer}
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [name]
          properties:
            name: {type: string, example: "Storefront"}
            description: {type: string}
    responses:
      201: {description: Created}
      400: {description: Invalid body}
      404: {description: Project not found}
    """
    _get_or_404(Project, project_id, "Project")
    data = _body()
    application = Application(
        project_id=project_id,
        name=_text(data, "name", required=True),
        description=_text(data, "description"),
    )
    db.session.add(application)
    _commit()
    return jsonify(application.to_dict()), 201


@bp.get("/applications/<int:application_id>")
def get_application(application_id: int):
    """
    Applications: detail with environments
    ---
    tags: [Applications]
    parameters:
      - {in: path, name: application_id, required: true, type: integer}
    responses:
      200: {description: OK}
      404: {description: Not found}
    """
    return jsonify(_get_or_404(Application, application_id, "Application").to_dict(nested=True)), 200


@bp.patch("/applications/<int:application_id>")
def update_application(application_id: int):
    """
    Applications: partial update
    ---
    tags: [Applications]
    parameters:
      - {in: path, name: application_id, required: true, type: integer}
    responses:
      200: {description: OK}
      404: {description: Not found}
    """
    application = _get_or_404(Application, application_id, "Application")
    _apply(application, _body(), APPLICATION_FIELDS)
    _commit()
    return jsonify(application.to_dict()), 200


@bp.delete("/applications/<int:application_id>")
def delete_application(application_id: int):
    """
    Applications: delete (cascades to environments)
    ---
    tags: [Applications]
    parameters:
      - {in: path, name: application_id, required: true, type: integer}
    responses:
      204: {description: Deleted}
      404: {description: Not found}
    """
    db.session.delete(_get_or_404(Application, application_id, "Application"))
    _commit()
    return "", 204


# --- environments ---

@bp.get("/applications/<int:application_id>/environments")
def list_environments(application_id: int):
    """
    Environments: list for an application
    ---
    tags: [Environments]
    parameters:
      - {in: path, name: application_id, required: true, type: integer}
    responses:
      200: {description: OK}
      404: {description: Application not found}
    """
    _get_or_404(Application, application_id, "Application")
    envs = db.session.execute(
        select(Environment)
        .where(Environment.application_id == application_id)
        .order_by(Environment.created_at.desc(), Environment.id.desc())
    ).scalars()
    return jsonify([e.to_dict() for e in envs]), 200


@bp.post("/applications/<int:application_id>/environments")
def create_environment(application_id: int):
    """
    Environments: create inside an application
    ---
    tags: [Environments]
    consumes: [application/json]
    parameters:
      - {in: path, name: application_id, required: true, type: integer}
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [name, displayName, url]
          properties:
            name: {type: string, example: "prod"}
            displayName: {type: string, example: "Production"}
            url: {type: string, example: "https://example.com"}
            description: {type: string}
            isActive: {type: boolean, default: true}
    responses:
      201: {description: Created}
      400: {description: Invalid body}
      404: {description: Application not found}
    """
    _get_or_404(Application, application_id, "Application")
    data = _body()
    is_active = _bool("isActive")(data) if "isActive" in data else True
    environment = Environment(
        application_id=application_id,
        name=_text(data, "name", required=True),
        display_name=_text(data, "displayName", required=True),
        url=_url(data, required=True),
        description=_text(data, "description"),
        is_active=is_active,
    )
    db.session.add(environment)
    _commit()
    return jsonify(environment.to_dict()), 201


@bp.get("/environments/<int:environment_id>")
def get_environment(environment_id: int):
    """
    Environments: detail
    ---
    tags: [Environments]
    parameters:
      - {in: path, name: environment_id, required: true, type: integer}
    responses:
      200: {description: OK}
      404: {description: Not found}
    """
    return jsonify(_get_or_404(Environment, environment_id, "Environment").to_dict()), 200


@bp.patch("/environments/<int:environment_id>")
def update_environment(environment_id: int):
    """
    Environments: partial update
    ---
    tags: [Environments]
    parameters:
      - {in: path, name: environment_id, required: true, type: integer}
    responses:
      200: {description: OK}
      400: {description: Invalid body}
      404: {description: Not found}
    """
    environment = _get_or_404(Environment, environment_id, "Environment")
    _apply(environment, _body(), ENVIRONMENT_FIELDS)
    _commit()
    return jsonify(environment.to_dict()), 200


@bp.delete("/environments/<int:environment_id>")
def delete_environment(environment_id: int):
    """
    Environments: delete
    ---
    tags: [Environments]
    parameters:
      - {in: path, name: environment_id, required: true, type: integer}
    responses:
      204: {description: Deleted}
      404: {description: Not found}
    """
    db.session.delete(_get_or_404(Environment, environment_id, "Environment"))
    _commit()
    return "", 204
