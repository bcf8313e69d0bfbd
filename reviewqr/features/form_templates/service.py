"""
reviewqr/features/form_templates/service.py

Custom review-form templates.

Handles:
- CRUD for a business's templates, with the field count capped by the plan's
  customFormFields limit
- Activation: exactly one active template per business, switched in one UPDATE
- The public lookup of the active template
- Validation of submitted formData against the active template's fields
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import and_, case, delete, exists, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from reviewqr.core.clock import ensure_utc, normalize_now
from reviewqr.core.database import form_templates, get_db_session
from reviewqr.core.errors import NotFoundError, PersistenceError
from reviewqr.features.businesses.service import get_business, get_owned_business
from reviewqr.features.entitlements.service import require_capacity
from reviewqr.features.plans.service import PlanCatalog
from reviewqr.models.form_template import (
    FormField,
    FormFieldType,
    FormTemplate,
    FormTemplateInput,
    FormTemplateUpdate,
)
from reviewqr.models.plan import FeatureKey


logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 2000
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^\+?[0-9 ()\-.]{7,20}$")


def _row_to_template(row) -> FormTemplate:
    return FormTemplate(
        id=row.id,
        business_id=row.business_id,
        name=row.name,
        description=row.description,
        fields=[FormField(**field) for field in (row.fields or [])],
        settings=row.settings or {},
        is_active=bool(row.is_active),
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def _dump_fields(fields: List[FormField]) -> List[Dict[str, Any]]:
    return [field.model_dump(mode="json") for field in fields]


def _select_template(session, template_id: str):
    return session.execute(select(form_templates).where(form_templates.c.id == template_id)).first()


def get_form_template(template_id: str, owner_id: Optional[str] = None) -> FormTemplate:
    """Raises NotFoundError, or PermissionError when `owner_id` does not own the business."""
    with get_db_session() as session:
        row = _select_template(session, template_id)
    if row is None:
        raise NotFoundError(f"Form template {template_id} not found")
    if owner_id is not None:
        get_owned_business(row.business_id, owner_id)
    return _row_to_template(row)


def list_form_templates(business_id: str) -> List[FormTemplate]:
    with get_db_session() as session:
        rows = session.execute(
            select(form_templates)
            .where(form_templates.c.business_id == business_id)
            .order_by(form_templates.c.created_at.desc(), form_templates.c.id)
        ).all()
    return [_row_to_template(row) for row in rows]


def find_active_form_template(business_id: str) -> Optional[FormTemplate]:
    """Active template, or None (also for unknown businesses)."""
    with get_db_session() as session:
        row = session.execute(
            select(form_templates)
            .where(form_templates.c.business_id == business_id)
            .where(form_templates.c.is_active.is_(True))
        ).first()
    return _row_to_template(row) if row else None


def get_public_form(business_id: str) -> Dict[str, Any]:
    """What the customer-facing form needs. Raises NotFoundError for unknown businesses."""
    business = get_business(business_id)
    template = find_active_form_template(business_id)
    return {
        "business": {"id": business.id, "name": business.name, "businessType": business.business_type},
        "template": template.model_dump(mode="json") if template else None,
    }


def create_form_template(
    business_id: str,
    data: FormTemplateInput,
    owner_id: Optional[str] = None,
    *,
    activate: bool = False,
    catalog: Optional[PlanCatalog] = None,
    now: Optional[datetime] = None,
) -> FormTemplate:
    """
    Store a new template. It becomes active when `activate` is set or when
    the business has no active template yet.

    Raises:
        NotFoundError / PermissionError: business lookup
        EntitlementDeniedError: more fields than the plan's customFormFields
    """
    if owner_id is not None:
        get_owned_business(business_id, owner_id)
    else:
        get_business(business_id)
    require_capacity(business_id, FeatureKey.CUSTOM_FORM_FIELDS, len(data.fields), catalog=catalog, now=now)

    current = normalize_now(now)
    template_id = str(uuid4())
    try:
        with get_db_session() as session:
            if activate:
                session.execute(
                    update(form_templates)
                    .where(form_templates.c.business_id == business_id)
                    .where(form_templates.c.is_active.is_(True))
                    .values(is_active=False, updated_at=current)
                )
            session.execute(
                insert(form_templates).values(
                    id=template_id,
                    business_id=business_id,
                    name=data.name.strip(),
                    description=data.description,
                    fields=_dump_fields(data.fields),
                    settings=data.settings or {},
                    is_active=activate,
                    created_at=current,
                    updated_at=current,
                )
            )
            if not activate:
                # First template of a business is active by default
                others = form_templates.alias("others")
                other_active = exists().where(
                    and_(
                        others.c.business_id == business_id,
                        others.c.is_active.is_(True),
                        others.c.id != template_id,
                    )
                )
                session.execute(
                    update(form_templates)
                    .where(form_templates.c.id == template_id)
                    .where(~other_active)
                    .values(is_active=True)
                )
            row = _select_template(session, template_id)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to create form template: {exc}") from exc

    logger.info(
        "[forms] created",
        extra={"business_id": business_id, "template_id": template_id, "field_count": len(data.fields)},
    )
    return _row_to_template(row)


def update_form_template(
    template_id: str,
    changes: FormTemplateUpdate,
    owner_id: Optional[str] = None,
    *,
    catalog: Optional[PlanCatalog] = None,
    now: Optional[datetime] = None,
) -> FormTemplate:
    """Apply a partial update. A new `fields` list is checked against the plan cap."""
    existing = get_form_template(template_id, owner_id)
    provided = changes.model_dump(exclude_unset=True, exclude_none=True)

    values: Dict[str, Any] = {}
    if "name" in provided:
        values["name"] = provided["name"].strip()
    if "description" in provided:
        values["description"] = provided["description"]
    if "settings" in provided:
        values["settings"] = provided["settings"]
    if changes.fields is not None:
        require_capacity(
            existing.business_id,
            FeatureKey.CUSTOM_FORM_FIELDS,
            len(changes.fields),
            catalog=catalog,
            now=now,
        )
        values["fields"] = _dump_fields(changes.fields)

    if not values:
        return existing

    values["updated_at"] = normalize_now(now)
    try:
        with get_db_session() as session:
            session.execute(update(form_templates).where(form_templates.c.id == template_id).values(**values))
            row = _select_template(session, template_id)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to update form template: {exc}") from exc

    logger.info("[forms] updated", extra={"template_id": template_id})
    return _row_to_template(row)


def activate_form_template(
    template_id: str,
    owner_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> FormTemplate:
    """Make this the business's only active template."""
    existing = get_form_template(template_id, owner_id)
    current = normalize_now(now)
    try:
        with get_db_session() as session:
            session.execute(
                update(form_templates)
                .where(form_templates.c.business_id == existing.business_id)
                .values(
                    is_active=case((form_templates.c.id == template_id, True), else_=False),
                    updated_at=current,
                )
            )
            row = _select_template(session, template_id)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to activate form template: {exc}") from exc

    if row is None:
        raise NotFoundError(f"Form template {template_id} not found")
    logger.info("[forms] activated", extra={"business_id": existing.business_id, "template_id": template_id})
    return _row_to_template(row)


def delete_form_template(template_id: str, owner_id: Optional[str] = None) -> None:
    """Remove a template. Deleting the active one leaves the business without custom fields."""
    get_form_template(template_id, owner_id)
    try:
        with get_db_session() as session:
            session.execute(delete(form_templates).where(form_templates.c.id == template_id))
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to delete form template: {exc}") from exc
    logger.info("[forms] deleted", extra={"template_id": template_id})


def _field_error(field: FormField, value: Any) -> Optional[str]:
    if field.type in (FormFieldType.TEXT, FormFieldType.TEXTAREA):
        if not isinstance(value, str):
            return "must be text"
        if len(value) > MAX_TEXT_LENGTH:
            return f"must be at most {MAX_TEXT_LENGTH} characters"
    elif field.type == FormFieldType.EMAIL:
        if not isinstance(value, str) or not EMAIL_PATTERN.match(value.strip()):
            return "must be a valid email address"
    elif field.type == FormFieldType.PHONE:
        if not isinstance(value, str) or not PHONE_PATTERN.match(value.strip()):
            return "must be a valid phone number"
    elif field.type == FormFieldType.NUMBER:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return "must be a number"
    elif field.type == FormFieldType.SELECT:
        if value not in (field.options or []):
            return f"must be one of {', '.join(field.options or [])}"
    elif field.type == FormFieldType.CHECKBOX:
        if not isinstance(value, bool):
            return "must be true or false"
    elif field.type == FormFieldType.RATING:
        if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
            return "must be an integer between 1 and 5"
    return None


def validate_form_data(template: Optional[FormTemplate], form_data: Any) -> List[str]:
    """
    One message per problem with `form_data` under `template`.

    Without a template nothing is checked.
    """
    if template is None:
        return []
    if form_data is None:
        form_data = {}
    if not isinstance(form_data, dict):
        return ["formData: must be an object"]

    errors = []
    known = {field.key for field in template.fields}
    for key in form_data:
        if key not in known:
            errors.append(f"formData.{key}: not a field of this form")

    for field in template.fields:
        value = form_data.get(field.key)
        if value is None or (isinstance(value, str) and not value.strip()):
            if field.required:
                errors.append(f"formData.{field.key}: required")
            continue
        problem = _field_error(field, value)
        if problem:
            errors.append(f"formData.{field.key}: {problem}")
    return errors
