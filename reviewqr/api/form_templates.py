"""
Form template routes.

- GET    /api/form-templates: The business's templates
- POST   /api/form-templates: Create (field count capped by plan)
- GET    /api/form-templates/public/{businessId}: Active template for the public form (no auth)
- GET    /api/form-templates/{id}
- PUT    /api/form-templates/{id}
- PUT    /api/form-templates/{id}/activate
- DELETE /api/form-templates/{id}
"""

from fastapi import APIRouter, Depends, Query

from reviewqr.api.deps import get_current_business
from reviewqr.core.auth import get_current_user_id
from reviewqr.features.form_templates.service import (
    activate_form_template,
    create_form_template,
    delete_form_template,
    get_form_template,
    get_public_form,
    list_form_templates,
    update_form_template,
)
from reviewqr.models.business import Business
from reviewqr.models.form_template import FormTemplateInput, FormTemplateUpdate

router = APIRouter(prefix="/api/form-templates", tags=["form-templates"])


@router.get("")
def list_templates(business: Business = Depends(get_current_business)):
    items = list_form_templates(business.id)
    return {"data": [template.model_dump(mode="json") for template in items], "count": len(items)}


@router.post("", status_code=201)
def create_template(
    body: FormTemplateInput,
    activate: bool = Query(False),
    business: Business = Depends(get_current_business),
):
    template = create_form_template(business.id, body, activate=activate)
    return {"data": template.model_dump(mode="json")}


@router.get("/public/{business_id}")
def public_form(business_id: str):
    return {"data": get_public_form(business_id)}


@router.get("/{template_id}")
def get_template(template_id: str, owner_id: str = Depends(get_current_user_id)):
    return {"data": get_form_template(template_id, owner_id).model_dump(mode="json")}


@router.put("/{template_id}")
def update_template(template_id: str, body: FormTemplateUpdate, owner_id: str = Depends(get_current_user_id)):
    return {"data": update_form_template(template_id, body, owner_id).model_dump(mode="json")}


@router.put("/{template_id}/activate")
def activate_template(template_id: str, owner_id: str = Depends(get_current_user_id)):
    template = activate_form_template(template_id, owner_id)
    return {"data": template.model_dump(mode="json"), "message": "Form template activated"}


@router.delete("/{template_id}")
def delete_template(template_id: str, owner_id: str = Depends(get_current_user_id)):
    delete_form_template(template_id, owner_id)
    return {"data": {"id": template_id, "deleted": True}}
