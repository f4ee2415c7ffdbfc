"""Request template HTTP endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from ..actors import Actor
from ..dependencies import get_actor, get_template_library
from ..models import RequestTemplate
from ..schemas import RequestResponse, TemplateCreate, TemplateRequestCreate, TemplateResponse
from ..templates import RequestTemplateLibrary, template_items
from .requests import _serialize_request

router = APIRouter(prefix="/request-templates", tags=["request-templates"])


def _serialize_template(template: RequestTemplate) -> TemplateResponse:
    return TemplateResponse(
        id=template.id,
        name=template.name,
        description=template.description,
        category=template.category,
        items=template_items(template),
        is_public=template.is_public,
        created_by=template.created_by,
        created_at=template.created_at,
        updated_at=template.updated_at,
    )


@router.post("", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    payload: TemplateCreate,
    actor: Actor = Depends(get_actor),
    library: RequestTemplateLibrary = Depends(get_template_library),
) -> TemplateResponse:
    return _serialize_template(await library.create_template(payload, actor))


@router.get("", response_model=list[TemplateResponse])
async def list_templates(
    category: str | None = Query(default=None),
    mine: bool = Query(default=False),
    actor: Actor = Depends(get_actor),
    library: RequestTemplateLibrary = Depends(get_template_library),
) -> list[TemplateResponse]:
    templates = await library.list_templates(actor, category=category, mine_only=mine)
    return [_serialize_template(template) for template in templates]


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: int,
    actor: Actor = Depends(get_actor),
    library: RequestTemplateLibrary = Depends(get_template_library),
) -> TemplateResponse:
    return _serialize_template(await library.get_template(template_id, actor))


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: int,
    actor: Actor = Depends(get_actor),
    library: RequestTemplateLibrary = Depends(get_template_library),
) -> Response:
    await library.delete_template(template_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{template_id}/requests", response_model=RequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request_from_template(
    template_id: int,
    payload: TemplateRequestCreate,
    actor: Actor = Depends(get_actor),
    library: RequestTemplateLibrary = Depends(get_template_library),
) -> RequestResponse:
    request = await library.create_request(template_id, payload, actor)
    return _serialize_request(await library.workflow.get_request(request.id))
