"""Request templates: saved item lists that become draft material requests."""

from __future__ import annotations

import json
import logging

from sqlalchemy.exc import IntegrityError

from .actors import Actor
from .errors import InvalidTransition, NotFound, PermissionDenied
from .models import MaterialRequest, RequestTemplate
from .repository import InventoryRepository
from .schemas import RequestCreate, RequestItemCreate, TemplateCreate, TemplateRequestCreate
from .workflow import RequestWorkflow

_LOGGER = logging.getLogger(__name__)


def template_items(template: RequestTemplate) -> list[RequestItemCreate]:
    return [RequestItemCreate.model_validate(line) for line in json.loads(template.items_json)]


class RequestTemplateLibrary:
    """Private templates are visible to their creator only; public ones to everybody."""

    def __init__(self, repository: InventoryRepository, workflow: RequestWorkflow) -> None:
        self.repository = repository
        self.session = repository.session
        self.workflow = workflow

    async def create_template(self, payload: TemplateCreate, actor: Actor) -> RequestTemplate:
        if await self.repository.find_template(actor.actor_id, payload.name) is not None:
            raise InvalidTransition(f"A template named {payload.name!r} already exists")
        items = [line.model_dump(mode="json", exclude_none=True) for line in payload.items]
        try:
            async with self.session.begin_nested():
                template = await self.repository.add_template(
                    name=payload.name,
                    description=payload.description,
                    category=payload.category,
                    items_json=json.dumps(items),
                    is_public=payload.is_public,
                    created_by=actor.actor_id,
                )
        except IntegrityError as exc:
            raise InvalidTransition(f"A template named {payload.name!r} already exists") from exc
        _LOGGER.info("Template %s (%r) saved by %s", template.id, template.name, actor.actor_id)
        return template

    async def get_template(self, template_id: int, actor: Actor) -> RequestTemplate:
        template = await self.repository.get_template(template_id)
        if template is None:
            raise NotFound(f"Request template {template_id} not found")
        if not template.is_public and template.created_by != actor.actor_id:
            raise PermissionDenied(f"Request template {template_id} is private")
        return template

    async def list_templates(
        self,
        actor: Actor,
        *,
        category: str | None = None,
        mine_only: bool = False,
    ) -> list[RequestTemplate]:
        return await self.repository.list_templates(visible_to=actor.actor_id, category=category, mine_only=mine_only)

    async def delete_template(self, template_id: int, actor: Actor) -> None:
        template = await self.repository.get_template(template_id)
        if template is None:
            raise NotFound(f"Request template {template_id} not found")
        if template.created_by != actor.actor_id and not actor.is_staff:
            raise PermissionDenied("Only the creator or staff can delete a template")
        await self.repository.delete_template(template)
        _LOGGER.info("Template %s deleted by %s", template_id, actor.actor_id)

    async def create_request(
        self,
        template_id: int,
        payload: TemplateRequestCreate,
        actor: Actor,
    ) -> MaterialRequest:
        """Open a draft request carrying the template's items."""

        template = await self.get_template(template_id, actor)
        request = RequestCreate(
            team_id=payload.team_id,
            title=payload.title or template.name,
            description=payload.description if payload.description is not None else template.description,
            priority=payload.priority,
            is_consumable_request=payload.is_consumable_request,
            requires_quick_approval=payload.requires_quick_approval,
            items=template_items(template),
            approval_chain=payload.approval_chain,
        )
        return await self.workflow.create_request(request, actor, notes=f"created from template {template.name!r}")
