"""
Ritual templates: reusable blueprints that can be turned into a ritual.
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Callable, List, Optional

from sqlalchemy import or_, select, update

from ritual_engine.db import Database
from ritual_engine.errors import Unauthorized, ValidationError
from ritual_engine.models import RitualCategory, RitualTemplate, utcnow
from ritual_engine.schema.response import RitualRead, RitualTemplateRead
from ritual_engine.services.authorization import authorize_template
from ritual_engine.services.ritual_service import build_ritual, to_ritual_read
from ritual_engine.services.validation import validate_ritual_draft, validate_template_draft

logger = logging.getLogger("ritual_engine")


def template_defaults(template: RitualTemplate) -> dict:
    """Ritual draft fields a template contributes before customization."""
    return {
        "name": template.name,
        "description": template.description,
        "category": RitualCategory(template.category).value,
        "type": "routine",
        "frequency": "daily",
        "duration_minutes": template.estimated_duration,
        "difficulty_level": template.difficulty_level,
        "tags": list(template.tags),
        "reminder_enabled": False,
        "steps": [dict(step) for step in template.steps],
    }


class TemplateService:
    def __init__(self, db: Database, *, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def list_templates(
        self, requester_id: str, category: Optional[str] = None
    ) -> List[RitualTemplateRead]:
        """Public templates plus the requester's own, most popular first."""
        if not requester_id:
            raise Unauthorized("Authentication required", authenticated=False)
        stmt = select(RitualTemplate).where(
            or_(RitualTemplate.is_public.is_(True), RitualTemplate.created_by == requester_id)
        )
        if category is not None:
            try:
                stmt = stmt.where(RitualTemplate.category == RitualCategory(category))
            except ValueError:
                raise ValidationError("category", f"unknown category {category!r}") from None
        stmt = stmt.order_by(RitualTemplate.popularity_score.desc(), RitualTemplate.created_at.desc())

        async with self.db.session() as session:
            templates = (await session.scalars(stmt)).all()
        return [RitualTemplateRead.model_validate(t) for t in templates]

    async def create_template(self, owner_id: str, raw: Any) -> RitualTemplateRead:
        if not owner_id:
            raise Unauthorized("Authentication required", authenticated=False)
        draft = validate_template_draft(raw)
        steps = sorted(draft.steps, key=lambda s: s.order)
        template = RitualTemplate(
            created_by=owner_id,
            created_at=self.clock(),
            steps=[s.model_dump(mode="json") for s in steps],
            **draft.model_dump(exclude={"steps"}),
        )
        async with self.db.session() as session:
            session.add(template)
        logger.info("ritual_template_created", extra={"template_id": template.id, "public": template.is_public})
        return RitualTemplateRead.model_validate(template)

    async def instantiate(
        self, template_id: str, requester_id: str, customizations: Any = None
    ) -> RitualRead:
        """
        Create a ritual (with steps) from a template in one transaction and
        bump the template's popularity.
        """
        if customizations is not None and not isinstance(customizations, Mapping):
            raise ValidationError("body", "expected a JSON object")
        async with self.db.session() as session:
            template = await authorize_template(session, template_id, requester_id)
            raw = template_defaults(template)
            raw.update(customizations or {})
            draft = validate_ritual_draft(raw)

            now = self.clock()
            ritual, steps = build_ritual(requester_id, draft, now)
            session.add(ritual)
            session.add_all(steps)
            await session.execute(
                update(RitualTemplate)
                .where(RitualTemplate.id == template.id)
                .values(popularity_score=RitualTemplate.popularity_score + 1)
                .execution_options(synchronize_session=False)
            )

        logger.info(
            "ritual_created_from_template",
            extra={"template_id": template_id, "ritual_id": ritual.id, "user_id": requester_id},
        )
        return to_ritual_read(ritual, steps, now)
