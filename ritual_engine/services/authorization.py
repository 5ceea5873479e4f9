"""
Ownership checks. Called before any business-field validation so a foreign
caller cannot tell a missing ritual from somebody else's.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ritual_engine.errors import Unauthorized
from ritual_engine.models import Ritual, RitualTemplate

logger = logging.getLogger("ritual_engine")


async def authorize_ritual(session: AsyncSession, ritual_id: str, requester_id: str) -> Ritual:
    if not requester_id:
        raise Unauthorized("Authentication required", authenticated=False)
    ritual = await session.get(Ritual, ritual_id)
    if ritual is None or ritual.user_id != requester_id:
        logger.info(
            "ritual_access_denied",
            extra={"ritual_id": ritual_id, "requester_id": requester_id},
        )
        raise Unauthorized()
    return ritual


async def authorize_template(
    session: AsyncSession, template_id: str, requester_id: str
) -> RitualTemplate:
    if not requester_id:
        raise Unauthorized("Authentication required", authenticated=False)
    template = await session.get(RitualTemplate, template_id)
    if template is None or not (template.is_public or template.created_by == requester_id):
        raise Unauthorized()
    return template
