"""Identity resolver — maps an external identity reference to a user."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from entitlement_engine.common.database import insert_if_absent
from entitlement_engine.common.exceptions import IdentityCreationError
from entitlement_engine.common.models import generate_uuid, utcnow
from entitlement_engine.identity.models import UserModel

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Finds or lazily creates the internal user for a purchase.

    Missing profile fields never block provisioning: an absent name becomes
    the configured placeholder and an absent email is stored empty.
    """

    def __init__(self, default_role: str = "student", default_name: str = "Customer"):
        self.default_role = default_role
        self.default_name = default_name

    async def get_by_external_ref(
        self, session: AsyncSession, external_ref: str,
    ) -> UserModel | None:
        result = await session.execute(
            select(UserModel).where(UserModel.external_ref == external_ref)
        )
        return result.scalar_one_or_none()

    async def resolve(
        self,
        session: AsyncSession,
        external_ref: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> UserModel:
        try:
            user = await self.get_by_external_ref(session, external_ref)
            if user is not None:
                return user

            now = utcnow()
            created = await insert_if_absent(
                session,
                UserModel,
                {
                    "id": generate_uuid(),
                    "external_ref": external_ref,
                    "tenant_id": tenant_id,
                    "name": name or self.default_name,
                    "email": email or "",
                    "role": self.default_role,
                    "is_active": True,
                    "created_at": now,
                    "updated_at": now,
                },
                conflict_column="external_ref",
            )
            user = await self.get_by_external_ref(session, external_ref)
        except SQLAlchemyError as exc:
            logger.exception("User lookup/creation failed", extra={"external_ref": external_ref})
            raise IdentityCreationError(f"Failed to resolve user '{external_ref}': {exc}") from exc

        if user is None:
            raise IdentityCreationError(f"User '{external_ref}' missing after create")
        if created:
            logger.info(
                "Created user",
                extra={"user_id": user.id, "external_ref": external_ref, "has_email": bool(email)},
            )
        return user
