"""Registration of patients, hospitals and ambulance drivers."""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import ValidationError

from repositories.dispatch import DispatchRepository, DuplicateUserError
from shared.http.errors import DispatchValidationError, ResourceNotFoundError
from shared.models.users import USER_ADAPTER, Identity, User
from shared.observability.audit import record_dispatch_audit
from shared.observability.logger import get_logger

__all__ = ["UserDirectory"]

logger = get_logger(__name__)


class UserDirectory:
    def __init__(self, repository: DispatchRepository) -> None:
        self._repository = repository

    async def register(self, payload: Mapping[str, Any]) -> User:
        """Validate a role-tagged registration body and store it."""

        try:
            user = USER_ADAPTER.validate_python(dict(payload))
        except ValidationError as exc:
            raise DispatchValidationError(
                "The registration payload is invalid.",
                errors=exc.errors(include_url=False, include_context=False),
            ) from exc

        try:
            stored = await self._repository.add_user(user)
        except DuplicateUserError as exc:
            raise DispatchValidationError(f"User '{user.id}' is already registered.", field="id") from exc

        logger.info("user_registered", user_id=stored.id, role=stored.role)
        await record_dispatch_audit(
            "user_registered",
            actor_id=stored.id,
            actor_role=stored.role,
            resource_id=stored.id,
        )
        return stored

    async def get(self, identity: Identity) -> User:
        user = await self._repository.get_user(identity.id)
        if user is None or user.role != identity.role.value:
            raise ResourceNotFoundError("user", identity.id)
        return user
