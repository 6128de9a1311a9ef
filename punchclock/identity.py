import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class Identity:
    """Caller identity as resolved by the authentication gateway."""

    tenant_id: uuid.UUID
    user_id: uuid.UUID
