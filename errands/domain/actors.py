"""
Authenticated caller identity as seen by the domain services.
"""
import enum
from dataclasses import dataclass

from errands.core.exceptions import ForbiddenError


class ActorRole(str, enum.Enum):
    CUSTOMER = "customer"
    RUNNER = "runner"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def is_runner(self) -> bool:
        return self.role == ActorRole.RUNNER

    @property
    def is_customer(self) -> bool:
        return self.role == ActorRole.CUSTOMER

    def require_role(self, *roles: ActorRole) -> None:
        """Raise ForbiddenError unless the actor plays one of the given roles"""
        if self.role not in roles:
            allowed = " or ".join(role.value for role in roles)
            raise ForbiddenError(
                f"Only a {allowed} can perform this action",
                user_id=self.user_id,
                details={"role": self.role.value},
            )
