"""
Shared helpers for building actors and authenticated requests in tests
"""
from errands.core.auth import create_access_token
from errands.db.models.user import User
from errands.domain.actors import Actor, ActorRole

PROOF_URL = "https://uploads.example.com/receipts/receipt-1.jpg"


def customer(user: User) -> Actor:
    return Actor(user_id=user.id, role=ActorRole.CUSTOMER)


def runner(user: User) -> Actor:
    return Actor(user_id=user.id, role=ActorRole.RUNNER)


def admin(user: User) -> Actor:
    return Actor(user_id=user.id, role=ActorRole.ADMIN)


def auth_headers(user: User, role: ActorRole) -> dict[str, str]:
    token = create_access_token(user.id, role.value)
    return {"Authorization": f"Bearer {token}"}
