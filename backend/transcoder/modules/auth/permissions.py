"""Authenticated principals and job access policy."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

ADMIN_ROLE = "admin"
USER_ROLE = "user"


@dataclass(frozen=True)
class Principal:
    """The caller of an API request, as asserted by the identity provider."""
    user_id: str
    role: str = USER_ROLE

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


class AccessPolicy(ABC):
    """Decides whether a principal may act on resources owned by a user."""

    @abstractmethod
    def can_access(self, principal: Principal, owner_id: str) -> bool:
        ...


class OwnerOrAdminPolicy(AccessPolicy):
    """Owners may act on their own resources; admins on everyone's."""

    def can_access(self, principal: Principal, owner_id: str) -> bool:
        return principal.is_admin or principal.user_id == owner_id
