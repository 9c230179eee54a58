"""
Authorization
Capability checks the ledger services call before privileged actions
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from stockledger.core.exceptions import InsufficientPermissionsError


class Role(str, Enum):
    ADMIN = "ADMIN"
    SUPERVISOR = "SUPERVISOR"
    OPERATOR = "OPERATOR"


class Actor(BaseModel):
    """The user performing an action"""
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: Role = Role.OPERATOR


class Authorizer(ABC):
    """Capability checks, supplied by the host application"""

    @abstractmethod
    def can_approve(self, actor: Optional[Actor], location_id: int) -> bool:
        """Approve or reject transfers touching the location"""

    @abstractmethod
    def can_save_adjustments(self, actor: Optional[Actor], location_id: int) -> bool:
        """Save reconciliation adjustments for the location"""

    @abstractmethod
    def can_close_period(self, actor: Optional[Actor], period_id: int) -> bool:
        """Request or execute a period close"""

    def require_approve(self, actor: Optional[Actor], location_id: int):
        if not self.can_approve(actor, location_id):
            raise InsufficientPermissionsError(
                f"{_name(actor)} may not approve transfers for location {location_id}",
                action="approve",
                location_id=location_id,
            )

    def require_save_adjustments(self, actor: Optional[Actor], location_id: int):
        if not self.can_save_adjustments(actor, location_id):
            raise InsufficientPermissionsError(
                f"{_name(actor)} may not save reconciliation adjustments for location {location_id}",
                action="save_adjustments",
                location_id=location_id,
            )

    def require_close_period(self, actor: Optional[Actor], period_id: int):
        if not self.can_close_period(actor, period_id):
            raise InsufficientPermissionsError(
                f"{_name(actor)} may not close period {period_id}",
                action="close_period",
                period_id=period_id,
            )


def _name(actor: Optional[Actor]) -> str:
    return actor.username if actor else "Anonymous user"


class RoleAuthorizer(Authorizer):
    """
    Role based defaults

    ADMIN and SUPERVISOR approve transfers and save adjustments.
    Only ADMIN closes periods.
    """

    def can_approve(self, actor, location_id):
        return actor is not None and actor.role in (Role.ADMIN, Role.SUPERVISOR)

    def can_save_adjustments(self, actor, location_id):
        return actor is not None and actor.role in (Role.ADMIN, Role.SUPERVISOR)

    def can_close_period(self, actor, period_id):
        return actor is not None and actor.role == Role.ADMIN
