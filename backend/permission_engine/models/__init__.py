from .organizations import Organization
from .users import User
from .features import Feature
from .plans import Plan, PlanFeature, PlanLimit
from .roles import Role, RolePermission, UserRole
from .user_plans import UserPlan
from .overrides import Override, OrganizationOverride
from .usage import Usage

__all__ = [
    "Organization",
    "User",
    "Feature",
    "Plan",
    "PlanFeature",
    "PlanLimit",
    "Role",
    "RolePermission",
    "UserRole",
    "UserPlan",
    "Override",
    "OrganizationOverride",
    "Usage",
]
