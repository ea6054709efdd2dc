from .features import (
    create_feature,
    get_feature_by_id,
    get_feature_by_slug,
    list_features,
    update_feature,
    delete_feature,
)
from .organizations import (
    create_organization,
    get_organization,
    get_organization_by_slug,
    list_organizations,
)
from .users import create_user, get_user, get_user_by_email, get_user_by_external_id
from .plans import create_plan, get_plan_by_id, get_plan_by_slug, require_plan
from .plan_features import add_plan_feature, toggle_plan_feature, remove_plan_feature, list_plan_features
from .plan_limits import set_plan_limit, remove_plan_limit, list_plan_limits
from .roles import create_role, get_role, list_roles, delete_role
from .role_permissions import grant_permission, revoke_permission, list_role_permission_slugs
from .user_roles import assign_role, remove_role, get_user_role_ids, list_user_ids_for_role
from .user_plans import assign_plan, remove_plan, get_user_plan, list_assignments_for_plan
from .overrides import (
    create_override,
    update_override,
    delete_override,
    expire_override,
    get_active_overrides,
    cleanup_expired_overrides,
)
from .organization_overrides import (
    create_organization_override,
    update_organization_override,
    delete_organization_override,
    expire_organization_override,
    get_active_organization_overrides,
    cleanup_expired_organization_overrides,
)
from .usage import (
    record_usage,
    reset_usage,
    reset_all_usage_for_user,
    reset_all_monthly_usage,
    get_user_usage,
)
