from enum import Enum

# Stored as strings with DB check constraints (native enums disabled for easier evolution).


class OverrideTypeEnum(str, Enum):
    FEATURE_ENABLE = "feature_enable"
    FEATURE_DISABLE = "feature_disable"
    LIMIT_INCREASE = "limit_increase"


FEATURE_TOGGLE_TYPES = {OverrideTypeEnum.FEATURE_ENABLE, OverrideTypeEnum.FEATURE_DISABLE}
