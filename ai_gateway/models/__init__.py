from ai_gateway.models.ai_setting import AiFeatureLimit, AiModelOverride
from ai_gateway.models.usage_log import AiUsageLog

__all__ = [
    "AiFeatureLimit",
    "AiModelOverride",
    "AiUsageLog",
]
