"""ORM models package -- re-exports all models and the Base class."""

from assetcraft.models.base import Base
from assetcraft.models.user import (
    AdReward,
    GemstoneTransaction,
    UserProfile,
)
from assetcraft.models.asset import (
    GenerationRecord,
    UserAsset,
)
from assetcraft.models.store import (
    GemstonePackage,
    ProcessedWebhook,
    PurchaseRecord,
)

__all__ = [
    "Base",
    "UserProfile",
    "GemstoneTransaction",
    "AdReward",
    "UserAsset",
    "GenerationRecord",
    "GemstonePackage",
    "PurchaseRecord",
    "ProcessedWebhook",
]
