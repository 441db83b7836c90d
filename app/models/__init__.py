from app.models.analysis import AnalysisRequest
from app.models.base import Base
from app.models.calendar import EconomicEvent, EventAnalysisCache
from app.models.profile import ProcessedWebhookEvent, UserProfile
from app.models.signal import TradingSignal

__all__ = [
    "AnalysisRequest",
    "Base",
    "EconomicEvent",
    "EventAnalysisCache",
    "ProcessedWebhookEvent",
    "TradingSignal",
    "UserProfile",
]
