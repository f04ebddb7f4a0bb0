"""
App features built on the generic collection feature.
"""
from .base import CollectionFeature
from .marketplace import MarketplaceFeature
from .feed import FeedFeature
from .messaging import MessagingFeature

__all__ = [
    "CollectionFeature",
    "MarketplaceFeature",
    "FeedFeature",
    "MessagingFeature",
]
