from .cache import TaggedTTLCache
from .listing import ListingService
from .reconciler import Reconciler
from .status import StatusService

__all__ = ["Reconciler", "ListingService", "StatusService", "TaggedTTLCache"]
