"""Per-domain learning of the best fetch method."""

from adaptivecrawl.adaptive.profile_store import ProfileStore, heuristic_rates
from adaptivecrawl.adaptive.selector import AdaptiveSelector

__all__ = ["AdaptiveSelector", "ProfileStore", "heuristic_rates"]
