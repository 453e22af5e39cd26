from signlink.router.dedup import DedupPolicy
from signlink.router.router import TransportRouter

__all__ = ["DedupPolicy", "TransportRouter"]
