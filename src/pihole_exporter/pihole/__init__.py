"""Client and response model for the Pi-hole admin API (``/admin/api.php``)."""

from .client import PiholeClient
from .models import Snapshot

__all__ = ["PiholeClient", "Snapshot"]
