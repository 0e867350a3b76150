"""Pi-hole Prometheus exporter package"""

import importlib.metadata as importlib_metadata

try:
    __version__ = importlib_metadata.version("pihole-exporter")
except Exception:  # pragma: no cover - metadata missing in source checkouts
    __version__ = "unknown"
