"""HTTP servers for pihole-exporter."""
