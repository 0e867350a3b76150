"""Configuration and logging setup for pihole-exporter."""
