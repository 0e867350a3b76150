"""Response model for the Pi-hole ``/admin/api.php`` summary call.

See: https://github.com/pi-hole/AdminLTE (api.php / api_FTL.php)
"""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

MAPPING_FIELDS = (
    "top_queries",
    "top_ads",
    "top_sources",
    "forward_destinations",
    "query_types",
)


class Snapshot(BaseModel):
    """Brief: Decoded Pi-hole API response for a single scrape.

    Inputs:
      - Keyword arguments or a JSON object passed to Snapshot.model_validate().
        Every field is optional and defaults to its zero value, also when
        the key is present with a JSON null; unknown keys
        (overTimeData, recentItems, gravity details, ...) are ignored.

    Outputs:
      - Frozen Snapshot instance.

    Notes:
      - Mapping values are kept as received. Conversion to float is done per
        entry by the collector so that a single malformed value only drops
        one sample instead of the whole scrape.
      - query_types is read from the ``querytypes`` JSON key.

    Example:
      >>> snap = Snapshot.model_validate({"dns_queries_today": 5817, "querytypes": {"A (IPv4)": 61.2}})
      >>> snap.dns_queries_today, snap.query_types["A (IPv4)"]
      (5817, 61.2)
    """

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    domains_being_blocked: int = 0
    dns_queries_today: int = 0
    ads_blocked_today: int = 0
    ads_percentage_today: float = 0.0
    unique_domains: int = 0
    queries_forwarded: int = 0
    queries_cached: int = 0
    clients_ever_seen: int = 0
    unique_clients: int = 0
    status: str = ""
    top_queries: Dict[str, Any] = Field(default_factory=dict)
    top_ads: Dict[str, Any] = Field(default_factory=dict)
    top_sources: Dict[str, Any] = Field(default_factory=dict)
    forward_destinations: Dict[str, Any] = Field(default_factory=dict)
    query_types: Dict[str, Any] = Field(default_factory=dict, alias="querytypes")

    @field_validator("*", mode="before")
    @classmethod
    def _null_as_zero_value(cls, value: Any, info: ValidationInfo) -> Any:
        # JSON null decodes to the field's zero value, like an absent key.
        if value is None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return value

    @field_validator(*MAPPING_FIELDS, mode="before")
    @classmethod
    def _empty_array_as_mapping(cls, value: Any) -> Any:
        # PHP's json_encode() renders an empty associative array as [].
        if isinstance(value, list) and not value:
            return {}
        return value
