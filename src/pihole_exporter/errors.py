"""Exception types shared by the client, collector and entry point.

Startup errors (InvalidEndpoint, MissingConfiguration) end the process.
Scrape errors (UpstreamUnreachable, DecodeFailure) are logged and yield an
empty scrape. MetricParseFailure only ever drops a single sample.
"""

from __future__ import annotations


class ExporterError(Exception):
    """
    Brief: Base class for all pihole-exporter errors.

    Inputs:
    - message: Description of the error

    Outputs:
    - Exception instance
    """

    pass


class InvalidEndpoint(ExporterError, ValueError):
    """
    Brief: The configured Pi-hole endpoint is not a plain http:// URL.

    Inputs:
    - message: Description including the offending endpoint

    Outputs:
    - Exception instance
    """

    pass


class MissingConfiguration(ExporterError, ValueError):
    """
    Brief: A required setting (currently only the Pi-hole endpoint) is empty.

    Inputs:
    - message: Description naming the missing setting

    Outputs:
    - Exception instance
    """

    pass


class UpstreamUnreachable(ExporterError):
    """Transport-level failure talking to the Pi-hole API."""

    pass


class DecodeFailure(ExporterError):
    """The Pi-hole API answered with something that is not a summary object."""

    pass


class MetricParseFailure(ExporterError, ValueError):
    """A single mapping value could not be converted to a float."""

    pass
