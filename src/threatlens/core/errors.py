"""Exception hierarchy for ThreatLens.

Three failure families matter to callers:

* upstream-unavailable -- the event source could not be read; the
  correlation service keeps its previous result and retries later.
* malformed-input -- a single event lacks a required field; it is
  filtered out of aggregation and never propagated as fatal.
* resource-lifecycle -- a scheduler thread could not be started or
  stopped; fatal to the owning simulator and surfaced to its owner.
"""

from __future__ import annotations


class ThreatLensError(Exception):
    """Base class for all ThreatLens errors."""


class SourceUnavailableError(ThreatLensError):
    """The event source failed or timed out while fetching a snapshot."""


class MalformedEventError(ThreatLensError):
    """An event record is missing a required field."""

    def __init__(self, field_name: str, record: object = None) -> None:
        super().__init__(f"security event is missing required field '{field_name}'")
        self.field_name = field_name
        self.record = record


class SchedulerError(ThreatLensError):
    """A periodic worker thread could not be started or stopped cleanly."""
