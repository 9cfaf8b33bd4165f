from .batching import batches
from .events import EventSource, EventStreamError, events_to_sequence
from .merge import merge_sequences

__all__ = [
    "EventSource",
    "EventStreamError",
    "batches",
    "events_to_sequence",
    "merge_sequences",
]
