"""Durable delayed sequences: definitions and registry.

The runner itself lives in :mod:`camp_spine.ops.sequences`; this package
only describes *what* a sequence does.  Built-in sequences (``winback``)
are registered lazily on first lookup.
"""

from camp_spine.orchestration.sequence import (
    SequenceDefinition,
    SequenceNotFoundError,
    SequenceStep,
    StepContext,
    clear_sequence_registry,
    get_sequence,
    list_sequences,
    register_sequence,
)

__all__ = [
    "SequenceDefinition",
    "SequenceNotFoundError",
    "SequenceStep",
    "StepContext",
    "clear_sequence_registry",
    "get_sequence",
    "list_sequences",
    "register_sequence",
]
