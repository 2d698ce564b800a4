"""Sequence definitions and the name → definition registry.

Manifesto:
A sequence run is persisted as a row holding only the sequence *name*.
Whichever process picks the run up next (a scheduler tick hours or days
later) looks the definition up here, so every definition must be
registered at import time under a stable name.

ARCHITECTURE
────────────
::

    SequenceStep(name, action, delay_before_next)
    SequenceDefinition(name, steps, anchor, should_abandon, feature_flag)

    register_sequence(definition_or_factory)  → stores in module dict
    get_sequence(name)                        → definition or raises
    list_sequences()                          → sorted names
    clear_sequence_registry()                 → reset (for testing)

    SequenceNotFoundError ── raised when get_sequence fails

Step actions receive a :class:`StepContext` and may run more than once
(a crash between the action and its completion record replays it), so
anything with an outside effect goes through
:func:`camp_spine.ops.outbound.guarded_send`.

Related modules:
    camp_spine.ops.sequences        — persistence and the re-entrant runner
    camp_spine.orchestration.winback — the built-in win-back sequence

Tags:
    camp-spine, orchestration, sequence, registry
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from camp_spine.core.errors import ConfigError
from camp_spine.core.logging import get_logger
from camp_spine.core.models import SequenceAnchor

if TYPE_CHECKING:
    from camp_spine.core.protocols import Dispatcher
    from camp_spine.ops.context import OperationContext

logger = get_logger(__name__)

_registry: dict[str, SequenceDefinition] = {}
_loaded: bool = False


@dataclass(frozen=True)
class StepContext:
    """What a step action gets to work with."""

    ctx: OperationContext
    run_id: str
    subject_id: str
    step_index: int
    step_name: str
    dispatcher: Dispatcher | None = None

    @property
    def dedup_key(self) -> str:
        """Stable key for this step of this run, for outbound guards."""
        return f"{self.run_id}:{self.step_index}"


StepAction = Callable[[StepContext], Any]
AbandonCheck = Callable[["OperationContext", str], bool]


@dataclass(frozen=True)
class SequenceStep:
    """One step: run ``action`` now, wait ``delay_before_next`` before the next."""

    name: str
    action: StepAction
    delay_before_next: timedelta = timedelta(0)


@dataclass(frozen=True)
class SequenceDefinition:
    """A named, ordered list of delayed steps.

    ``anchor`` decides how delays add up (see
    :class:`camp_spine.core.models.SequenceAnchor`).  ``should_abandon`` is
    evaluated before every step; returning ``True`` ends the run as
    ``abandoned``.  ``feature_flag`` names a field of
    :class:`camp_spine.core.settings.FeatureFlags` that must be on for new
    runs to start.
    """

    name: str
    steps: tuple[SequenceStep, ...]
    anchor: SequenceAnchor = SequenceAnchor.PREVIOUS
    should_abandon: AbandonCheck | None = None
    feature_flag: str | None = None
    description: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not self.steps:
            raise ConfigError(f"Sequence '{self.name}' has no steps")
        names = [s.name for s in self.steps]
        if len(set(names)) != len(names):
            raise ConfigError(f"Sequence '{self.name}' has duplicate step names")

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def step(self, index: int) -> SequenceStep:
        """1-based step lookup."""
        return self.steps[index - 1]

    def offset_from_first(self, index: int) -> timedelta:
        """Cumulative delay between step 1 and step *index*."""
        return sum((s.delay_before_next for s in self.steps[: index - 1]), timedelta(0))


class SequenceNotFoundError(ConfigError):
    """Raised when a sequence name is not registered."""

    def __init__(self, name: str) -> None:
        self.sequence_name = name
        available = ", ".join(sorted(_registry)) if _registry else "(none)"
        super().__init__(f"Sequence '{name}' not found. Available: {available}")


def register_sequence(
    definition_or_factory: SequenceDefinition | Callable[[], SequenceDefinition],
) -> SequenceDefinition:
    """Register a definition, directly or as a decorator on a factory.

    Raises:
        ValueError: A sequence with the same name is already registered.
        TypeError: The argument is not (and does not produce) a definition.
    """
    if callable(definition_or_factory) and not isinstance(definition_or_factory, SequenceDefinition):
        definition = definition_or_factory()
    else:
        definition = definition_or_factory

    if not isinstance(definition, SequenceDefinition):
        raise TypeError(f"Expected SequenceDefinition, got {type(definition).__name__}")
    if definition.name in _registry:
        raise ValueError(f"Sequence '{definition.name}' is already registered")

    _registry[definition.name] = definition
    logger.debug("sequence_registered", name=definition.name, steps=definition.total_steps)
    return definition


def get_sequence(name: str) -> SequenceDefinition:
    _ensure_loaded()
    if name not in _registry:
        raise SequenceNotFoundError(name)
    return _registry[name]


def list_sequences() -> list[str]:
    _ensure_loaded()
    return sorted(_registry)


def clear_sequence_registry() -> None:
    """Empty the registry; built-ins are re-registered on next lookup."""
    global _loaded
    _registry.clear()
    _loaded = False


def _ensure_loaded() -> None:
    global _loaded
    if not _loaded:
        _loaded = True
        _load_builtin_sequences()


def _load_builtin_sequences() -> None:
    from camp_spine.orchestration import winback

    if winback.WINBACK not in _registry:
        register_sequence(winback.build_winback_sequence)
