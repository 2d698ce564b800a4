"""Tests for camp_spine.orchestration.sequence — definitions and registry."""

from datetime import timedelta

import pytest

from camp_spine.core.errors import ConfigError
from camp_spine.core.models import SequenceAnchor
from camp_spine.orchestration import (
    SequenceDefinition,
    SequenceNotFoundError,
    SequenceStep,
    clear_sequence_registry,
    get_sequence,
    list_sequences,
    register_sequence,
)


def noop(step):
    return None


def three_steps(name="onboarding"):
    return SequenceDefinition(
        name=name,
        steps=(
            SequenceStep("one", noop, timedelta(days=1)),
            SequenceStep("two", noop, timedelta(days=2)),
            SequenceStep("three", noop),
        ),
    )


class TestDefinition:
    def test_defaults(self):
        definition = three_steps()
        assert definition.total_steps == 3
        assert definition.anchor == SequenceAnchor.PREVIOUS
        assert definition.step(2).name == "two"

    def test_offset_from_first(self):
        definition = three_steps()
        assert definition.offset_from_first(1) == timedelta(0)
        assert definition.offset_from_first(2) == timedelta(days=1)
        assert definition.offset_from_first(3) == timedelta(days=3)

    def test_requires_steps(self):
        with pytest.raises(ConfigError):
            SequenceDefinition(name="empty", steps=())

    def test_step_names_unique(self):
        with pytest.raises(ConfigError, match="duplicate step names"):
            SequenceDefinition(name="dup", steps=(SequenceStep("a", noop), SequenceStep("a", noop)))


class TestRegistry:
    def test_register_instance(self):
        register_sequence(three_steps())
        assert get_sequence("onboarding").total_steps == 3

    def test_register_as_decorator(self):
        @register_sequence
        def build():
            return three_steps("decorated")

        assert isinstance(build, SequenceDefinition)
        assert get_sequence("decorated") is build

    def test_duplicate_name(self):
        register_sequence(three_steps())
        with pytest.raises(ValueError, match="already registered"):
            register_sequence(three_steps())

    def test_wrong_type(self):
        with pytest.raises(TypeError):
            register_sequence(lambda: "not a definition")

    def test_unknown_name(self):
        with pytest.raises(SequenceNotFoundError) as info:
            get_sequence("nope")
        assert info.value.sequence_name == "nope"
        assert "winback" in info.value.message

    def test_builtins_load_lazily_and_survive_clear(self):
        assert "winback" in list_sequences()
        clear_sequence_registry()
        assert get_sequence("winback").total_steps == 3


def test_winback_shape():
    winback = get_sequence("winback")
    assert [s.name for s in winback.steps] == ["we_miss_you", "retention_offer", "final_reminder"]
    assert [s.delay_before_next for s in winback.steps[:2]] == [timedelta(days=4), timedelta(days=7)]
    assert winback.feature_flag == "winback_sequence"
    assert winback.should_abandon is not None
