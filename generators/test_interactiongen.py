#!/usr/bin/env python3
"""
Tests for the synthetic interaction generators.

Validates:
- Event ordering and reproducibility
- Human-like streams score low, scripted streams score high
- Replay source subscription handling
- Simulator CLI output
"""

import json

import pytest
from click.testing import CliRunner

from collector.core.models.events import InteractionKind
from generators.interactiongen import (
    HumanInteractionGenerator, ScriptedInteractionGenerator,
    ReplayEventSource, ReplayClock, simulate_session, main
)


@pytest.mark.parametrize("generator_cls", [HumanInteractionGenerator, ScriptedInteractionGenerator])
def test_streams_are_time_ordered_and_cover_all_kinds(generator_cls):
    events = generator_cls(start_ms=1000, seed=7).generate(20_000)

    timestamps = [e.timestamp for e in events]
    assert timestamps == sorted(timestamps)
    assert {e.kind for e in events} == set(InteractionKind)
    assert all(1000 <= t < 21_000 for t in timestamps)


def test_human_stream_is_reproducible_with_seed():
    a = HumanInteractionGenerator(seed=42).generate(10_000)
    b = HumanInteractionGenerator(seed=42).generate(10_000)

    assert a == b


def test_keystrokes_never_carry_characters():
    events = HumanInteractionGenerator(seed=3).generate(30_000)

    keys = {e.key for e in events if e.kind == InteractionKind.KEYSTROKE}
    assert keys <= {"char", "Backspace", "Shift", "Enter"}


@pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
def test_human_sessions_score_below_alert_threshold(seed):
    tracker = simulate_session("human", 30, seed=seed)

    sample = tracker.analyze()
    assert sample.bot_likelihood_score < 70
    assert sample.total_mouse_events > 5


def test_scripted_sessions_score_at_or_above_alert_threshold():
    tracker = simulate_session("scripted", 30)

    sample = tracker.analyze()
    assert sample.bot_likelihood_score >= 70
    assert 'Low mouse velocity variance (robotic movement)' in sample.bot_indicators


def test_simulated_flush_reaches_sink():
    class ListSink:
        def __init__(self):
            self.payloads = []

        def send_biometrics(self, payload):
            self.payloads.append(payload)
            return {"success": True}

    sink = ListSink()
    simulate_session("scripted", 10, sink=sink)

    assert len(sink.payloads) == 1
    assert sink.payloads[0]["botLikelihoodScore"] >= 70


def test_replay_source_advances_clock_and_unsubscribes():
    clock = ReplayClock()
    source = ReplayEventSource(clock=clock)
    seen = []
    unsubscribe = source.subscribe(seen.append)

    events = ScriptedInteractionGenerator(seed=0).generate(1000)
    assert source.replay(events) == len(events)
    assert clock() == events[-1].timestamp
    assert len(seen) == len(events)

    unsubscribe()
    source.replay(events)
    assert source.subscriber_count == 0
    assert len(seen) == len(events)


def test_cli_prints_sample():
    result = CliRunner().invoke(main, ["--profile", "scripted", "--duration", "5"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["botLikelihoodScore"] >= 70
    assert payload["totalClickEvents"] > 0
