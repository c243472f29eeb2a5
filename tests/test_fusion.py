from __future__ import annotations

import pytest

from bobberwatch.fusion import EventFusionGate, FusionInputs, SPLASH_GATE_SECONDS


def test_quiet_frame_is_not_a_hook() -> None:
    decision = EventFusionGate().evaluate(FusionInputs(), now=0.0)
    assert not decision.hook
    assert not decision.gate_open
    assert decision.gate_expires_at is None


def test_splash_gate_holds_hook_for_450ms() -> None:
    gate = EventFusionGate()
    opened = gate.evaluate(FusionInputs(votes=2), now=10.0)
    assert opened.hook and opened.splash and opened.gate_open
    assert opened.gate_expires_at == pytest.approx(10.0 + SPLASH_GATE_SECONDS)

    for t in (10.1, 10.3, 10.45):
        later = gate.evaluate(FusionInputs(), now=t)
        assert later.hook
        assert later.gate_open
        assert not later.splash

    expired = gate.evaluate(FusionInputs(), now=10.5)
    assert not expired.hook
    assert not gate.is_open(10.5)


def test_single_vote_does_not_open_gate() -> None:
    gate = EventFusionGate()
    decision = gate.evaluate(FusionInputs(votes=1), now=0.0)
    assert not decision.hook
    assert gate.last_open is None


def test_micro_fire_opens_gate() -> None:
    gate = EventFusionGate()
    assert gate.evaluate(FusionInputs(micro_fired=True), now=1.0).hook
    assert gate.evaluate(FusionInputs(), now=1.2).gate_open


@pytest.mark.parametrize(
    "inputs",
    [
        FusionInputs(z_dy=2.1),
        FusionInputs(z_ripple=1.6),
        FusionInputs(dy=-2.0),
    ],
)
def test_strong_micro_hooks_without_opening_gate(inputs: FusionInputs) -> None:
    gate = EventFusionGate()
    decision = gate.evaluate(inputs, now=0.0)
    assert decision.hook
    assert decision.strong_micro
    assert not decision.gate_open


def test_ripple_spike() -> None:
    decision = EventFusionGate().evaluate(FusionInputs(ripple_energy=0.7), now=0.0)
    assert decision.hook and decision.ripple_spike
    assert not EventFusionGate().evaluate(FusionInputs(ripple_energy=0.65), now=0.0).hook


def test_reopening_extends_the_window() -> None:
    gate = EventFusionGate()
    gate.evaluate(FusionInputs(votes=3), now=0.0)
    gate.evaluate(FusionInputs(votes=2), now=0.4)
    assert gate.evaluate(FusionInputs(), now=0.8).gate_open
