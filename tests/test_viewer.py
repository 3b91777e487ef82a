"""Viewer form and run-control tests."""

from __future__ import annotations

import os

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
QtWidgets = pytest.importorskip("PyQt5.QtWidgets")
pytest.importorskip("pyqtgraph")

import main
from simulation import OXIDATION, REDUCTION


@pytest.fixture(scope="module")
def app():
    return QtWidgets.QApplication.instance() or QtWidgets.QApplication([])


@pytest.fixture
def window(app):
    win = main.MainWindow()
    yield win
    win.stop()
    win.close()


def _inputs_enabled(win) -> bool:
    return all(field.isEnabled() for field in win.inputs.values()) and win.redox_input.isEnabled()


def test_parse_form_reads_every_field():
    texts = {name: str(value) for name, value in main.DEFAULTS.items()}
    values = main.parse_form(texts)
    assert set(values) == {name for name, _ in main.FIELDS}
    assert values["k0"] == pytest.approx(main.k0)
    assert values["t_density"] == 200.0


def test_parse_form_names_the_bad_field():
    texts = {name: str(value) for name, value in main.DEFAULTS.items()}
    texts["k0"] = "fast"
    with pytest.raises(ValueError, match="k0"):
        main.parse_form(texts)


def test_form_is_seeded_from_module_parameters(window):
    assert window.redox_input.currentData() == OXIDATION
    for name, value in main.DEFAULTS.items():
        assert float(window.inputs[name].text()) == pytest.approx(value)


def test_inputs_locked_while_running(window):
    assert window.timer.isActive()
    assert not _inputs_enabled(window)
    assert not window.start_button.isEnabled()
    assert window.stop_button.isEnabled()

    window.stop()
    assert not window.timer.isActive()
    assert _inputs_enabled(window)
    assert window.start_button.isEnabled()
    assert not window.stop_button.isEnabled()


def test_restart_uses_edited_parameters(window):
    window.stop()
    window.inputs["t_density"].setText("10")
    window.redox_input.setCurrentIndex(window.redox_input.findData(REDUCTION))

    assert window.simulate()
    assert window.sim.mec.redox == REDUCTION
    assert window.sim.mec.t_density == 10.0
    assert not _inputs_enabled(window)

    window.tick()
    assert len(window.I) == main.STEPS_PER_TICK
    assert window.sim.index == main.STEPS_PER_TICK


def test_tick_stops_when_sweep_finishes(window):
    window.stop()
    window.inputs["t_density"].setText("10")
    assert window.simulate()
    while window.timer.isActive():
        window.tick()
    assert window.sim.done
    assert len(window.E) == len(window.sim)
    assert _inputs_enabled(window)


@pytest.mark.parametrize(
    "name, text",
    [
        ("Ef", "0.2"),
        ("gamma", "abc"),
        ("t_density", "1e6"),
    ],
)
def test_bad_input_reported_without_starting(window, name, text):
    window.stop()
    window.inputs[name].setText(text)

    assert not window.simulate()
    assert window.statusBar().currentMessage().startswith("Error")
    assert not window.timer.isActive()
    assert _inputs_enabled(window)
