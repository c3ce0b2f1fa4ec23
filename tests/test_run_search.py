"""Console output of the local search script."""

import importlib.util
from pathlib import Path

import pytest

from optimizer.objective import TrajectoryObjective
from optimizer.solver import GenerationSample, SearchResult

EARTH_ID, MARS_ID = 3, 4
SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "run_search.py"


@pytest.fixture(scope="module")
def run_search():
    spec = importlib.util.spec_from_file_location("run_search", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_print_sample(run_search, capsys):
    run_search.print_sample(GenerationSample(generation=3, mean=12.5, best=6.25), 6.0)
    err = capsys.readouterr().err
    assert "gen    3" in err
    assert "best     6.2500" in err
    assert "best dv 6.0000 km/s" in err


def test_print_steps(run_search, capsys, catalog, search, window, rng):
    objective = TrajectoryObjective(catalog, search, [EARTH_ID, MARS_ID], 200.0, *window, rng=rng)
    calc = objective.compute_trajectory(rng.random(objective.agent_dim))
    result = SearchResult(sequence=[EARTH_ID, MARS_ID], steps=calc.steps, total_delta_v=calc.total_delta_v)

    run_search.print_steps(result)
    lines = capsys.readouterr().err.splitlines()
    assert len(lines) == len(calc.steps)
    assert "ejection" in lines[1]
    assert "circularization" in lines[-1]
    assert "periapsis" in lines[-2]
