"""Tests for the chunked differential evolution operators."""

import numpy as np
import pytest

from optimizer.evolution import ChunkedEvolver, EvolutionSettings, crossover_probability

SETTINGS = EvolutionSettings(max_generations=50, cr_min=0.1, cr_max=0.9, cr_exponent=2.0, f=0.8)


def sphere(x):
    return float(np.sum((x - 0.3) ** 2))


def _population(rng, n=20, dim=4):
    pop = rng.random((n, dim))
    return pop, np.array([sphere(x) for x in pop])


class TestCrossoverSchedule:

    def test_bounds(self):
        assert crossover_probability(0, 100, 0.1, 0.9, 2.0) == pytest.approx(0.9)
        assert crossover_probability(100, 100, 0.1, 0.9, 2.0) == pytest.approx(0.1)

    def test_power_law(self):
        assert crossover_probability(50, 100, 0.1, 0.9, 2.0) == pytest.approx(0.9 - 0.8 * 0.25)

    def test_monotonic_decrease(self):
        values = [crossover_probability(g, 30, 0.07, 0.95, 2.0) for g in range(31)]
        assert all(a >= b for a, b in zip(values, values[1:]))

    def test_past_the_end_is_clamped(self):
        assert crossover_probability(200, 100, 0.1, 0.9, 2.0) == pytest.approx(0.1)


class TestPick3:

    def test_distinct_and_not_parent(self, rng):
        evolver = ChunkedEvolver(0, 9, 3, sphere, SETTINGS, rng=rng)
        for _ in range(300):
            parent = int(rng.integers(0, 10))
            picks = evolver._pick3(10, parent)
            assert len(set(picks)) == 3
            assert parent not in picks
            assert all(0 <= p < 10 for p in picks)

    def test_permutation_restored(self, rng):
        evolver = ChunkedEvolver(0, 9, 3, sphere, SETTINGS, rng=rng)
        for parent in range(10):
            evolver._pick3(10, parent)
            assert evolver._indices == list(range(10))

    def test_smallest_population(self, rng):
        evolver = ChunkedEvolver(0, 3, 3, sphere, SETTINGS, rng=rng)
        for parent in range(4):
            assert sorted(evolver._pick3(4, parent)) == [i for i in range(4) if i != parent]

    def test_every_candidate_reachable(self, rng):
        evolver = ChunkedEvolver(0, 5, 3, sphere, SETTINGS, rng=rng)
        seen = set()
        for _ in range(500):
            seen.update(evolver._pick3(6, 2))
        assert seen == {0, 1, 3, 4, 5}


class TestChunkEvolution:

    def test_random_chunk(self, rng):
        evolver = ChunkedEvolver(5, 9, 4, sphere, SETTINGS, rng=rng)
        pop = evolver.create_random_population_chunk()
        assert pop.shape == (5, 4)
        assert np.all((pop >= 0.0) & (pop < 1.0))
        fit = evolver.evaluate_chunk_fitness()
        assert fit.shape == (5,)

    def test_empty_chunk_rejected(self):
        with pytest.raises(ValueError):
            ChunkedEvolver(5, 4, 4, sphere, SETTINGS)

    def test_needs_four_agents(self, rng):
        evolver = ChunkedEvolver(0, 2, 4, sphere, SETTINGS, rng=rng)
        pop, fit = _population(rng, n=3)
        with pytest.raises(ValueError):
            evolver.evolve_population_chunk(pop, fit)

    def test_selection_never_worsens(self, rng):
        pop, fit = _population(rng)
        evolver = ChunkedEvolver(5, 14, 4, sphere, SETTINGS, rng=rng)
        updated = evolver.evolve_population_chunk(pop, fit)

        assert evolver.pop_chunk.shape == (10, 4)
        assert evolver.generation == 1
        for k in range(10):
            assert evolver.fit_chunk[k] <= fit[5 + k]
            if k in updated:
                assert evolver.fit_chunk[k] < fit[5 + k]
            else:
                np.testing.assert_array_equal(evolver.pop_chunk[k], pop[5 + k])
        assert np.all((evolver.pop_chunk >= 0.0) & (evolver.pop_chunk <= 1.0))

    def test_input_population_not_modified(self, rng):
        pop, fit = _population(rng)
        before = pop.copy()
        ChunkedEvolver(0, 19, 4, sphere, SETTINGS, rng=rng).evolve_population_chunk(pop, fit)
        np.testing.assert_array_equal(pop, before)

    def test_converges_on_sphere(self, rng):
        pop, fit = _population(rng, n=30, dim=3)
        evolver = ChunkedEvolver(0, 29, 3, sphere, SETTINGS, rng=rng)
        best = [fit.min()]
        for _ in range(50):
            evolver.evolve_population_chunk(pop, fit)
            pop, fit = evolver.pop_chunk, evolver.fit_chunk
            best.append(fit.min())
        assert all(a >= b for a, b in zip(best, best[1:]))
        assert best[-1] < 1e-3

    def test_two_chunks_cover_population(self, rng):
        """Merging chunk results in order gives a full next generation."""
        pop, fit = _population(rng, n=12)
        left = ChunkedEvolver(0, 5, 4, sphere, SETTINGS, rng=np.random.default_rng(1))
        right = ChunkedEvolver(6, 11, 4, sphere, SETTINGS, rng=np.random.default_rng(2))
        left.evolve_population_chunk(pop, fit)
        right.evolve_population_chunk(pop, fit)
        merged = np.concatenate([left.fit_chunk, right.fit_chunk])
        assert merged.shape == (12,)
        assert np.all(merged <= fit)
