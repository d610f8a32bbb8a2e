"""Tests for the iteration engine shared by all minimizers."""

import itertools
from typing import Any

import numpy as np
import pytest
import torch

from foptim import (
    DiffFunction,
    FunctionObjective,
    SimpleSGD,
    State,
    StepSizeUnderflow,
    TorchObjective,
    TorchSpace,
)


class ScriptedObjective(DiffFunction[np.ndarray]):
    """``f(x) = x.x`` whose gradient turns to NaN on chosen calls."""

    def __init__(self, nan_calls=(), raise_on=None):
        self.calls = 0
        self.nan_calls = set(nan_calls)
        self.raise_on = raise_on

    def calculate(self, x):
        call = self.calls
        self.calls += 1
        if self.raise_on is not None and call == self.raise_on:
            raise ValueError("objective blew up")
        x = np.asarray(x, dtype=float)
        grad = 2 * x
        if call in self.nan_calls:
            grad = np.full_like(x, np.nan)
        return float(x @ x), grad


class FlatObjective(DiffFunction[np.ndarray]):
    """Constant value with a constant non-zero gradient: never converges."""

    def calculate(self, x):
        return 1.0, np.ones_like(np.asarray(x, dtype=float))


class CountingSGD(SimpleSGD):
    """Constant-step descent whose history counts accepted steps."""

    def initial_history(self, f, init) -> Any:
        return 0

    def update_history(self, new_x, new_grad, new_value, old_state) -> Any:
        return old_state.history + 1


def square() -> FunctionObjective:
    return FunctionObjective(lambda x: float(x @ x), lambda x: 2 * x)


def test_converges_on_parabola():
    states = list(
        SimpleSGD(step_size=0.1, max_iter=-1, tolerance=1e-5).iterations(
            square(), np.array([10.0])
        )
    )
    final = states[-1]
    assert abs(final.x[0]) < 1e-3
    assert np.linalg.norm(final.adjusted_gradient) <= 1e-5 * abs(final.initial_adj_val)
    assert not final.search_failed
    assert len(states) < 100


def test_iter_increases_by_one_per_state():
    states = list(SimpleSGD(step_size=0.1).iterations(square(), np.array([10.0, -3.0])))
    assert [s.iter for s in states] == list(range(len(states)))
    assert all(s.initial_adj_val == states[0].adjusted_value for s in states)


@pytest.mark.parametrize("max_iter", [0, 1, 5])
def test_max_iter_bounds_number_of_states(max_iter):
    states = list(
        SimpleSGD(step_size=0.01, max_iter=max_iter).iterations(square(), np.array([10.0]))
    )
    assert len(states) == max_iter + 1
    assert states[-1].iter == max_iter


def test_stationary_start_returns_initial_point():
    f = FunctionObjective(lambda x: float((x - 3.0) @ (x - 3.0)), lambda x: 2 * (x - 3.0))
    init = np.array([3.0, 3.0])
    states = list(SimpleSGD(step_size=0.1, tolerance=1e-3).iterations(f, init))
    assert len(states) == 1
    assert np.allclose(SimpleSGD(step_size=0.1).minimize(f, init), init)


def test_minimize_returns_last_point():
    sgd = SimpleSGD(step_size=0.1, max_iter=7)
    states = list(sgd.iterations(square(), np.array([2.0])))
    assert np.allclose(sgd.minimize(square(), np.array([2.0])), states[-1].x)
    final = sgd.minimize_and_return_state(square(), np.array([2.0]))
    assert isinstance(final, State)
    assert final.iter == 7


def test_value_window_is_fifo_and_bounded():
    window = 3
    sgd = SimpleSGD(step_size=0.1, max_iter=12, min_improvement_window=window)
    states = list(sgd.iterations(square(), np.array([10.0])))
    assert states[0].f_vals == ()
    for i, state in enumerate(states):
        assert len(state.f_vals) <= window
        expected = tuple(s.adjusted_value for s in states[1 : i + 1])[-window:]
        assert state.f_vals == expected


def test_stagnation_stops_iteration():
    sgd = SimpleSGD(
        step_size=0.1,
        min_improvement_window=3,
        improvement_tol=1e-3,
        number_of_improvement_failures=1,
    )
    states = list(sgd.iterations(FlatObjective(), np.array([0.0])))
    final = states[-1]
    assert final.iter == 4
    assert final.num_improvement_failures == 1
    assert final.f_vals == ()


def test_improvement_failures_reset_after_progress_step():
    sgd = SimpleSGD(
        step_size=0.1,
        max_iter=6,
        min_improvement_window=3,
        number_of_improvement_failures=2,
    )
    states = list(sgd.iterations(FlatObjective(), np.array([0.0])))
    assert [s.num_improvement_failures for s in states] == [0, 0, 0, 0, 1, 0, 0]
    assert states[-1].iter == 6


def test_single_failure_resets_history_and_continues():
    f = ScriptedObjective(nan_calls={3})
    sgd = CountingSGD(step_size=0.1, max_iter=10)
    states = list(sgd.iterations(f, np.array([10.0])))

    assert not any(s.search_failed for s in states)
    assert states[-1].iter == 10
    iters = [s.iter for s in states]
    assert iters == sorted(iters)
    # The failed step is skipped: iteration 2 is produced again with fresh history.
    assert iters.count(2) == 2
    recovered = states[3]
    assert recovered.history == 0
    assert np.allclose(recovered.x, states[2].x)
    assert recovered.num_improvement_failures == states[2].num_improvement_failures
    assert states[-1].history == 8


def test_two_consecutive_failures_mark_search_failed():
    f = ScriptedObjective(nan_calls={3, 4})
    sgd = SimpleSGD(step_size=0.1, max_iter=10)
    states = list(sgd.iterations(f, np.array([10.0])))

    assert states[-1].search_failed
    assert not any(s.search_failed for s in states[:-1])
    assert states[-1].iter == 2
    assert f.calls == 5
    assert np.allclose(sgd.minimize(ScriptedObjective(nan_calls={3, 4}), np.array([10.0])), states[2].x)


def test_success_rearms_failure_recovery():
    f = ScriptedObjective(nan_calls={3, 5})
    states = list(SimpleSGD(step_size=0.1, max_iter=10).iterations(f, np.array([10.0])))
    assert not states[-1].search_failed
    assert states[-1].iter == 10


def test_strategy_failures_are_recovered():
    class FlakyStep(SimpleSGD):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self.attempts = 0

        def determine_step_size(self, state, f, direction):
            self.attempts += 1
            if self.attempts == 2:
                raise StepSizeUnderflow()
            return super().determine_step_size(state, f, direction)

    states = list(FlakyStep(step_size=0.1, max_iter=4).iterations(square(), np.array([1.0])))
    assert [s.iter for s in states] == [0, 1, 1, 2, 3, 4]


def test_unrecognized_errors_propagate():
    f = ScriptedObjective(raise_on=2)
    with pytest.raises(ValueError, match="objective blew up"):
        list(SimpleSGD(step_size=0.1, max_iter=10).iterations(f, np.array([1.0])))


def test_iterations_are_lazy():
    f = ScriptedObjective()
    iterator = SimpleSGD(step_size=0.01).iterations(f, np.array([10.0]))
    first_three = list(itertools.islice(iterator, 3))
    assert [s.iter for s in first_three] == [0, 1, 2]
    assert f.calls == 3


def test_depth_charge_keeps_history_only():
    class WarmSGD(CountingSGD):
        num_depth_charge_steps = 3

    f = ScriptedObjective()
    init = np.array([10.0])
    first = next(WarmSGD(step_size=0.1).iterations(f, init))

    assert first.iter == 0
    assert first.history == 3
    assert np.allclose(first.x, init)
    assert first.value == pytest.approx(100.0)
    assert first.initial_adj_val == pytest.approx(100.0)
    assert first.f_vals == ()
    # initial state, three warm-up steps, then the rebuilt initial state
    assert f.calls == 5


def test_states_are_immutable():
    state = next(SimpleSGD(step_size=0.1).iterations(square(), np.array([1.0])))
    with pytest.raises(AttributeError):
        state.iter = 5


def test_relative_tolerance_scales_with_initial_value():
    sgd = SimpleSGD(step_size=0.1, tolerance=0.5)
    # |grad| = 20 at x = 10 and the initial value is 100: 20 <= 0.5 * 100.
    states = list(sgd.iterations(square(), np.array([10.0])))
    assert len(states) == 1


def test_invalid_engine_arguments_raise():
    with pytest.raises(ValueError):
        SimpleSGD(step_size=0.1, min_improvement_window=0)
    with pytest.raises(ValueError):
        SimpleSGD(step_size=0.1, number_of_improvement_failures=0)
    with pytest.raises(ValueError):
        SimpleSGD(step_size=0.1, tolerance=-1.0)
    with pytest.raises(ValueError):
        SimpleSGD(step_size=0.0)


def test_engine_over_torch_tensors():
    f = TorchObjective(lambda x: torch.sum(x**2))
    sgd = SimpleSGD(step_size=0.1, space=TorchSpace())
    x = sgd.minimize(f, torch.tensor([3.0, -4.0], dtype=torch.float64))
    assert isinstance(x, torch.Tensor)
    assert torch.allclose(x, torch.zeros(2, dtype=torch.float64), atol=1e-3)
