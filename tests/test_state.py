import numpy as np
import pytest

from rectpf.config import StateConfig
from rectpf.geometry import Rect32f
from rectpf.state import (
    DYNAMICS,
    ParticleEnsemble,
    ParticleState,
    additional_bound,
    config_state,
    constant_velocity,
    get_state,
    set_state,
)


def test_set_get_round_trip_is_exact():
    ens = ParticleEnsemble.create(4)
    state = ParticleState(12.345678901234567, 0.1 + 0.2, 33.0000001, 1e-9, 359.99999999)
    set_state(ens, 2, state)
    assert get_state(ens, 2) == state
    assert get_state(ens, 0) == ParticleState(0, 0, 0, 0, 0)


def test_vector_bijection():
    state = ParticleState(1, 2, 3, 4, 5)
    np.testing.assert_array_equal(state.to_vector(), [1, 2, 3, 4, 5])
    assert ParticleState.from_vector(state.to_vector()) == state
    with pytest.raises(ValueError):
        ParticleState.from_vector([1, 2, 3])


def test_wrong_state_layout_is_rejected():
    ens = ParticleEnsemble.create(3, num_states=4)
    with pytest.raises(ValueError):
        get_state(ens, 0)
    with pytest.raises(ValueError):
        set_state(ens, 0, ParticleState(1, 2, 3, 4))


def test_state_rectangle_is_centred():
    rect = ParticleState(50, 50, 20, 10).to_rect32f()
    assert rect == Rect32f(40, 45, 20, 10, 0)


def test_state_str():
    text = str(ParticleState(1, 2, 3, 4, 5))
    assert text == "x :1.000000 y :2.000000 width :3.000000 height :4.000000 angle :5.000000"


def test_config_state_tables():
    ens = ParticleEnsemble.create(10)
    std = ParticleState.from_config(StateConfig())
    dynamics, stdvec, bound = config_state(ens, (640, 480), std)

    np.testing.assert_array_equal(dynamics, 2 * np.eye(5))
    np.testing.assert_array_equal(stdvec, std.to_vector())
    np.testing.assert_array_equal(
        bound,
        [
            [0, 639, 0],
            [0, 479, 0],
            [1, 640, 0],
            [1, 480, 0],
            [0, 360, 1],
        ],
    )
    # every dimension is actively bounded
    assert np.all(bound[:, 0] != bound[:, 1])
    assert ens.dynamics is dynamics and ens.std is stdvec and ens.bound is bound
    # module-level model is untouched by configuration
    np.testing.assert_array_equal(DYNAMICS, 2 * np.eye(5))


def test_constant_velocity():
    out = constant_velocity([10, 20, 30, 40, 5], [8, 20, 31, 40, 0])
    np.testing.assert_array_equal(out, [12, 20, 29, 40, 10])
    # equivalent to the configured dynamics when the previous state is zero
    np.testing.assert_array_equal(DYNAMICS @ np.ones(5), constant_velocity(np.ones(5), np.zeros(5)))


def test_additional_bound_clamps_extent():
    ens = ParticleEnsemble.from_states([
        ParticleState(90, 10, 50, 20),
        ParticleState(10, 70, 20, 50),
        ParticleState(20, 20, 30, 30, 45),
    ])
    additional_bound(ens, (100, 80))

    assert get_state(ens, 0).width == 10
    assert get_state(ens, 0).height == 20
    assert get_state(ens, 1).width == 20
    assert get_state(ens, 1).height == 10
    assert get_state(ens, 2) == ParticleState(20, 20, 30, 30, 45)
