import copy as copylib
import numpy as np
import pytest
from ensemble import Ensemble
from noisy_observer import NoisyObserver
from operators import KeyObserver


def make_ensemble(N=4):
    return Ensemble([dict({'state': np.full(3, float(i)), 'other': i}) for i in range(N)], ['state'])

def test_state_keys():
    obs = NoisyObserver.from_keys(['state'], noise_scale=1.0, seed=5)
    assert obs.get_state_keys() == ['state_noisy', 'state']
    only = NoisyObserver.from_keys(['state'], noise_scale=1.0, seed=5, only_noisy=True)
    assert only.get_state_keys() == ['state']

def test_params_section():
    params = dict({'observation': dict({'noise_scale': 2.0, 'seed': 11})})
    obs = NoisyObserver(KeyObserver(['state']), params=params)
    assert obs.noise_scale == 2.0
    assert obs.seed == 11
    assert obs.only_noisy is False

def test_seed_zero_draws_a_seed():
    obs = NoisyObserver.from_keys(['state'], noise_scale=1.0, seed=0)
    assert obs.seed != 0

def test_noise_added_to_copy():
    ens = make_ensemble()
    obs = NoisyObserver.from_keys(['state'], noise_scale=0.5, seed=1)
    ens_obs = obs.apply(ens)
    for (em, em_obs) in zip(ens.members, ens_obs.members):
        assert np.array_equal(em_obs['state'], em['state'])
        assert not np.array_equal(em_obs['state_noisy'], em['state'])
        assert em_obs['state_noisy'] is not em_obs['state']
    assert np.array_equal(ens.members[1]['state'], np.full(3, 1.0))

def test_same_seed_same_noise():
    ens = make_ensemble()
    obs0 = NoisyObserver.from_keys(['state'], noise_scale=1.0, seed=42)
    obs1 = NoisyObserver.from_keys(['state'], noise_scale=1.0, seed=42)
    assert obs0.apply(ens) == obs1.apply(ens)

def test_xor_seed_resets_stream():
    ens = make_ensemble()
    obs = NoisyObserver.from_keys(['state'], noise_scale=1.0, seed=42)
    obs.xor_seed(7)
    out0 = obs.apply(ens)
    out1 = obs.apply(ens)
    assert out0 != out1
    obs.xor_seed(7)
    assert obs.apply(ens) == out0
    obs.xor_seed(8)
    assert obs.apply(ens) != out0
    assert obs.seed == 42

def test_same_seed_same_xor_same_noise():
    ens = make_ensemble()
    obs0 = NoisyObserver.from_keys(['state'], noise_scale=1.0, seed=42)
    obs1 = NoisyObserver.from_keys(['state'], noise_scale=1.0, seed=42)
    obs0.apply(ens)
    obs0.xor_seed(0x375ef928)
    obs1.xor_seed(0x375ef928)
    assert obs0.apply(ens) == obs1.apply(ens)
    obs2 = NoisyObserver.from_keys(['state'], noise_scale=1.0, seed=43)
    obs2.xor_seed(0x375ef928)
    assert obs2.apply(ens) != obs1.apply(ens)

def test_split_clean_noisy():
    ens = make_ensemble()
    obs = NoisyObserver.from_keys(['state'], noise_scale=1.0, seed=3)
    ens_obs = obs.apply(ens)
    clean,noisy = obs.split_clean_noisy(ens_obs)
    assert clean.state_keys == ['state'] and noisy.state_keys == ['state']
    for i in range(len(ens)):
        assert np.array_equal(clean.members[i]['state'], ens_obs.members[i]['state'])
        assert np.array_equal(noisy.members[i]['state'], ens_obs.members[i]['state_noisy'])

def test_only_noisy():
    ens = make_ensemble()
    obs = NoisyObserver.from_keys(['state'], noise_scale=1.0, seed=3, only_noisy=True)
    ens_obs = obs.apply(ens)
    assert 'state_noisy' not in ens_obs.members[0]
    assert not np.array_equal(ens_obs.members[0]['state'], ens.members[0]['state'])
    with pytest.raises(ValueError):
        obs.split_member(ens_obs.members[0])

def test_per_key_noise_scale():
    member = dict({'a': np.zeros(100), 'b': np.zeros(100)})
    obs = NoisyObserver.from_keys(['a', 'b'], noise_scale=dict({'a': 0.0, 'b': 1.0}), seed=9)
    out = obs(member)
    assert np.array_equal(out['a_noisy'], np.zeros(100))
    assert np.std(out['b_noisy']) > 0.5

def test_integer_states_get_float_noise():
    obs = NoisyObserver.from_keys(['state'], noise_scale=0.1, seed=9)
    out = obs(dict({'state': np.array([1, 2, 3])}))
    assert out['state'].dtype.kind == 'i'
    assert out['state_noisy'].dtype.kind == 'f'
    assert not np.array_equal(out['state_noisy'], [1.0, 2.0, 3.0])

def test_deepcopy_keeps_stream():
    obs = NoisyObserver.from_keys(['state'], noise_scale=1.0, seed=3)
    obs_copy = copylib.deepcopy(obs)
    member = dict({'state': np.zeros(3)})
    assert np.array_equal(obs(member)['state_noisy'], obs_copy(member)['state_noisy'])
