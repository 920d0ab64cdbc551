import numpy as np
from ensemble import Ensemble
from lorenz63 import Lorenz63Model
from noisy_observer import NoisyObserver


def make_params(**kwargs):
    transition = dict({'sigma': 10, 'rho': 28, 'beta': 8/3, 'scaling': 1, 'ministep_nt': None, 'ministep_dt': 0.05})
    transition.update(kwargs)
    return dict({'transition': transition, 'observation': dict({'noise_scale': 2, 'seed': 17})})

def test_Lorenz63_tendency():
    model = Lorenz63Model(make_params())
    assert np.allclose(model.tendency(0.0, np.zeros(3)), 0.0)
    assert np.allclose(model.tendency(0.0, np.array([1.0, 2.0, 3.0])), [10.0, 23.0, 2.0 - 8.0])

def test_Lorenz63_scaling():
    # Scaling the state by s scales the whole trajectory
    model = Lorenz63Model(make_params())
    scaled = Lorenz63Model(make_params(scaling=2))
    x0 = np.array([1.0, 1.0, 1.0])
    assert np.allclose(2*model.apply_to_raw(x0, 0.0, 0.3), scaled.apply_to_raw(2*x0, 0.0, 0.3))

def test_Lorenz63_ministeps():
    model = Lorenz63Model(make_params())
    assert model.num_ministeps(0.1) == 2
    assert model.num_ministeps(0.12) == 3
    fixed = Lorenz63Model(make_params(ministep_nt=7))
    assert fixed.num_ministeps(0.1) == 7

def test_Lorenz63_member_and_observer():
    params = make_params()
    model = Lorenz63Model(params)
    observer = NoisyObserver.from_keys(model.get_state_keys(), params=params)
    ens = Ensemble([dict({'state': np.array([1.0, 0.0, 0.0]) * (i+1)}) for i in range(4)])
    prior = model.apply(ens, 0.0, 0.1)
    assert model(ens.members[0], 0.0, 0.0)['state'] is ens.members[0]['state']
    obs = observer.apply(prior)
    clean,noisy = observer.split_clean_noisy(obs)
    assert np.allclose(clean.get_ensemble_matrix(), prior.get_ensemble_matrix())
    assert clean.get_ensemble_matrix().shape == noisy.get_ensemble_matrix().shape == (3, 4)
