import numpy as np
import pytest
from scipy import sparse as sps
from ensemble import Ensemble
from operators import KeyObserver
from noisy_observer import NoisyObserver
from assimilation import assimilate_data, EnKF
from errors import ShapeError
import utils


def make_prior(N=200, seed=0):
    rng = np.random.default_rng(seed)
    return Ensemble([dict({'state': 5.0 + rng.standard_normal(2), 'label': i}) for i in range(N)], ['state'])

def test_no_filter_returns_prior():
    prior = make_prior(5)
    obs = KeyObserver(['state']).apply(prior)
    assert assimilate_data(None, prior, obs, obs, dict({'state': np.zeros(2)})) is prior
    assert assimilate_data(None, prior, obs, None, dict({'state': np.zeros(2)})) is prior

def test_enkf_moves_toward_observation():
    prior = make_prior()
    observer = NoisyObserver.from_keys(['state'], noise_scale=0.5, seed=4)
    clean,noisy = observer.split_clean_noisy(observer.apply(prior))
    y_obs = dict({'state': np.array([0.0, 0.0])})
    log_data = dict()
    posterior = assimilate_data(EnKF(0.25), prior, clean, noisy, y_obs, log_data)
    assert 'enkf_time' in log_data
    assert posterior.state_keys == ['state']
    assert posterior.members[3]['label'] == 3
    prior_mean = utils.ensemble_mean(prior)['state']
    post_mean = utils.ensemble_mean(posterior)['state']
    # Prior variance 1 and noise variance 0.25: the gain is about 0.8
    assert np.all(np.abs(post_mean) < np.abs(prior_mean))
    assert np.allclose(post_mean, 0.2 * prior_mean, atol=0.5)
    assert np.all(utils.ensemble_var(posterior)['state'] < utils.ensemble_var(prior)['state'])

def test_covariance_forms_agree():
    prior = make_prior(50)
    observer = NoisyObserver.from_keys(['state'], noise_scale=0.5, seed=4)
    clean,noisy = observer.split_clean_noisy(observer.apply(prior))
    y = np.array([1.0, 2.0])
    results = []
    for R in (0.25, np.array([0.25, 0.25]), 0.25*np.eye(2), sps.diags([0.25, 0.25])):
        posterior = EnKF(R).assimilate(prior, clean, noisy, y)
        results.append(posterior.get_ensemble_matrix())
    for X in results[1:]:
        assert np.allclose(X, results[0])

def test_noise_in_obs_covariance_option():
    params = dict({'assimilation': dict({'include_noise_in_obs_covariance': True, 'multiplicative_prior_inflation': 0.1})})
    enkf = EnKF(0.25, params=params)
    assert enkf.include_noise_in_obs_covariance
    assert enkf.multiplicative_prior_inflation == 0.1
    prior = make_prior(50)
    observer = NoisyObserver.from_keys(['state'], noise_scale=0.5, seed=4)
    clean,noisy = observer.split_clean_noisy(observer.apply(prior))
    posterior = assimilate_data(enkf, prior, clean, noisy, dict({'state': np.zeros(2)}))
    assert len(posterior) == 50

def test_shape_checks():
    prior = make_prior(5)
    obs = KeyObserver(['state']).apply(prior)
    with pytest.raises(ShapeError):
        EnKF(1.0).assimilate(prior, obs, obs, np.zeros(3))
    with pytest.raises(ShapeError):
        EnKF(np.eye(3)).assimilate(prior, obs, obs, np.zeros(2))
    single = make_prior(1)
    single_obs = KeyObserver(['state']).apply(single)
    with pytest.raises(ShapeError):
        EnKF(1.0).assimilate(single, single_obs, single_obs, np.zeros(2))
