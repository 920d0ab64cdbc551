"""Fusing observed data into an ensemble.

assimilate_data is the entry point. A filter of None leaves the prior as it is; anything
else must be an AssimilationFilter, which sees the ensembles only as matrices with one
column per member.
"""
from abc import ABC, abstractmethod
import time
import logging
import numpy as np
import scipy.linalg
from scipy import sparse as sps
from ensemble import Ensemble, get_ensemble_dicts
from ensemble_member import get_member_vector
from errors import ShapeError

logger = logging.getLogger(__name__)


def assimilate_data(filter, prior_state, prior_obs_clean, prior_obs_noisy, y_obs, log_data=None):
    if filter is None:
        return prior_state
    if prior_obs_noisy is None:
        prior_obs_noisy = prior_obs_clean
    return filter.assimilate(prior_state, prior_obs_clean, prior_obs_noisy, y_obs, log_data)


class AssimilationFilter(ABC):
    def assimilate(self, prior_state, prior_obs_clean, prior_obs_noisy, y_obs, log_data=None):
        X = prior_state.get_ensemble_matrix()
        Y_clean = prior_obs_clean.get_ensemble_matrix()
        Y_noisy = prior_obs_noisy.get_ensemble_matrix()
        if isinstance(y_obs, np.ndarray):
            y = y_obs.ravel()
        else:
            y = get_member_vector(prior_obs_clean.state_keys, y_obs)
        if not (X.shape[1] == Y_clean.shape[1] == Y_noisy.shape[1]):
            raise ShapeError(f"Ensembles have different sizes: {X.shape[1]}, {Y_clean.shape[1]}, {Y_noisy.shape[1]}")
        if Y_clean.shape != Y_noisy.shape or Y_clean.shape[0] != len(y):
            raise ShapeError(f"Observation shapes don't match: clean {Y_clean.shape}, noisy {Y_noisy.shape}, data {y.shape}")
        X_post = self.assimilate_matrices(X, Y_clean, Y_noisy, y, log_data)
        members = get_ensemble_dicts(prior_state, X_post)
        return Ensemble.like(prior_state, members, prior_state.state_keys)
    @abstractmethod
    def assimilate_matrices(self, X, Y_clean, Y_noisy, y, log_data=None):
        # X: (n, N) states; Y_clean, Y_noisy: (m, N) predicted observations; y: (m,) data
        pass


class EnKF(AssimilationFilter):
    """Stochastic ensemble Kalman filter.

    Each member is moved by the Kalman gain times its own innovation y - Y_noisy[:,j], so
    the noise in the predicted observations plays the part of the perturbed observations.

    R: observation noise variance (scalar), variances (vector) or covariance matrix (dense or scipy.sparse).
    params['assimilation'] options:
        include_noise_in_obs_covariance: estimate the observation covariance from the noisy
            predictions instead of using the clean ones plus R. Default False.
        multiplicative_prior_inflation: scale prior state deviations by 1 + this. Default 0.
    """
    def __init__(self, R, params=None):
        self.R = R
        config = dict() if params is None else params.get('assimilation', dict())
        self.derive_parameters(config)
        return
    def derive_parameters(self, config):
        self.include_noise_in_obs_covariance = config.get('include_noise_in_obs_covariance', False)
        self.multiplicative_prior_inflation = config.get('multiplicative_prior_inflation', 0.0)
        return
    def observation_covariance(self, m):
        R = self.R
        if sps.issparse(R):
            R = R.toarray()
        R = np.asarray(R, dtype=float)
        if R.ndim == 0:
            return float(R) * np.eye(m)
        if R.ndim == 1:
            return np.diag(R)
        if R.shape != (m, m):
            raise ShapeError(f"Observation covariance has shape {R.shape}, need {(m, m)}")
        return R
    def assimilate_matrices(self, X, Y_clean, Y_noisy, y, log_data=None):
        t_start = time.perf_counter()
        N = X.shape[1]
        if N < 2:
            raise ShapeError(f"Need at least two members to estimate covariances, got {N}")
        m = len(y)
        X_dev = X - np.mean(X, axis=1, keepdims=True)
        if self.multiplicative_prior_inflation != 0:
            X_dev *= 1 + self.multiplicative_prior_inflation
            X = np.mean(X, axis=1, keepdims=True) + X_dev
        if self.include_noise_in_obs_covariance:
            Y_dev = Y_noisy - np.mean(Y_noisy, axis=1, keepdims=True)
            C_yy = Y_dev @ Y_dev.T / (N - 1)
        else:
            Y_dev = Y_clean - np.mean(Y_clean, axis=1, keepdims=True)
            C_yy = Y_dev @ Y_dev.T / (N - 1) + self.observation_covariance(m)
        C_xy = X_dev @ Y_dev.T / (N - 1)
        innovations = y[:, None] - Y_noisy
        # X_post = X + C_xy C_yy^{-1} (y - Y_noisy)
        X_post = X + C_xy @ scipy.linalg.solve(C_yy, innovations, assume_a='sym')
        if log_data is not None:
            log_data['enkf_time'] = time.perf_counter() - t_start
        logger.debug(f"EnKF update of {N} members with {m} observations")
        return X_post
