"""Observation operator that perturbs another operator's output with Gaussian noise.

The noise comes from a private generator so that each parallel worker can be given
an independent but reproducible stream with xor_seed.
"""
import copy as copylib
import numpy as np
from numpy.random import default_rng
from ensemble_member import get_vector, set_vector
from operators import NoisyOperator, KeyObserver


class NoisyObserver(NoisyOperator):
    def __init__(self, op, params=None, noise_scale=None, seed=None, only_noisy=None, rng=None):
        self.op = op
        config = dict() if params is None else params.get('observation', dict())
        self.derive_parameters(config, noise_scale, seed, only_noisy)
        if rng is None:
            rng = config.get('rng', None)
        if rng is None:
            rng = default_rng(self.seed)
        self.rng = rng
        self.state_keys = op.get_state_keys()
        if not self.only_noisy:
            self.state_keys = [f'{key}_noisy' for key in op.get_state_keys()] + self.state_keys
        return
    def derive_parameters(self, config, noise_scale, seed, only_noisy):
        self.noise_scale = config['noise_scale'] if noise_scale is None else noise_scale
        self.seed = config.get('seed', 0) if seed is None else seed
        if self.seed == 0:
            self.seed = int(default_rng().integers(1, 2**63))
        self.only_noisy = config.get('only_noisy', False) if only_noisy is None else only_noisy
        return
    @classmethod
    def from_keys(cls, state_keys, params=None, **kwargs):
        return cls(KeyObserver(state_keys), params=params, **kwargs)
    def get_underlying_operator(self):
        return self.op
    def xor_seed(self, seed_mod):
        self.rng = default_rng(self.seed ^ int(seed_mod))
        return
    def scale_for(self, key):
        if isinstance(self.noise_scale, dict):
            return self.noise_scale[key]
        return self.noise_scale
    def apply_to_member(self, member, *args, **kwargs):
        member = self.op(member, *args, **kwargs)
        obs = type(member)()
        for key in self.op.get_state_keys():
            state = member[key]
            obs[key] = copylib.deepcopy(state)
            noisy_key = key if self.only_noisy else f'{key}_noisy'
            noisy = get_vector(state)
            noisy = noisy + self.scale_for(key) * self.rng.standard_normal(noisy.shape)
            obs[noisy_key] = set_vector(_float_template(state), noisy)
        return obs
    def split_member(self, obs):
        if self.only_noisy:
            raise ValueError("Observer only keeps noisy values, so there is nothing clean to split off")
        obs_clean = type(obs)()
        obs_noisy = type(obs)()
        for key in self.op.get_state_keys():
            obs_clean[key] = obs[key]
            obs_noisy[key] = obs[f'{key}_noisy']
        return obs_clean, obs_noisy


def _float_template(state):
    # Deep copy with integer arrays promoted, so the noise isn't truncated on write-back
    if isinstance(state, np.ndarray) and np.issubdtype(state.dtype, np.integer):
        return state.astype(float)
    if isinstance(state, dict):
        return type(state)({key: _float_template(v) for (key, v) in state.items()})
    if isinstance(state, list):
        return [_float_template(v) for v in state]
    return copylib.deepcopy(state)
