from abc import ABC, abstractmethod
import copy as copylib
from ensemble import Ensemble
from ensemble_member import EnsembleMember


class Operator(ABC):
    # A per-member transform (transition or observation). Subclasses implement
    # apply_to_member, and apply_to_raw when they also act on bare numeric states.
    state_keys = []
    def get_state_keys(self):
        # Keys of the members this operator produces
        return list(self.state_keys)
    @abstractmethod
    def apply_to_member(self, member, *args, **kwargs):
        pass
    def apply_to_raw(self, state, *args, **kwargs):
        raise NotImplementedError(f"{type(self).__name__} does not operate on raw states")
    def __call__(self, member, *args, **kwargs):
        return self.apply_to_member(member, *args, **kwargs)
    def apply(self, ensemble, *args, **kwargs):
        members = [self.apply_to_member(em, *args, **kwargs) for em in ensemble.members]
        return _derived_ensemble(ensemble, members)
    def apply_inplace(self, ensemble, *args, **kwargs):
        # Note: does not change the state keys.
        for em in ensemble.members:
            em.update(self.apply_to_member(em, *args, **kwargs))
        return ensemble
    def split_clean_noisy(self, ensemble_obs):
        # Nothing to split without noise
        return ensemble_obs, ensemble_obs


class NoisyOperator(Operator):
    @abstractmethod
    def xor_seed(self, seed_mod):
        pass
    @abstractmethod
    def split_member(self, obs):
        # Return (clean, noisy) for one member's output
        pass
    def split_clean_noisy(self, ensemble_obs):
        pairs = [self.split_member(em) for em in ensemble_obs.members]
        ensemble_clean = Ensemble.like(ensemble_obs, [p[0] for p in pairs])
        ensemble_noisy = Ensemble.like(ensemble_obs, [p[1] for p in pairs])
        return ensemble_clean, ensemble_noisy


def _derived_ensemble(ensemble, members):
    # Outputs that are the input member objects themselves get copied, so the input stays untouched
    members = [em if em is not old else EnsembleMember(em).clone() for (em, old) in zip(members, ensemble.members)]
    return Ensemble.derived(ensemble, members)

def apply_operator(op, ensemble, *args, **kwargs):
    return op.apply(ensemble, *args, **kwargs)

def apply_operator_inplace(op, ensemble, *args, **kwargs):
    return op.apply_inplace(ensemble, *args, **kwargs)

def split_clean_noisy(op, ensemble_obs):
    return op.split_clean_noisy(ensemble_obs)

def xor_seed(op, seed_mod):
    return op.xor_seed(seed_mod)


class KeyObserver(Operator):
    # Copy the given state keys out of each member
    def __init__(self, state_keys):
        self.state_keys = list(state_keys)
        return
    def apply_to_member(self, member, *args, **kwargs):
        return dict({key: copylib.deepcopy(member[key]) for key in self.state_keys})


class IndexObserver(Operator):
    # Apply op, then keep element i of each of op's state keys
    def __init__(self, op, i):
        self.op = op
        self.i = i
        self.state_keys = op.get_state_keys()
        return
    def apply_to_member(self, member, *args, **kwargs):
        em = dict(self.op(member, *args, **kwargs))
        for key in self.op.get_state_keys():
            em[key] = em[key][self.i]
        return em
