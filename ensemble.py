import numpy as np
import copy as copylib
from ensemble_member import EnsembleMember, get_member_vector, set_member_vector
from errors import ShapeError
import utils


class Ensemble:
    """Ordered collection of model states (members) plus the keys used to vectorize them.

    members: list of dicts, one per ensemble member.
    state_keys: keys of each member included when converting to and from vectors;
        other keys are carried along but ignored in computations. Defaults to the
        sorted keys of the first member.
    monolithic_storage: True saves the whole ensemble in one file, False saves each
        member to its own file. Has no effect on in-memory computations.
    """
    def __init__(self, members, state_keys=None, monolithic_storage=True):
        self.members = list(members)
        if state_keys is None:
            state_keys = sorted(self.members[0].keys()) if len(self.members) > 0 else []
        self.state_keys = list(state_keys)
        self.monolithic_storage = bool(monolithic_storage)
        for i_mem,em in enumerate(self.members):
            for key in self.state_keys:
                if key not in em:
                    raise KeyError(f"Member {i_mem} is missing state key {key!r}")
        return
    @classmethod
    def like(cls, ensemble, members, state_keys=None):
        # New ensemble with the given ensemble's parameters (just monolithic_storage for now)
        return cls(members, state_keys, monolithic_storage=ensemble.monolithic_storage)
    @classmethod
    def derived(cls, ensemble, members):
        # Keep the state keys when the new members still carry them; otherwise take them from the new members
        if all(key in em for em in members for key in ensemble.state_keys):
            return cls.like(ensemble, members, ensemble.state_keys)
        return cls.like(ensemble, members)
    def __repr__(self):
        return f"Ensemble({self.members!r}, {self.state_keys!r}, {self.monolithic_storage!r})"
    def __len__(self):
        return len(self.members)
    def __eq__(self, other):
        if not isinstance(other, Ensemble):
            return NotImplemented
        return (self.state_keys == other.state_keys
                and self.monolithic_storage == other.monolithic_storage
                and utils.members_equal(self.members, other.members))
    __hash__ = None
    def get_ensemble_size(self):
        return len(self.members)
    def get_ensemble_members(self):
        return self.members

    # --------------- Merging -----------------
    def _check_same_size(self, other):
        if len(self.members) != len(other.members):
            raise ShapeError(f"Can't merge ensembles of sizes {len(self.members)} and {len(other.members)}")
    def merge(self, other):
        # Values from other win on overlap; state keys are re-inferred from the merged members
        self._check_same_size(other)
        members = [EnsembleMember(em).merged(em1) for (em, em1) in zip(self.members, other.members)]
        return Ensemble.like(self, members)
    def merge_inplace(self, other):
        # Does not change the state keys.
        self._check_same_size(other)
        for (em, em1) in zip(self.members, other.members):
            em.update(em1)
        return self

    # --------------- Vector and matrix forms -----------------
    def get_member_vector(self, member):
        return get_member_vector(self.state_keys, member)
    def set_member_vector(self, member, data):
        return set_member_vector(self.state_keys, member, data)
    def get_ensemble_matrix(self):
        return get_ensemble_matrix(self.state_keys, self.members)
    def get_ensemble_dicts(self, matrix):
        return get_ensemble_dicts(self, matrix)


def get_ensemble_matrix(state_keys, members):
    # One column per member
    members = list(members)
    if len(members) == 0:
        return np.zeros((0, 0))
    columns = [get_member_vector(state_keys, em) for em in members]
    lengths = set(len(c) for c in columns)
    if len(lengths) > 1:
        raise ShapeError(f"Members vectorize to different lengths: {sorted(lengths)}")
    return np.stack(columns, axis=1)

def get_ensemble_dicts(ensemble, matrix):
    # Inverse of get_ensemble_matrix, using deep copies of the ensemble's members as templates
    matrix = np.asarray(matrix)
    if matrix.ndim != 2 or matrix.shape[1] != len(ensemble.members):
        raise ShapeError(f"Expected a matrix with {len(ensemble.members)} columns, got shape {matrix.shape}")
    members = copylib.deepcopy(ensemble.members)
    for (em, data) in zip(members, matrix.T):
        set_member_vector(ensemble.state_keys, em, data)
    return members
