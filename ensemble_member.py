import numbers
import copy as copylib
import numpy as np
from errors import ShapeError


class EnsembleMember(dict):
    # One candidate state: field name -> scalar, array, list of arrays, or nested dict.
    # Members are plain mappings everywhere else; this class only adds conveniences.
    def clone(self):
        return EnsembleMember(copylib.deepcopy(dict(self)))
    def merged(self, other):
        # New member with other's values winning on overlap
        return EnsembleMember({**self, **other})
    def __repr__(self):
        return f"EnsembleMember({dict.__repr__(self)})"


def _is_numeric_array(a):
    return isinstance(a, np.ndarray) and (np.issubdtype(a.dtype, np.number) or a.dtype == np.bool_)

def _get_vector(a):
    # Flatten one field value to a list of 1-d arrays
    if isinstance(a, dict):
        return [v for key in a for v in _get_vector(a[key])]
    if _is_numeric_array(a):
        return [a.reshape(-1)]
    if isinstance(a, np.ndarray) and a.dtype == object:
        return [v for elem in a.flat for v in _get_vector(elem)]
    if isinstance(a, (list, tuple)):
        return [v for elem in a for v in _get_vector(elem)]
    if isinstance(a, numbers.Number):
        return [np.atleast_1d(np.asarray(a))]
    raise ShapeError(f"Can't vectorize value of type {type(a).__name__}")

def get_vector(value):
    parts = _get_vector(value)
    if len(parts) == 0:
        return np.zeros(0)
    return np.concatenate(parts)

def _set_vector(x, v, idx):
    # Write v[idx:] into x; returns the (possibly new) value and the next index
    n = len(v)
    if isinstance(x, dict):
        for key in x:
            x[key], idx = _set_vector(x[key], v, idx)
        return x, idx
    if _is_numeric_array(x):
        if idx + x.size > n:
            raise ShapeError(f"Member needs at least {idx + x.size} values but vector has length {n}",
                    context=dict(consumed=idx, provided=n))
        x[...] = np.reshape(v[idx:idx+x.size], x.shape)
        return x, idx + x.size
    if isinstance(x, np.ndarray) and x.dtype == object:
        for j in np.ndindex(x.shape):
            x[j], idx = _set_vector(x[j], v, idx)
        return x, idx
    if isinstance(x, list):
        for j in range(len(x)):
            x[j], idx = _set_vector(x[j], v, idx)
        return x, idx
    if isinstance(x, tuple):
        elems = []
        for elem in x:
            elem, idx = _set_vector(elem, v, idx)
            elems.append(elem)
        return type(x)(elems), idx
    if isinstance(x, numbers.Number):
        if idx >= n:
            raise ShapeError(f"Member needs at least {idx + 1} values but vector has length {n}",
                    context=dict(consumed=idx, provided=n))
        return v[idx], idx + 1
    raise ShapeError(f"Can't assign vector to value of type {type(x).__name__}")

def set_vector(value, data):
    value, idx = _set_vector(value, np.asarray(data).reshape(-1), 0)
    return value


def get_member_vector(state_keys, member):
    # Concatenate the flattened values at state_keys, in order
    parts = [v for key in state_keys for v in _get_vector(member[key])]
    if len(parts) == 0:
        return np.zeros(0)
    return np.concatenate(parts)

def set_member_vector(state_keys, member, data):
    # Inverse of get_member_vector. Arrays are overwritten in place, scalars replaced.
    data = np.asarray(data).reshape(-1)
    n = len(data)
    idx = 0
    for key in state_keys:
        member[key], idx = _set_vector(member[key], data, idx)
    if idx != n:
        raise ShapeError(f"Member has {idx} values but tried to assign vector of length {n}",
                context=dict(consumed=idx, provided=n))
    return member
