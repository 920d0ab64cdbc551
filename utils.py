import numpy as np

def values_equal(a, b):
    # Recursive equality that tolerates numpy arrays anywhere inside the values
    if isinstance(a, dict) or isinstance(b, dict):
        if not (isinstance(a, dict) and isinstance(b, dict)):
            return False
        if set(a.keys()) != set(b.keys()):
            return False
        return all(values_equal(a[key], b[key]) for key in a.keys())
    if isinstance(a, np.ndarray) or isinstance(b, np.ndarray):
        if isinstance(a, np.ndarray) and a.dtype == object:
            b = np.asarray(b, dtype=object)
            return a.shape == b.shape and all(values_equal(x, y) for (x, y) in zip(a.flat, b.flat))
        try:
            return np.array_equal(a, b)
        except (TypeError, ValueError):
            return False
    if isinstance(a, (list, tuple)) or isinstance(b, (list, tuple)):
        if not (isinstance(a, (list, tuple)) and isinstance(b, (list, tuple))):
            return False
        return len(a) == len(b) and all(values_equal(x, y) for (x, y) in zip(a, b))
    return bool(a == b)

def members_equal(members0, members1):
    # Works for two single members or two sequences of members
    if isinstance(members0, dict) or isinstance(members1, dict):
        return values_equal(members0, members1)
    members0,members1 = list(members0),list(members1)
    if len(members0) != len(members1):
        return False
    return all(values_equal(m0, m1) for (m0, m1) in zip(members0, members1))

def concat_dict_of_lists(d0, d1):
    # d0 and d1 must be two dictionaries of lists, corresponding exactly
    assert set(d0.keys()) == set(d1.keys())
    for key in d0.keys():
        d0[key] += d1[key]
    return

# ------------ Ensemble statistics -----------------
def _stack_key(ensemble, key):
    return np.stack([np.asarray(em[key], dtype=float) for em in ensemble.members])

def ensemble_mean(ensemble, state_keys=None):
    if state_keys is None:
        state_keys = ensemble.state_keys
    return dict({key: np.mean(_stack_key(ensemble, key), axis=0) for key in state_keys})

def ensemble_var(ensemble, state_keys=None, ddof=1):
    # Unbiased by default, matching the sample variance across members
    if state_keys is None:
        state_keys = ensemble.state_keys
    return dict({key: np.var(_stack_key(ensemble, key), axis=0, ddof=ddof) for key in state_keys})

def ensemble_std(ensemble, state_keys=None, ddof=1):
    var = ensemble_var(ensemble, state_keys, ddof=ddof)
    return dict({key: np.sqrt(v) for (key, v) in var.items()})

def rmse(a, b):
    return np.sqrt(np.mean((np.asarray(a, dtype=float) - np.asarray(b, dtype=float))**2))
