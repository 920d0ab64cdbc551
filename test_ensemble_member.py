import numpy as np
import pytest
from ensemble_member import EnsembleMember, get_vector, set_vector, get_member_vector, set_member_vector
from errors import ShapeError


def test_member_vector_order_follows_state_keys():
    member = dict({'a': 1.5, 'b': np.array([[1.0, 2.0], [3.0, 4.0]]), 'c': 'ignored'})
    v = get_member_vector(['b', 'a'], member)
    assert np.array_equal(v, [1.0, 2.0, 3.0, 4.0, 1.5])
    v = get_member_vector(['a', 'b'], member)
    assert np.array_equal(v, [1.5, 1.0, 2.0, 3.0, 4.0])

def test_nested_values_flatten_depth_first():
    member = dict({'x': [np.array([1.0, 2.0]), np.array([3.0])], 'y': dict({'p': 4.0, 'q': np.array([5.0, 6.0])})})
    assert np.array_equal(get_member_vector(['x', 'y'], member), [1, 2, 3, 4, 5, 6])
    # Ragged arrays of arrays are fine
    ragged = np.empty(2, dtype=object)
    ragged[0] = np.array([1.0])
    ragged[1] = np.array([2.0, 3.0])
    assert np.array_equal(get_vector(ragged), [1, 2, 3])

def test_set_member_vector_writes_back():
    member = dict({'a': 1.0, 'b': np.zeros((2, 2)), 'n': dict({'p': 0.0, 'q': [np.zeros(2)]})})
    data = np.arange(1, 9, dtype=float)
    b = member['b']
    out = set_member_vector(['a', 'b', 'n'], member, data)
    assert out is member
    assert member['a'] == 1.0
    # Arrays are overwritten in place, in C order
    assert member['b'] is b
    assert np.array_equal(member['b'], [[2.0, 3.0], [4.0, 5.0]])
    assert member['n']['p'] == 6.0
    assert np.array_equal(member['n']['q'][0], [7.0, 8.0])
    assert np.array_equal(get_member_vector(['a', 'b', 'n'], member), data)

def test_set_member_vector_length_mismatch():
    member = dict({'a': np.zeros(3)})
    with pytest.raises(ShapeError):
        set_member_vector(['a'], member, np.zeros(4))
    with pytest.raises(ShapeError):
        set_member_vector(['a'], member, np.zeros(2))

def test_unsupported_value():
    with pytest.raises(ShapeError):
        get_member_vector(['a'], dict({'a': 'text'}))

def test_set_vector_scalar_and_tuple():
    assert set_vector(2.0, np.array([7.0])) == 7.0
    out = set_vector((1.0, np.zeros(2)), np.array([3.0, 4.0, 5.0]))
    assert isinstance(out, tuple)
    assert out[0] == 3.0
    assert np.array_equal(out[1], [4.0, 5.0])

def test_ensemble_member_clone_and_merge():
    em = EnsembleMember({'state': np.array([1.0, 2.0]), 'k': 1})
    em1 = em.clone()
    em1['state'][0] = 10.0
    assert em['state'][0] == 1.0
    merged = em.merged(dict({'k': 2, 'obs': 3.0}))
    assert merged['k'] == 2 and merged['obs'] == 3.0
    assert em['k'] == 1
    assert isinstance(merged, EnsembleMember)
