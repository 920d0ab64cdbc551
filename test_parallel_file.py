import os
from os.path import join, exists
import numpy as np
import pytest
from ensemble import Ensemble
from operators import Operator
from parallel import ParallelWorker
from parallel_file import FileBasedPartial, run_partial_operator
from storage import load_ensemble, save_ensemble
from errors import AlreadyExistsError, WorkerFailure


class Square(Operator):
    state_keys = ['state']
    def apply_to_member(self, member):
        return dict({'state': member['state']**2})

class FailAfterThree(Operator):
    state_keys = ['state']
    def apply_to_member(self, member):
        if member['i'] > 3:
            raise RuntimeError(f"member {member['i']} failed")
        return dict({'state': member['state']**2})


def make_ensemble(N=10, monolithic_storage=True):
    return Ensemble([dict({'state': np.array([float(i), 1.0]), 'i': i}) for i in range(N)], ['state'],
            monolithic_storage=monolithic_storage)

@pytest.mark.parametrize('monolithic_storage', [True, False])
def test_single_closer_run(tmp_path, monolithic_storage):
    ens = make_ensemble(monolithic_storage=monolithic_storage)
    strategy = FileBasedPartial(join(tmp_path, 'out'), join(tmp_path, 'work'))
    closer,num_completed = run_partial_operator(strategy, ParallelWorker(1, 1), Square(), ens)
    assert closer
    assert num_completed == 10
    out = load_ensemble(join(tmp_path, 'out'))
    assert out == Square().apply(ens)
    assert not exists(join(tmp_path, 'work_ensemble'))

def test_two_phase_run(tmp_path):
    ens = make_ensemble()
    strategy = FileBasedPartial(join(tmp_path, 'out'), join(tmp_path, 'work'))
    num_workers = 3
    total = 0
    for worker_id in range(1, num_workers+1):
        closer,num_completed = run_partial_operator(strategy, ParallelWorker(num_workers, worker_id), Square(), ens)
        assert not closer
        total += num_completed
    assert total == 10
    assert sorted(os.listdir(join(tmp_path, 'work_ensemble'))) == sorted(f"{i}.pickle" for i in range(1, 11))
    assert not exists(join(tmp_path, 'out.pickle'))
    closer,num_completed = run_partial_operator(strategy, ParallelWorker(1, 1), Square(), ens)
    assert closer
    assert num_completed == 0
    assert load_ensemble(join(tmp_path, 'out')) == Square().apply(ens)

def test_resume_after_failure(tmp_path):
    ens = make_ensemble()
    strategy = FileBasedPartial(join(tmp_path, 'out'), join(tmp_path, 'work'))
    with pytest.raises(WorkerFailure):
        run_partial_operator(strategy, ParallelWorker(1, 1), FailAfterThree(), ens, ntasks=1)
    # Members 0..3 were written before the failure; nothing was consolidated
    done = set(os.listdir(join(tmp_path, 'work_ensemble')))
    assert {f"{i}.pickle" for i in range(1, 5)} <= done
    assert not exists(join(tmp_path, 'out.pickle'))
    closer,num_completed = run_partial_operator(strategy, ParallelWorker(1, 1), Square(), ens)
    assert closer
    assert num_completed == 10 - len(done)
    assert load_ensemble(join(tmp_path, 'out')) == Square().apply(ens)

def test_existing_target(tmp_path):
    ens = make_ensemble(2)
    save_ensemble(ens, join(tmp_path, 'out'))
    strategy = FileBasedPartial(join(tmp_path, 'out'), join(tmp_path, 'work'))
    with pytest.raises(AlreadyExistsError):
        run_partial_operator(strategy, ParallelWorker(1, 1), Square(), ens)

def test_reset_state_keys(tmp_path):
    class Observe(Operator):
        state_keys = ['obs']
        def apply_to_member(self, member):
            return dict({'obs': member['state'][0], 'extra': 1.0})
    ens = make_ensemble(4)
    strategy = FileBasedPartial(join(tmp_path, 'out'), join(tmp_path, 'work'))
    run_partial_operator(strategy, ParallelWorker(1, 1), Observe(), ens, reset_state_keys=True)
    out = load_ensemble(join(tmp_path, 'out'))
    assert out.state_keys == ['extra', 'obs']
    assert [em['obs'] for em in out.members] == [0.0, 1.0, 2.0, 3.0]
