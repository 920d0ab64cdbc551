import atexit
import copy as copylib
import logging
from numpy.random import default_rng
from operators import Operator, NoisyOperator, _derived_ensemble
from errors import UnsupportedBackendError, WorkerFailure
from parallel import WorkerPool, divvy_among_workers, run_parallel

logger = logging.getLogger(__name__)

DISTRIBUTED_TYPES = ('pmap', 'distributed_for', 'asyncmap')
# Only the job-queue backend runs one long-lived task per worker, which is where each
# worker's noise stream gets its own seed.
NOISY_DISTRIBUTED_TYPES = ('asyncmap',)

_default_pool = None

def default_worker_pool():
    # Shared process pool for operators built without one; shut down at interpreter exit
    global _default_pool
    if _default_pool is None:
        _default_pool = WorkerPool(kind='process')
        atexit.register(close_default_worker_pool)
    return _default_pool

def close_default_worker_pool():
    global _default_pool
    if _default_pool is not None:
        _default_pool.close()
        _default_pool = None
    return


class _MemberTask:
    # Picklable per-member function: (i, em) -> op(em, *args)
    def __init__(self, op, args, kwargs):
        self.op = op
        self.args = args
        self.kwargs = kwargs
        return
    def __call__(self, job):
        i,em = job
        logger.debug(f"  - Doing ensemble member {i+1}")
        return self.op(em, *self.args, **self.kwargs)


class _SliceTask(_MemberTask):
    # One divvy slice per call: returns [(i, op(em)) ...] for the slice
    def __call__(self, job):
        start,members = job
        return [(start + j, _MemberTask.__call__(self, (start + j, em))) for (j, em) in enumerate(members)]


class _TaskFactory:
    # Builds the per-member function inside each worker task of the job-queue backend
    def __init__(self, op, args, kwargs):
        self.op = op
        self.args = args
        self.kwargs = kwargs
        return
    def __call__(self, seed):
        op = self.op
        if seed is not None:
            # Thread workers share memory, so each gets its own copy to reseed
            op = copylib.deepcopy(op)
            op.xor_seed(seed)
        return _MemberTask(op, self.args, self.kwargs)


class DistributedOperator(Operator):
    """Apply an operator to ensemble members concurrently on a pool of workers.

    distributed_type selects the backend:
      'pmap': one task per member, gathered back in order by the pool.
      'distributed_for': each worker gets a contiguous divvy slice; results are re-sorted by index.
      'asyncmap': bounded job/result channels and long-lived worker tasks (see parallel.run_parallel).
    All backends give the same ordering. Noisy operators are only allowed with 'asyncmap'.
    chunksize is passed to the pool's map ('pmap' only); buffer_size bounds the job and
    result channels ('asyncmap' only).
    """
    def __init__(self, op, worker_pool=None, distributed_type='asyncmap', seed=None, buffer_size=32, chunksize=None):
        if distributed_type not in DISTRIBUTED_TYPES:
            raise ValueError(f"Unknown distributed type: {distributed_type}")
        if buffer_size < 1:
            raise ValueError(f"buffer_size must be positive, got {buffer_size}")
        self.op = op
        self.worker_pool = worker_pool
        self.distributed_type = distributed_type
        self.buffer_size = buffer_size
        self.chunksize = chunksize
        self.rng = default_rng(seed)
        return
    def get_state_keys(self):
        return self.op.get_state_keys()
    def get_pool(self):
        return self.worker_pool if self.worker_pool is not None else default_worker_pool()
    def is_noisy(self):
        return isinstance(self.op, NoisyOperator)
    def apply_to_member(self, member, *args, **kwargs):
        return self.op(member, *args, **kwargs)
    def apply_to_raw(self, state, *args, **kwargs):
        return self.op.apply_to_raw(state, *args, **kwargs)
    def apply(self, ensemble, *args, **kwargs):
        pool = self.get_pool()
        seeds = None
        if self.is_noisy():
            if self.distributed_type not in NOISY_DISTRIBUTED_TYPES:
                raise UnsupportedBackendError(f"Distributed type {self.distributed_type} does not support noisy operators")
            seeds = [int(s) for s in self.rng.integers(0, 2**63, size=pool.num_workers)]
        members = getattr(self, f'_apply_{self.distributed_type}')(pool, ensemble.members, args, kwargs, seeds)
        return _derived_ensemble(ensemble, members)
    def _apply_pmap(self, pool, members, args, kwargs, seeds):
        func = _MemberTask(self.op, args, kwargs)
        try:
            return pool.map(func, list(enumerate(members)), chunksize=self.chunksize)
        except Exception as exc:
            raise WorkerFailure(f"Parallel worker failed: {exc!r}") from exc
    def _apply_distributed_for(self, pool, members, args, kwargs, seeds):
        func = _SliceTask(self.op, args, kwargs)
        slices = []
        for w in range(pool.num_workers):
            s,e = divvy_among_workers(len(members), w+1, pool.num_workers)
            logger.debug(f"Worker {w+1} gets ensemble members {s} through {e}")
            slices.append((s-1, members[s-1:e]))
        try:
            results = [r for slice_results in pool.map(func, slices) for r in slice_results]
        except Exception as exc:
            raise WorkerFailure(f"Parallel worker failed: {exc!r}") from exc
        results.sort(key=lambda r: r[0])
        return [r[1] for r in results]
    def _apply_asyncmap(self, pool, members, args, kwargs, seeds):
        # Each job carries its own index so the member task can report it
        output = [None] * len(members)
        return run_parallel(_TaskFactory(self.op, args, kwargs), list(enumerate(members)), output, pool,
                buffer_size=self.buffer_size, seeds=seeds)
    def split_clean_noisy(self, ensemble_obs):
        return self.op.split_clean_noisy(ensemble_obs)
    def xor_seed(self, seed_mod):
        return self.op.xor_seed(seed_mod)
