"""File-based checkpointing strategy for running an operator over an ensemble.

Several independent workers (separate jobs, sharing only the filesystem) each take their
divvy slice of the members and write each result to <work_path>_ensemble/<i>.pickle.
A member whose file already exists is skipped, so an interrupted run can just be started
again. A final call with ParallelWorker(1, 1), the closer, fills in anything still missing
and consolidates the member files into the ensemble saved at target_path.
"""
import logging
from os.path import exists
from os import makedirs
import psutil
import storage
from errors import AlreadyExistsError
from parallel import WorkerPool, divvy_among_workers, run_parallel

logger = logging.getLogger(__name__)


class FileBasedPartial:
    def __init__(self, target_path, work_path):
        self.target_path = target_path
        self.work_path = work_path
        return
    def __repr__(self):
        return f"FileBasedPartial({self.target_path!r}, {self.work_path!r})"
    def get_member_directory(self):
        return storage.member_directory(self.work_path)
    def check_target(self):
        for path in (self.target_path, storage.metadata_file(self.target_path)):
            if exists(path):
                raise AlreadyExistsError(f"Target path {path} already exists", context=dict(work_path=self.work_path))
        return


def is_closer(worker):
    return worker.worker_id == 1 and worker.num_workers == 1


class _MemberFileTask:
    # (i, em) -> True after computing and writing member i, False if it was already there
    def __init__(self, operator, folder):
        self.operator = operator
        self.folder = folder
        return
    def __call__(self, job):
        i,em = job
        if exists(storage.member_file(self.folder, i)):
            logger.debug(f"  - Member {i} already done, skipping")
            return False
        logger.debug(f"  - Doing ensemble member {i}")
        storage.save_member(self.folder, i, self.operator(em))
        return True


class _MemberFileTaskFactory:
    def __init__(self, operator, folder):
        self.operator = operator
        self.folder = folder
        return
    def __call__(self, seed):
        return _MemberFileTask(self.operator, self.folder)


def run_partial_operator(strategy, worker, operator, ensemble, reset_state_keys=False, ntasks=4):
    """Run this worker's share of operator over ensemble, checkpointing each member to disk.

    Returns (closer, num_completed): whether this call consolidated the results at
    strategy.target_path, and how many members it computed (skipped ones don't count).
    """
    strategy.check_target()
    folder = strategy.get_member_directory()
    makedirs(folder, exist_ok=True)
    N = len(ensemble.members)
    closer = is_closer(worker)
    if closer:
        start,end = 1,N
    else:
        start,end = divvy_among_workers(N, worker.worker_id, worker.num_workers)
    logger.info(f"Worker {worker.worker_id} of {worker.num_workers} doing members {start} through {end}")
    jobs = [(i, ensemble.members[i-1]) for i in range(start, end+1)]
    done = [None] * len(jobs)
    with WorkerPool(ntasks, kind='thread') as pool:
        run_parallel(_MemberFileTaskFactory(operator, folder), jobs, done, pool)
    num_completed = sum(done)
    memusage_GB = psutil.Process().memory_info().rss / 1e9
    logger.debug(f"Worker {worker.worker_id} computed {num_completed} members; memory usage {memusage_GB:3.3f} GB")
    if closer:
        logger.info(f"Consolidating {folder} into {strategy.target_path}")
        storage.save_ensemble(ensemble, strategy.target_path, existing_member_directory=folder, reset_state_keys=reset_state_keys)
    return closer,num_completed
