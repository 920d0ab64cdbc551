"""Shared pieces of the parallel strategies.

divvy_among_workers gives the static partition used by the partitioned backends and
by the file-based strategy. run_parallel is the job-queue model: a bounded jobs
channel feeds (index, item) pairs to a fixed set of long-lived worker tasks, and a
bounded results channel carries (index, output) back to the coordinator, which writes
each output into its slot so the final ordering is exact.
"""
import os
import queue
import logging
import threading
import multiprocessing
from multiprocessing.pool import ThreadPool
from errors import WorkerFailure

logger = logging.getLogger(__name__)


def divvy_among_workers(N, worker_id, num_workers):
    # Every worker gets N // num_workers jobs, and the first N % num_workers get one extra.
    # Returns the 1-based inclusive (start, end) for this worker; empty ranges have end == start - 1.
    if num_workers < 1:
        raise ValueError(f"num_workers must be positive, got {num_workers}")
    if not (1 <= worker_id <= num_workers):
        raise ValueError(f"worker_id must be in 1..{num_workers}, got {worker_id}")
    if N < 0:
        raise ValueError(f"N must be non-negative, got {N}")
    base_work,extra_work = divmod(N, num_workers)
    work_per_worker = [base_work + (1 if w < extra_work else 0) for w in range(num_workers)]
    start_index = sum(work_per_worker[:worker_id-1]) + 1
    end_index = start_index + work_per_worker[worker_id-1] - 1
    return start_index,end_index


class ParallelWorker:
    # Identity of one of several cooperating workers (1-based id)
    def __init__(self, num_workers, worker_id):
        self.num_workers = num_workers
        self.worker_id = worker_id
        return
    def __repr__(self):
        return f"ParallelWorker(num_workers={self.num_workers}, worker_id={self.worker_id})"


class _Closed:
    def __repr__(self):
        return "CLOSED"
    def __reduce__(self):
        return (_closed, ())

def _closed():
    return CLOSED

CLOSED = _Closed()


class Channel:
    # Bounded FIFO with an explicit closed flag. put returns False once the channel is
    # closed; take returns CLOSED once it is closed and drained.
    def __init__(self, fifo, closed_flag, poll_interval=0.05):
        self._fifo = fifo
        self._closed = closed_flag
        self.poll_interval = poll_interval
        return
    def put(self, item):
        while not self._closed.is_set():
            try:
                self._fifo.put(item, timeout=self.poll_interval)
                return True
            except queue.Full:
                continue
        return False
    def take(self, abandon=None):
        # abandon: optional callable; when it returns True and nothing is buffered, give up
        while True:
            try:
                return self._fifo.get(timeout=self.poll_interval)
            except queue.Empty:
                if self._closed.is_set() or (abandon is not None and abandon()):
                    try:
                        return self._fifo.get_nowait()
                    except queue.Empty:
                        return CLOSED
    def close(self):
        self._closed.set()
        return
    def is_open(self):
        return not self._closed.is_set()


class WorkerPool:
    """A fixed number of independent workers, either processes or threads.

    Process pools need everything sent to them (operators, members, factories) to be
    picklable, and back their channels with a multiprocessing Manager.
    """
    def __init__(self, num_workers=None, kind='process', context=None):
        if kind not in ('process', 'thread'):
            raise ValueError(f"Unknown worker pool kind: {kind}")
        self.num_workers = num_workers if num_workers is not None else (os.cpu_count() or 1)
        self.kind = kind
        self.context = context
        self._pool = None
        self._manager = None
        return
    def __repr__(self):
        return f"WorkerPool(num_workers={self.num_workers}, kind={self.kind!r})"
    @property
    def pool(self):
        if self._pool is None:
            if self.kind == 'thread':
                self._pool = ThreadPool(self.num_workers)
            else:
                self._pool = multiprocessing.get_context(self.context).Pool(self.num_workers)
        return self._pool
    def channel(self, size):
        if self.kind == 'thread':
            return Channel(queue.Queue(size), threading.Event())
        if self._manager is None:
            self._manager = multiprocessing.get_context(self.context).Manager()
        return Channel(self._manager.Queue(size), self._manager.Event())
    def map(self, func, iterable, **kwargs):
        return self.pool.map(func, iterable, **kwargs)
    def apply_async(self, func, args=()):
        return self.pool.apply_async(func, args)
    def close(self, terminate=False):
        if self._pool is not None:
            if terminate:
                self._pool.terminate()
            else:
                self._pool.close()
            self._pool.join()
            self._pool = None
        if self._manager is not None:
            self._manager.shutdown()
            self._manager = None
        return
    def __enter__(self):
        return self
    def __exit__(self, exc_type, exc, tb):
        self.close(terminate=exc_type is not None)
        return False


def _worker_task(func_factory, jobs, results, seed):
    try:
        func = func_factory(seed)
        while True:
            job = jobs.take()
            if job is CLOSED:
                break
            job_id,item = job
            logger.debug(f"  - Doing job {job_id}")
            out = func(item)
            if not results.put((job_id, out)):
                break
    except BaseException:
        jobs.close()
        results.close()
        raise
    return


def run_parallel(func_factory, data, output, pool, buffer_size=32, seeds=None):
    """Apply a function to every item of data on the pool's workers, writing output[i].

    func_factory(seed) is called once inside each worker task and returns the function
    applied to each item; seed is seeds[w] for the w-th task, or None. Any worker
    exception closes both channels and is re-raised here as WorkerFailure after every
    worker task has returned.
    """
    data = list(data)
    assert len(data) == len(output)
    if seeds is not None and len(seeds) != pool.num_workers:
        raise ValueError(f"Need one seed per worker ({pool.num_workers}), got {len(seeds)}")
    jobs = pool.channel(buffer_size)
    results = pool.channel(buffer_size)

    worker_tasks = []
    for w in range(pool.num_workers):
        logger.debug(f"Sending task to worker {w+1}")
        seed = None if seeds is None else seeds[w]
        worker_tasks.append(pool.apply_async(_worker_task, (func_factory, jobs, results, seed)))

    put_errors = []
    def produce():
        try:
            for job in enumerate(data):
                if not jobs.put(job):
                    # Closed because a worker failed; that failure gets reported instead
                    break
        except BaseException as exc:
            put_errors.append(exc)
        finally:
            logger.debug("Closing jobs channel")
            jobs.close()
    producer = threading.Thread(target=produce, daemon=True)
    producer.start()

    remaining = len(data)
    all_tasks_done = lambda: all(t.ready() for t in worker_tasks)
    try:
        while remaining > 0:
            item = results.take(abandon=all_tasks_done)
            if item is CLOSED:
                break
            job_id,out = item
            output[job_id] = out
            remaining -= 1
    finally:
        logger.debug("Closing results channel")
        results.close()
        jobs.close()
        producer.join()

    first_failure = None
    for w,task in enumerate(worker_tasks):
        try:
            task.get()
        except Exception as exc:
            logger.debug(f"Worker {w+1} failed: {exc!r}")
            if first_failure is None:
                first_failure = exc
    if first_failure is not None:
        raise WorkerFailure(f"Parallel worker failed: {first_failure!r}") from first_failure
    if put_errors:
        raise put_errors[0]
    if remaining > 0:
        raise WorkerFailure(f"Results channel closed with {remaining} results outstanding")
    return output
