import numpy as np
from os.path import join
from os import makedirs
import sys
import time
import logging
sys.path.append('../..')
sys.path.append('../lorenz63')
from ensemble import get_ensemble_matrix
from lorenz63 import Lorenz63Model
from noisy_observer import NoisyObserver
from assimilation import assimilate_data
from parallel import ParallelWorker, WorkerPool
from parallel_operators import DistributedOperator
from parallel_file import FileBasedPartial, run_partial_operator
import storage
from lorenz63_filter import default_params, generate_ensemble, get_observation_times, make_ground_truth, run_filter

logger = logging.getLogger(__name__)


def small_params():
    params = default_params()
    params['observation']['num_timesteps'] = 5
    params['ensemble']['size'] = 5
    params['spinup']['num_timesteps'] = 5
    params['spinup']['transition_noise_scale'] = 0.0
    params['assimilation']['algorithm'] = None
    return params

# --------------- File-based workers, one call per worker per step -----------------
def worker_transition(run_dir, k, t0, t, params, worker_id, num_workers):
    worker = ParallelWorker(num_workers, worker_id)
    ensemble = storage.load_ensemble(join(run_dir, f"ensemble_{k-1}_posterior"))
    strategy = FileBasedPartial(join(run_dir, f"ensemble_{k}_prior"), join(run_dir, f"intermediate_trans_{k-1}_to_{k}"))
    transitioner = Lorenz63Model(params)
    closer,num_completed = run_partial_operator(strategy, worker, lambda em: transitioner(em, t0, t), ensemble)
    logger.debug(f"Transition: {'closer' if closer else f'worker {worker_id}'} did {num_completed}")
    return num_completed

def worker_observer(run_dir, k, params, worker_id, num_workers):
    worker = ParallelWorker(num_workers, worker_id)
    ensemble = storage.load_ensemble(join(run_dir, f"ensemble_{k}_prior"))
    strategy = FileBasedPartial(join(run_dir, f"ensemble_{k}_obs_prior"), join(run_dir, f"intermediate_obs_{k}"))
    observer = NoisyObserver.from_keys(Lorenz63Model(params).get_state_keys(), params=params)
    observer.xor_seed(worker_id * num_workers - 1)
    closer,num_completed = run_partial_operator(strategy, worker, observer, ensemble)
    logger.debug(f"Observer: {'closer' if closer else f'worker {worker_id}'} did {num_completed}")
    return num_completed

def run_file_based(params, pool, observer, ensemble, observation_times, observations, run_dir):
    num_workers = pool.num_workers
    makedirs(run_dir, exist_ok=True)
    storage.save_ensemble(ensemble, join(run_dir, "ensemble_0_posterior"))
    posteriors = []
    t0 = 0.0
    for (k, (t, y_obs)) in enumerate(zip(observation_times, observations), start=1):
        # Partial writes from every worker, then one finalization call
        pool.pool.starmap(worker_transition, [(run_dir, k, t0, t, params, w+1, num_workers) for w in range(num_workers)])
        worker_transition(run_dir, k, t0, t, params, 1, 1)
        ensemble = storage.load_ensemble(join(run_dir, f"ensemble_{k}_prior"))
        pool.pool.starmap(worker_observer, [(run_dir, k, params, w+1, num_workers) for w in range(num_workers)])
        worker_observer(run_dir, k, params, 1, 1)
        ensemble_obs = storage.load_ensemble(join(run_dir, f"ensemble_{k}_obs_prior"))
        ensemble_obs_clean,ensemble_obs_noisy = observer.split_clean_noisy(ensemble_obs)
        ensemble = assimilate_data(None, ensemble, ensemble_obs_clean, ensemble_obs_noisy, y_obs)
        storage.save_ensemble(ensemble, join(run_dir, f"ensemble_{k}_posterior"))
        posteriors.append(ensemble)
        t0 = t
    return posteriors

def compare(name, history0, history1):
    for (i, (e0, e1)) in enumerate(zip(history0, history1)):
        diff = np.linalg.norm(get_ensemble_matrix(['state'], e0.members) - get_ensemble_matrix(['state'], e1.members))
        logger.info(f"{name} step {i}: ensemble difference {diff:.3e}")
        if diff > 1e-8:
            raise RuntimeError(f"{name} differs from the sequential run at step {i}")
    return

def parallel_procedure(expt_dir, num_workers=4):
    params = small_params()
    transitioner = Lorenz63Model(params)
    observer = NoisyObserver.from_keys(transitioner.get_state_keys(), params=params, seed=0x243ecae5)
    observation_times = get_observation_times(params)
    states,observations = make_ground_truth(transitioner, observer, observation_times)
    ensemble_initial = generate_ensemble(params)

    t_start = time.perf_counter()
    history_sequential = run_filter(transitioner, observer, None, ensemble_initial, observation_times, observations)
    logger.info(f"Sequential run took {time.perf_counter() - t_start:.3f} s")

    with WorkerPool(num_workers, kind='process') as pool:
        for distributed_type in ['pmap', 'distributed_for', 'asyncmap']:
            t_start = time.perf_counter()
            transitioner_dist = DistributedOperator(transitioner, pool, distributed_type)
            # Only the job-queue backend can give every worker its own noise stream
            observer_dist = DistributedOperator(observer, pool, 'asyncmap', seed=0x375ef928)
            history = run_filter(transitioner_dist, observer_dist, None, ensemble_initial, observation_times, observations)
            logger.info(f"{distributed_type} run took {time.perf_counter() - t_start:.3f} s")
            compare(distributed_type, history_sequential['posterior'], history['posterior'])

        t_start = time.perf_counter()
        posteriors = run_file_based(params, pool, observer, ensemble_initial, observation_times, observations, join(expt_dir, 'file_based'))
        logger.info(f"File-based run took {time.perf_counter() - t_start:.3f} s")
        compare('file_based', history_sequential['posterior'], posteriors)
    return


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    expt_dir = sys.argv[1] if len(sys.argv) > 1 else join('results', 'lorenz63_parallel')
    parallel_procedure(expt_dir)
