import numpy as np
from numpy.random import default_rng
from os.path import join
from os import makedirs
import sys
import time
import logging
import matplotlib
import matplotlib.pyplot as plt
matplotlib.rcParams.update({
    "font.family": "monospace",
    "font.size": 15
})
pltkwargs = dict(bbox_inches="tight",pad_inches=0.2)
sys.path.append('../..')
from ensemble import Ensemble, get_ensemble_matrix
from lorenz63 import Lorenz63Model
from noisy_observer import NoisyObserver
from assimilation import assimilate_data, EnKF
import storage
import utils

logger = logging.getLogger(__name__)


def default_params():
    params = dict({
        'transition': dict({
            'sigma': 10,
            'rho': 28,
            'beta': 8/3,
            'scaling': 1,
            'ministep_nt': None,
            'ministep_dt': 0.05,
            }),
        'observation': dict({
            'noise_scale': 2,
            'timestep_size': 0.1,
            'num_timesteps': 300,
            }),
        'ensemble': dict({
            'size': 10,
            'seed': 9347215,
            'prior': 'gaussian',
            'prior_params': [0.0, 1.0],
            }),
        'spinup': dict({
            'num_timesteps': 300,
            'transition_noise_scale': 1.0,
            }),
        'assimilation': dict({
            'algorithm': 'enkf',
            'include_noise_in_obs_covariance': False,
            'multiplicative_prior_inflation': 0.0,
            'observation_noise_stddev': 2.0,
            }),
        })
    return params

def generate_ensemble(params):
    config = params['ensemble']
    if config['prior'] != 'gaussian':
        raise ValueError(f"Invalid prior type: {config['prior']}")
    rng = default_rng(config['seed'])
    prior_mean,prior_std = config['prior_params']
    members = [dict({'state': prior_mean + prior_std*rng.standard_normal(3)}) for i in range(config['size'])]
    return Ensemble(members)

def get_observation_times(params):
    step = params['observation']['timestep_size']
    return step * np.arange(params['observation']['num_timesteps'])

def get_filter(params):
    config = params['assimilation']
    if config.get('algorithm', None) is None:
        return None
    if config['algorithm'] == 'enkf':
        return EnKF(config['observation_noise_stddev']**2, params=params)
    raise ValueError(f"Unknown assimilation algorithm: {config['algorithm']}")

def make_ground_truth(transitioner, observer, observation_times, seed=0xfee55e45):
    rng = default_rng(seed)
    observer.xor_seed(0x243ecae5)
    state = dict({'state': rng.standard_normal(3)})
    states,observations = [],[]
    t0 = 0.0
    for t in observation_times:
        state = transitioner(state, t0, t)
        obs = observer(state)
        states.append(state)
        observations.append(observer.split_member(obs)[1])
        t0 = t
    return states,observations

def run_filter(transitioner, observer, filter, ensemble, observation_times, observations, transition_noise=0.0, seed=0x3289745):
    rng = default_rng(seed)
    observer.xor_seed(0x375ef928)
    history = dict({'t': [], 'ensemble': [], 'posterior': [], 'assimilation_time': []})
    t0 = 0.0
    for (t, y_obs) in zip(observation_times, observations):
        # Advance ensemble to time t
        ensemble = transitioner.apply(ensemble, t0, t)
        # Keep ensemble separated
        if transition_noise != 0:
            for em in ensemble.members:
                em['state'] = em['state'] + transition_noise * rng.standard_normal(3)
        ensemble_obs = observer.apply(ensemble)
        ensemble_obs_clean,ensemble_obs_noisy = observer.split_clean_noisy(ensemble_obs)
        log_data = dict()
        t_start = time.perf_counter()
        posterior = assimilate_data(filter, ensemble, ensemble_obs_clean, ensemble_obs_noisy, y_obs, log_data)
        utils.concat_dict_of_lists(history, dict({
            't': [t],
            'ensemble': [ensemble],
            'posterior': [posterior],
            'assimilation_time': [time.perf_counter() - t_start],
            }))
        ensemble = posterior
        t0 = t
    return history

def plot_state_over_time(ts, truth, history, savefile):
    fig,axes = plt.subplots(nrows=3, figsize=(12,12), sharex=True)
    means = np.array([utils.ensemble_mean(ens)['state'] for ens in history['posterior']])
    stds = np.array([utils.ensemble_std(ens)['state'] for ens in history['posterior']])
    for i,ax in enumerate(axes):
        ax.plot(ts, truth[i], color='black', label='Truth')
        ax.plot(ts, means[:,i], color='#7fc97f', label='Posterior mean')
        ax.fill_between(ts, means[:,i]-stds[:,i], means[:,i]+stds[:,i], color='#7fc97f', alpha=0.3)
        ax.set_ylabel(f"$x_{i}$")
    axes[0].legend()
    axes[-1].set_xlabel("Time")
    fig.savefig(savefile, **pltkwargs)
    plt.close(fig)
    return

def filter_procedure(expt_dir):
    params = default_params()
    makedirs(expt_dir, exist_ok=True)
    transitioner = Lorenz63Model(params)
    observer = NoisyObserver.from_keys(transitioner.get_state_keys(), params=params, seed=0x243ecae5)
    observation_times = get_observation_times(params)

    t_start = time.perf_counter()
    states,observations = make_ground_truth(transitioner, observer, observation_times)
    logger.info(f"Ground truth took {time.perf_counter() - t_start:.3f} s")
    truth = get_ensemble_matrix(['state'], states)

    n_spinup = params['spinup']['num_timesteps']
    history = run_filter(transitioner, observer, get_filter(params), generate_ensemble(params),
            observation_times[:n_spinup], observations[:n_spinup],
            transition_noise=params['spinup']['transition_noise_scale'])
    errors = [utils.rmse(utils.ensemble_mean(ens)['state'], truth[:,i]) for (i, ens) in enumerate(history['posterior'])]
    logger.info(f"Mean posterior RMSE: {np.mean(errors):.3f}")

    for (i, ens) in enumerate(history['posterior']):
        storage.save_ensemble(ens, join(expt_dir, 'ensembles', f"posterior_{i}"))
    plot_state_over_time(observation_times[:n_spinup], truth[:,:n_spinup], history, join(expt_dir, 'state_over_time.png'))
    return history


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    expt_dir = sys.argv[1] if len(sys.argv) > 1 else join('results', 'lorenz63')
    filter_procedure(expt_dir)
