from abc import abstractmethod
import logging
import numpy as np
from operators import Operator

logger = logging.getLogger(__name__)


class ODEModel(Operator):
    # Transition operator for small ODE systems: advances member['state'] from t0 to t
    # with a fixed number of equal ministeps. Members are {'state': 1-d array}.
    state_keys = ['state']
    def __init__(self, params=None):
        self.config = dict() if params is None else params.get('transition', dict())
        self.derive_parameters(self.config) # This includes both physical and simulation parameters
        return
    @staticmethod
    @abstractmethod
    def label_from_config(config):
        pass
    @abstractmethod
    def derive_parameters(self, config):
        # convert raw configuration into class attributes for efficient integration of dynamics.
        # Must set ministep_dt; may set ministep_nt and timestepper.
        pass
    @abstractmethod
    def tendency(self, t, x):
        pass
    def num_ministeps(self, dt_total):
        ministep_nt = getattr(self, 'ministep_nt', None)
        if ministep_nt is not None:
            return int(ministep_nt)
        return int(np.ceil(dt_total / self.ministep_dt))

    def timestep_rk4(self, t, x, dt): # physical time units
        k1 = dt * self.tendency(t,x)
        k2 = dt * self.tendency(t+dt/2, x+k1/2)
        k3 = dt * self.tendency(t+dt/2, x+k2/2)
        k4 = dt * self.tendency(t+dt, x+k3)
        xnew = x + (k1 + 2*(k2 + k3) + k4)/6
        return t+dt, xnew
    def timestep_euler(self, t, x, dt): # physical time units
        k1 = dt * self.tendency(t,x)
        xnew = x + k1
        return t+dt, xnew
    def integrate(self, x, t0, t):
        dt_total = t - t0
        nt = self.num_ministeps(dt_total)
        dt = dt_total / nt
        timestep_fun = getattr(self, f"timestep_{getattr(self, 'timestepper', 'rk4')}")
        tp = t0
        x = np.array(x, dtype=float)
        logger.debug(f"Integrating from t={t0} to t={t} in {nt} ministeps of {dt}")
        for i in range(nt):
            tp,x = timestep_fun(tp, x, dt)
        return x

    def apply_to_raw(self, state, t0, t):
        if t == t0:
            return np.array(state, dtype=float)
        return self.integrate(state, t0, t)
    def apply_to_member(self, member, t0, t):
        return dict({'state': self.apply_to_raw(member['state'], t0, t)})
