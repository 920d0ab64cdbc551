import numpy as np
from dynamicalsystem import ODEModel


class Lorenz63Model(ODEModel):
    # dx/dt = sigma*(y - x), dy/dt = x*(rho - z) - y, dz/dt = x*y - beta*z,
    # integrated for the state divided by scaling
    @staticmethod
    def label_from_config(config):
        abbrv = f"s{config['sigma']:g}r{config['rho']:g}b{config['beta']:.3g}".replace(".","p")
        label = r"$\sigma=%g,\ \rho=%g,\ \beta=%.3g$"%(config['sigma'],config['rho'],config['beta'])
        return abbrv,label
    def derive_parameters(self, config):
        self.sigma = float(config['sigma'])
        self.rho = float(config['rho'])
        self.beta = float(config['beta'])
        self.scaling = float(config.get('scaling', 1.0))
        self.ministep_dt = float(config['ministep_dt'])
        self.ministep_nt = config.get('ministep_nt', None)
        self.timestepper = config.get('timestepper', 'rk4')
        return
    def tendency(self, t, x):
        x0,x1,x2 = x / self.scaling
        return self.scaling * np.array([
            self.sigma * (x1 - x0),
            x0 * (self.rho - x2) - x1,
            x0 * x1 - self.beta * x2,
            ])
