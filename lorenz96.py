import numpy as np
from scipy import sparse as sps
from dynamicalsystem import ODEModel


class Lorenz96Model(ODEModel):
    @staticmethod
    def label_from_config(config):
        abbrv = f"K{config['K']:g}F{config['F']:g}".replace(".","p")
        label = r"$K=%g,\ F=%g$"%(config['K'],config['F'])
        return abbrv,label
    def derive_parameters(self, config):
        self.K = config['K']
        self.F = config['F']
        self.ministep_dt = config['ministep_dt']
        self.ministep_nt = config.get('ministep_nt', None)
        self.timestepper = config.get('timestepper', 'rk4')
        # Impulses: one column per Fourier mode (cos and sin) and per site
        fpar = config.get('impulsive', dict({'wavenumbers': [], 'wavenumber_magnitudes': [], 'sites': [], 'site_magnitudes': []}))
        self.impulse_dim = 2*len(fpar['wavenumbers']) + len(fpar['sites'])
        impmat = np.zeros((self.K, self.impulse_dim))
        i_noise = 0
        for i_wn,wn in enumerate(fpar['wavenumbers']):
            impmat[:,i_noise] = fpar['wavenumber_magnitudes'][i_wn] * np.cos(2*np.pi*wn*np.arange(self.K)/self.K)
            i_noise += 1
            impmat[:,i_noise] = fpar['wavenumber_magnitudes'][i_wn] * np.sin(2*np.pi*wn*np.arange(self.K)/self.K)
            i_noise += 1
        for i_site,site in enumerate(fpar['sites']):
            impmat[site,i_noise] = fpar['site_magnitudes'][i_site]
            i_noise += 1
        self.impulse_matrix = sps.csr_matrix(impmat)
        return
    def tendency(self, t, x):
        return np.roll(x,1) * (np.roll(x, -1) - np.roll(x,2)) - x + self.F
    def apply_impulse(self, x, imp):
        return x + self.impulse_matrix @ imp
    def default_init_cond(self):
        # Rest state plus a small sinusoidal bump
        return self.F + 0.001*np.sin(2*np.pi*np.arange(self.K)/self.K)
