import logging
from typing import NamedTuple

import numpy as np

from arena import Arena, OutOfMemory

logger = logging.getLogger(__name__)

### Constants ###
F = 96485.33212 # C/mol, faraday's constant
R = 8.314462618 # J/(mol·K), ideal gas constant
T = 298.15 # K, reference temperature

OXIDATION = +1
REDUCTION = -1

LAYER_WIDTH = 6 # diffusion lengths spanned by the spatial grid
PIVOT_TOLERANCE = 1e-12 # smallest pivot accepted, relative to its diagonal entry

# record at the start of the arena, followed by the arrays named in LAYOUT
STATE_DTYPE = np.dtype([
    ("k0", np.float64),
    ("kA_factor", np.float64),
    ("kB_factor", np.float64),
    ("Ei", np.float64),
    ("Ef", np.float64),
    ("sigma", np.float64),
    ("t_density", np.float64),
    ("h0", np.float64),
    ("gamma", np.float64),
    ("E_offset", np.float64),
    ("I_factor", np.float64),
    ("dt", np.float64),
    ("time_length", np.int64),
    ("space_length", np.int64),
    ("index", np.int64),
])

LAYOUT = ("state", "E", "kA", "kB", "R", "sub", "diag", "sup", "rhs", "scratch")


class DegenerateSweepError(ValueError):
    pass


class IllConditionedError(ArithmeticError):
    pass


class Sample(NamedTuple):
    potential: float
    current: float
    more: bool


### UNITS ###
# Maps physical inputs to dimensionless simulation values and back
class Conversion:
    def __init__(self, redox, E0, re, conc, D, temperature=T):
        self.E_offset = E0 # V, formal potential
        self.FRT = F / (R * temperature) # 1/V
        self.RTF = (R * temperature) / F # V
        self.I_factor = redox * 2 * np.pi * F * D * re * conc * 1e-6
        self.t_factor = (re * re) / D # s, characteristic diffusion time

    def dimensionless_potential(self, E):
        return self.FRT * (E - self.E_offset)

    def potential(self, E):
        return (E * self.RTF) + self.E_offset

    def dimensionless_current(self, I):
        return I / self.I_factor

    def current(self, I):
        return I * self.I_factor

    def time(self, t):
        return t * self.t_factor


### MECHANISM ###
# Dimensionless parameters of the half-reaction, fixed after setup
class Mechanism:
    def __init__(self, redox, E0, k0, alpha, Ei, Ef, re, scanrate, conc, D,
                 t_density, h0, gamma, temperature=T):
        # split of the transfer coefficient between the two rate constants
        if redox == OXIDATION:
            self.kA_factor = 1 - alpha
            self.kB_factor = -alpha
        elif redox == REDUCTION:
            self.kA_factor = -alpha
            self.kB_factor = 1 - alpha
        else:
            raise ValueError(f"Invalid redox direction: {redox}")
        self.redox = redox
        self.re = re # m, electrode radius

        self.conversion = Conversion(redox, E0, re, conc, D, temperature)
        FRT = self.conversion.FRT

        self.k0 = k0 * (re / D)
        self.Ei = self.conversion.dimensionless_potential(Ei)
        self.Ef = self.conversion.dimensionless_potential(Ef)
        self.sigma = scanrate * FRT * ((re * re) / D)
        self.t_density = t_density
        self.h0 = h0
        self.gamma = gamma

        self.validate()

    def validate(self):
        values = (self.k0, self.kA_factor, self.kB_factor, self.Ei, self.Ef,
                  self.t_density, self.h0, self.gamma, self.conversion.I_factor)
        if not np.all(np.isfinite(values)):
            raise ValueError("simulation parameters must be finite")
        if self.t_density <= 0:
            raise ValueError(f"time density must be positive: {self.t_density}")
        if self.h0 <= 0:
            raise ValueError(f"initial spatial step must be positive: {self.h0}")
        if self.gamma <= 1:
            raise ValueError(f"spatial growth factor must exceed 1: {self.gamma}")
        if not np.isfinite(self.sigma) or self.sigma <= 0:
            raise DegenerateSweepError(f"scan rate gives no usable time step: sigma={self.sigma}")
        if self.Ei == self.Ef:
            raise DegenerateSweepError("initial and final potentials coincide")


def rate_constants(mec, E):
    # Butler-Volmer forward/backward rate constants at dimensionless potential E
    kA = mec.k0 * np.exp(E * mec.kA_factor)
    kB = mec.k0 * np.exp(E * mec.kB_factor)
    return kA, kB


### Potential Waveform ###
# Forward sweep from Ei past Ef, followed by its exact mirror image
class Sweep:
    def __init__(self, arena, mec):
        dE = 1.0 / mec.t_density # dimensionless potential step
        self.dt = dE / mec.sigma # dimensionless time step

        E = arena.pending()
        room = E.size // 2 # forward leg must fit twice
        if room < 1:
            raise OutOfMemory(2 * E.itemsize, arena.remaining)

        # forward sweep
        direction = 1.0 if mec.Ef > mec.Ei else -1.0
        E[0] = mec.Ei
        n = 1
        while direction * (mec.Ef - E[n - 1]) > 0:
            if n >= room:
                raise OutOfMemory(2 * (n + 1) * E.itemsize, arena.remaining)
            E[n] = E[n - 1] + direction * dE
            n += 1

        # reverse sweep, every forward sample replayed
        E[n:2 * n] = E[n - 1::-1]

        self.forward_length = n
        self.length = 2 * n
        arena.commit(self.length)
        self.E = E[:self.length]
        logger.debug("time grid: %d samples, dt=%g", self.length, self.dt)


### Kinetics ###
# Rate constants for every time sample, computed once
class Kinetics:
    def __init__(self, arena, mec, wf):
        self.kA = arena.array(wf.length)
        self.kB = arena.array(wf.length)
        with np.errstate(over="ignore"):
            self.kA[:], self.kB[:] = rate_constants(mec, wf.E)
        if not (np.all(np.isfinite(self.kA)) and np.all(np.isfinite(self.kB))):
            raise IllConditionedError("rate constants overflow over the sweep window")


### Initialize Environment ###
# Expanding spatial grid, from the electrode surface out to the bulk boundary
class Space:
    def __init__(self, arena, mec, wf):
        dR = mec.h0
        self.limit = 1 + LAYER_WIDTH * np.sqrt(wf.dt * wf.length)

        R = arena.pending()
        if R.size < 1:
            raise OutOfMemory(R.itemsize, arena.remaining)

        R[0] = 1.0
        n = 1
        while R[n - 1] < self.limit:
            if n >= R.size:
                raise OutOfMemory((n + 1) * R.itemsize, arena.remaining)
            R[n] = R[n - 1] + dR
            dR *= mec.gamma
            n += 1

        self.length = n
        arena.commit(n)
        self.R = R[:n]
        logger.debug("space grid: %d points, limit=%g", self.length, self.limit)


### Tridiagonal Solver ###
def _inverse_pivot(pivot, diag, row):
    if not np.isfinite(pivot) or abs(pivot) <= PIVOT_TOLERANCE * abs(diag):
        raise IllConditionedError(f"pivot {pivot!r} in row {row}")
    return 1.0 / pivot


# Solves the tridiagonal system (a: sub, b: diag, c: super) in place in x.
# cprime receives the reduced superdiagonal and must not alias a, b or c.
def thomas(a, b, c, x, cprime):
    n = x.size

    m = _inverse_pivot(b[0], b[0], 0)
    cprime[0] = c[0] * m
    x[0] = x[0] * m

    for i in range(1, n):
        m = _inverse_pivot(b[i] - a[i] * cprime[i - 1], b[i], i)
        cprime[i] = c[i] * m
        x[i] = (x[i] - a[i] * x[i - 1]) * m

    for i in range(n - 2, -1, -1):
        x[i] -= cprime[i] * x[i + 1]

    return x


### Equations ###
# Implicit finite-difference system for
#
# dc   2 dc   d2c
# -- = - -- + ---
# dt   r dr   dr2
#
# on the expanding grid, one tridiagonal solve per time step
class Equations:
    def __init__(self, arena, space, wf):
        n = self.length = space.length
        self.sub = arena.array(n)
        self.diag = arena.array(n)
        self.sup = arena.array(n)
        self.rhs = arena.array(n)

        dt = wf.dt
        Rm = space.R[:-2]
        Ri = space.R[1:-1]
        Rp = space.R[2:]

        # interior points, fixed for the whole simulation
        self.sub[1:-1] = (-2 * dt * Rm) / (Ri * (Rp - Rm) * (Ri - Rm))
        self.diag[1:-1] = 1 + (2 * dt) / ((Rp - Ri) * (Ri - Rm))
        self.sup[1:-1] = (-2 * dt * Rp) / (Ri * (Rp - Rm) * (Rp - Ri))

        # outer boundary - bulk concentration
        self.sub[-1] = 0.0
        self.diag[-1] = 1.0
        self.sup[-1] = 0.0

        self.reset()

    # bulk concentration everywhere, electrode row left as identity until update()
    def reset(self):
        self.sub[0] = 0.0
        self.diag[0] = 1.0
        self.sup[0] = 0.0
        self.rhs[:] = 1.0

    # Butler-Volmer flux balance at the electrode surface:
    #
    # dc
    # -- = kA.c - kB.(1 - c)
    # dr
    #
    def update(self, kA, kB, h0):
        self.sub[0] = 0.0
        self.diag[0] = 1 + h0 * (kA + kB)
        self.sup[0] = -1.0
        self.rhs[0] = h0 * kB

    def solve(self, arena):
        cprime = arena.scratch(self.length)
        return thomas(self.sub, self.diag, self.sup, self.rhs, cprime)


### SIMULATION ###
# Steps the electrochemical system through the sweep, one sample per call
class Simulation:
    def __init__(self, arena, mec):
        self.arena = arena
        self.mec = mec
        self.conversion = mec.conversion

        self.state = arena.record(STATE_DTYPE)
        self.wf = Sweep(arena, mec)
        self.kinetics = Kinetics(arena, mec, self.wf)
        self.space = Space(arena, mec, self.wf)
        self.equations = Equations(arena, self.space, self.wf)

        self.store()
        logger.debug("arena: %d of %d bytes used", arena.used, arena.capacity)

    def store(self):
        for name in ("k0", "kA_factor", "kB_factor", "Ei", "Ef", "sigma", "t_density", "h0", "gamma"):
            self.state[name] = getattr(self.mec, name)
        self.state["E_offset"] = self.conversion.E_offset
        self.state["I_factor"] = self.conversion.I_factor
        self.state["dt"] = self.wf.dt
        self.state["time_length"] = self.wf.length
        self.state["space_length"] = self.space.length
        self.state["index"] = 0

    @property
    def index(self):
        return int(self.state["index"])

    @index.setter
    def index(self, value):
        self.state["index"] = value

    @property
    def done(self):
        return self.index >= self.wf.length

    def __len__(self):
        return self.wf.length

    # s, physical time of the next sample
    @property
    def elapsed(self):
        return self.conversion.time(self.index * self.wf.dt)

    @property
    def concentration(self):
        C = self.equations.rhs.view()
        C.flags.writeable = False
        return C

    # m, distance of each grid point from the electrode surface
    @property
    def distance(self):
        return (self.space.R - 1.0) * self.mec.re

    def step(self):
        index = self.index
        if index >= self.wf.length:
            return None

        E = self.wf.E[index]
        self.equations.update(self.kinetics.kA[index], self.kinetics.kB[index], self.mec.h0)
        C = self.equations.solve(self.arena)
        I = (C[1] - C[0]) / self.mec.h0

        self.index = index + 1
        return Sample(
            float(self.conversion.potential(E)),
            float(self.conversion.current(I)),
            index + 1 < self.wf.length,
        )

    def __iter__(self):
        while True:
            sample = self.step()
            if sample is None:
                return
            yield sample.potential, sample.current

    def run(self):
        samples = np.array(list(self), dtype=np.float64).reshape(-1, 2)
        return samples[:, 0], samples[:, 1]

    def reset(self):
        self.equations.reset()
        self.index = 0


### Public API ###
def init(buffer, redox, E0, k0, alpha, Ei, Ef, re, scanrate, conc, D,
         t_density, h0, gamma, capacity=None, temperature=T):
    mec = Mechanism(redox, E0, k0, alpha, Ei, Ef, re, scanrate, conc, D,
                    t_density, h0, gamma, temperature)
    arena = Arena(buffer, capacity)
    return Simulation(arena, mec)


def step(sim):
    return sim.step()
