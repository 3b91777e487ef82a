import logging
import sys

from PyQt5 import QtCore, QtWidgets
import pyqtgraph as pg

import simulation
from simulation import OXIDATION, REDUCTION

logger = logging.getLogger(__name__)


### PARAMETERS ###
# half-reaction
redox = OXIDATION # OXIDATION or REDUCTION
E0 = 0.0 # V, standard (formal) potential
k0 = 1e-3 # m/s, standard heterogeneous rate constant
alpha = 0.5 # transfer coefficient

# cyclic voltammetry sweep
Ei = 0.2 # V, initial potential
Ef = -0.2 # V, switching potential
scanrate = 0.1 # V/s, sweep rate

# electrode and solution
re = 1e-3 # m, electrode radius
conc = 1.0 # mM, bulk concentration
D = 1e-9 # m^2/s, diffusion coefficient

# grid properties
t_density = 200 # samples per dimensionless potential unit
h0 = 2e-4 # initial dimensionless spatial step
gamma = 1.05 # spatial step growth factor

# host memory
PAGE_SIZE = 65536 # bytes
BUFFER_PAGES = 8 # pages backing one simulation
STEPS_PER_TICK = 25 # samples computed between redraws

# form fields, in display order, with their units
FIELDS = (
    ("E0", "V"),
    ("k0", "m/s"),
    ("alpha", ""),
    ("Ei", "V"),
    ("Ef", "V"),
    ("scanrate", "V/s"),
    ("re", "m"),
    ("conc", "mM"),
    ("D", "m^2/s"),
    ("t_density", ""),
    ("h0", ""),
    ("gamma", ""),
)
DEFAULTS = dict(E0=E0, k0=k0, alpha=alpha, Ei=Ei, Ef=Ef, scanrate=scanrate, re=re,
                conc=conc, D=D, t_density=t_density, h0=h0, gamma=gamma)


# reads the form text into simulation keyword arguments
def parse_form(texts):
    values = {}
    for name, _ in FIELDS:
        try:
            values[name] = float(texts[name])
        except ValueError:
            raise ValueError(f"{name}: not a number: {texts[name]!r}") from None
    return values


### DISPLAY ###
# QT window
class MainWindow(QtWidgets.QMainWindow):
    def __init__(self, *args, **kwargs):
        super(MainWindow, self).__init__(*args, **kwargs)
        self.buffer = bytearray(BUFFER_PAGES * PAGE_SIZE)
        self.sim = None
        self.params = None
        self.t = []
        self.E = []
        self.I = []

        # parameter form
        form = QtWidgets.QFormLayout()
        self.redox_input = QtWidgets.QComboBox()
        self.redox_input.addItem('Oxidation', OXIDATION)
        self.redox_input.addItem('Reduction', REDUCTION)
        self.redox_input.setCurrentIndex(self.redox_input.findData(redox))
        form.addRow('redox', self.redox_input)
        self.inputs = {}
        for name, units in FIELDS:
            field = QtWidgets.QLineEdit(f"{DEFAULTS[name]:g}")
            self.inputs[name] = field
            form.addRow(f"{name} ({units})" if units else name, field)

        self.start_button = QtWidgets.QPushButton('Start')
        self.start_button.clicked.connect(self.simulate)
        self.stop_button = QtWidgets.QPushButton('Stop')
        self.stop_button.clicked.connect(self.stop)
        form.addRow(self.start_button, self.stop_button)

        # graphs
        self.av_graph = pg.PlotWidget()
        self.at_graph = pg.PlotWidget()
        self.cd_graph = pg.PlotWidget()
        self.av_graph.setLabel('left', 'Current')
        self.av_graph.setLabel('bottom', 'Potential', units='V')
        self.at_graph.setLabel('left', 'Current')
        self.at_graph.setLabel('bottom', 'Time', units='s')
        self.cd_graph.setLabel('left', 'Concentration', units='mM')
        self.cd_graph.setLabel('bottom', 'Distance', units='m')

        layout = QtWidgets.QGridLayout()
        layout.addLayout(form, 0, 0, 2, 1)
        layout.addWidget(self.av_graph, 0, 1, 1, 2)
        layout.addWidget(self.at_graph, 1, 1)
        layout.addWidget(self.cd_graph, 1, 2)
        central = QtWidgets.QWidget()
        central.setLayout(layout)
        self.setCentralWidget(central)

        self.timer = QtCore.QTimer(self)
        self.timer.timeout.connect(self.tick)
        self.simulate()

    # inputs are frozen while a simulation runs
    def locked(self, locked):
        self.stop_button.setEnabled(locked)
        self.start_button.setEnabled(not locked)
        self.redox_input.setEnabled(not locked)
        for field in self.inputs.values():
            field.setEnabled(not locked)

    def simulate(self):
        try:
            params = parse_form({name: field.text() for name, field in self.inputs.items()})
            self.sim = simulation.init(self.buffer, self.redox_input.currentData(), **params)
        except (ValueError, ArithmeticError, MemoryError) as err:
            logger.error("Simulation not started: %s", err)
            self.statusBar().showMessage(f"Error: {err}")
            self.locked(False)
            return False

        self.params = params
        logger.info("Simulation initialized: %d samples, %d spatial points, %d bytes",
                    len(self.sim), self.sim.space.length, self.sim.arena.used)
        self.statusBar().showMessage('Running...')
        self.t.clear()
        self.E.clear()
        self.I.clear()
        self.locked(True)
        self.timer.start(0)
        return True

    def tick(self):
        for _ in range(STEPS_PER_TICK):
            t = self.sim.elapsed
            sample = simulation.step(self.sim)
            if sample is None:
                break
            self.t.append(t)
            self.E.append(sample.potential)
            self.I.append(sample.current)
        self.plot()
        if self.sim.done:
            logger.info("Simulation complete...")
            self.statusBar().showMessage('Simulation complete')
            self.stop()

    def stop(self):
        self.timer.stop()
        self.locked(False)

    def plot(self):
        pen = pg.mkPen('k', width=3)
        # current vs. potential
        self.av_graph.plot(self.E, self.I, pen=pen, clear=True)
        # current vs. time
        self.at_graph.plot(self.t, self.I, pen=pen, clear=True)
        # concentration vs. distance
        self.cd_graph.plot(self.sim.distance, self.sim.concentration * self.params["conc"],
                           pen=pg.mkPen('r', width=3), clear=True)


### MAIN ###
def run():
    logging.basicConfig(level=logging.INFO)
    pg.setConfigOption('background', 'w')
    pg.setConfigOption('foreground', 'k')
    app = QtWidgets.QApplication(sys.argv)
    win = MainWindow()
    win.show()
    return app.exec_()


if __name__ == '__main__':
    sys.exit(run())
