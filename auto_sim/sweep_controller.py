"""
Sweep controller: runs one simulation trial per value of k, logging joint
torques for each trial to its own file.

Init -> Running -> Finalizing -> Init ... -> Done

Each call to tick() does one state's worth of work; the host calls it at the
loop rate.
"""
import enum
import math
import sys
import time

from sim_backend import PositionMode
from trial_log import TrialLog


class SweepState(enum.Enum):
    INIT = 0
    RUNNING = 1
    FINALIZING = 2
    DONE = 4
    SEEDED = 5  # only valid as the initial state: wait one tick, then INIT


class SweepParameter:
    """
    k in [start, stop] advanced by step. Tracked as an integer index so that
    repeated additions cannot drift past the bound early.
    """

    def __init__(self, start, stop, step, initial=None):
        self.start = start
        self.step = step
        # values above stop are never visited
        self.n_steps = int(math.floor((stop - start) / step + 1e-9))
        self.index = 0
        if initial is not None:
            index = int(round((initial - start) / step))
            if not 0 <= index <= self.n_steps:
                raise ValueError(f"Initial k={initial} is outside [{start}, {stop}]")
            self.index = index

    @property
    def value(self):
        return self.start + self.index * self.step

    def advance(self):
        """Step k forward; returns True when it wrapped back to start."""
        self.index += 1
        if self.index > self.n_steps:
            self.index = 0
            return True
        return False


class SweepController:
    def __init__(self, backend, channel, head_handle, config,
                 initial_k=None, initial_count=0, initial_state=SweepState.INIT,
                 clock=time.time, debug=False, quiet=False):
        if initial_state not in (SweepState.INIT, SweepState.SEEDED):
            raise ValueError(f"Sweep cannot start in state {initial_state}")

        self.backend = backend
        self.channel = channel
        self.head_handle = head_handle
        self.config = config
        self.clock = clock
        self.debug = debug
        self.quiet = quiet

        if not 0 <= initial_count < config.max_count:
            raise ValueError(
                f"Initial count {initial_count} is outside [0, {config.max_count})"
            )
        self.k = SweepParameter(config.k_min, config.k_max, config.k_step, initial=initial_k)
        self.count = initial_count
        self.state = initial_state
        self.trial_log = None
        self.start_time = None
        self.trials_completed = 0

    def is_reset_complete(self, pos):
        return pos[0] <= self.config.reset_line_x

    def is_trial_finished(self, pos):
        return pos[0] > self.config.finish_line_x

    def read_position(self):
        return self.backend.get_object_position(self.head_handle, PositionMode.BUFFER)

    def tick(self):
        if self.state is SweepState.INIT:
            self._init_trial()
        elif self.state is SweepState.RUNNING:
            self._record_sample()
        elif self.state is SweepState.FINALIZING:
            self._finalize_trial()
        elif self.state is SweepState.DONE:
            pass
        elif self.state is SweepState.SEEDED:
            self.state = SweepState.INIT
        else:
            print(f"WARNING: state {self.state!r} isn't defined", file=sys.stderr)
        return self.state

    def _init_trial(self):
        pos = self.read_position()
        if not self.is_reset_complete(pos):
            # Previous trial's scene hasn't reset yet; check again next tick
            return

        # Log first so a failed open leaves the simulation stopped
        self.trial_log = TrialLog.for_trial(
            self.config.output_dir, self.config.filename_template, self.k.value, self.count
        )
        try:
            self.backend.start_simulation()
            self.channel.publish_parameter(self.k.value)
        except Exception:
            # stay in INIT without a handle; the next tick retries
            self.trial_log.close()
            self.trial_log = None
            raise
        self.start_time = self.clock()
        self.state = SweepState.RUNNING
        if not self.quiet:
            print(f"Trial start: k={self.k.value:.3f} count={self.count} -> {self.trial_log.path}")

    def _record_sample(self):
        pos = self.read_position()
        elapsed = self.clock() - self.start_time
        torques = self.channel.latest_sample()
        self.trial_log.write_record(elapsed, torques)
        if self.debug:
            print("  torque: " + " ".join(f"{t:f}" for t in torques))

        if self.is_trial_finished(pos):
            self.state = SweepState.FINALIZING

    def _finalize_trial(self):
        self.backend.stop_simulation()
        self.trial_log.close()
        if not self.quiet:
            print(f"Trial done: k={self.k.value:.3f} count={self.count} "
                  f"({self.trial_log.records} records, {self.clock() - self.start_time:.2f}s)")
        self.trial_log = None
        self.start_time = None
        self.trials_completed += 1

        if self.k.advance():
            self.count += 1

        if self.count >= self.config.max_count:
            self.state = SweepState.DONE
            if not self.quiet:
                print(f"Sweep complete: {self.trials_completed} trials")
        else:
            self.state = SweepState.INIT

    def close(self):
        """Release the trial log if a trial was cut short."""
        if self.trial_log is not None:
            self.trial_log.close()
            self.trial_log = None
