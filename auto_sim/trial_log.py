import os

from sweep_exceptions import TrialLogError


def trial_filename(template, k, count):
    return template.format(k=k, count=count)


def format_record(elapsed, torques):
    # "elapsed, t0, t1, ..." with no trailing separator
    return ", ".join(f"{v:f}" for v in [elapsed, *torques]) + "\n"


class TrialLog:
    """Per-trial torque log; one record per control tick while the trial runs."""

    def __init__(self, path):
        self.path = path
        self.records = 0
        try:
            self.fh = open(path, "w", encoding="utf-8")
        except OSError as e:
            raise TrialLogError(f"Cannot open trial log {path}: {e}") from e

    @classmethod
    def for_trial(cls, output_dir, template, k, count):
        return cls(os.path.join(output_dir, trial_filename(template, k, count)))

    @property
    def closed(self):
        return self.fh.closed

    def write_record(self, elapsed, torques):
        if self.fh.closed:
            raise TrialLogError(f"Trial log {self.path} is already closed")
        self.fh.write(format_record(elapsed, torques))
        self.records += 1

    def close(self):
        self.fh.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
