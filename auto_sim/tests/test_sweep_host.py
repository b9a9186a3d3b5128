import contextlib
import io
import json
import os
import pathlib
import signal
import sys
import tempfile
import unittest
from unittest import mock

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
TESTS = pathlib.Path(__file__).resolve().parent
if str(TESTS) not in sys.path:
    sys.path.insert(0, str(TESTS))

import sweep_host
from fakes import FakeBackend, FakeChannel
from sweep_config import EXAMPLE_SWEEP_CONFIG_PATH
from sweep_exceptions import BackendConnectionError, BackendError


class SweepHostTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.channel = FakeChannel()

    def tearDown(self):
        self.tmp.cleanup()

    def write_config(self, **sweep):
        with open(EXAMPLE_SWEEP_CONFIG_PATH, encoding="utf-8") as fh:
            raw = json.load(fh)
        raw["sweep"].update(sweep)
        path = os.path.join(self.tmp.name, "sweep.json")
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(raw, fh)
        return path

    def run_host(self, backend, argv, controllers=None):
        real_controller = sweep_host.SweepController

        def make_controller(*args, **kwargs):
            controller = real_controller(*args, **kwargs)
            if controllers is not None:
                controllers.append(controller)
            return controller

        with mock.patch.object(sweep_host, "BulletBackend", return_value=backend), \
                mock.patch.object(sweep_host, "UdpMessageChannel", return_value=self.channel), \
                mock.patch.object(sweep_host, "SweepController", side_effect=make_controller):
            sweep_host.main(argv)

    def test_connection_failure_exits(self):
        backend = FakeBackend()
        backend.connect = mock.Mock(side_effect=BackendConnectionError("no server"))

        with mock.patch.object(sweep_host, "BulletBackend", return_value=backend), \
                mock.patch.object(sweep_host, "UdpMessageChannel", return_value=self.channel):
            with self.assertRaises(SystemExit) as cm:
                sweep_host.main(["--quiet", "--output-dir", self.tmp.name])

        self.assertEqual(cm.exception.code, 1)
        self.assertTrue(backend.closed)
        self.assertTrue(self.channel.closed)
        self.assertEqual(backend.starts, 0)

    def test_invalid_config_exits(self):
        path = self.write_config(k_step=-0.01)

        with self.assertRaises(SystemExit) as cm:
            sweep_host.main(["--quiet", "--config", path])
        self.assertEqual(cm.exception.code, 2)

    def test_full_sweep_until_done(self):
        path = self.write_config(k_max=0.01, max_count=2, loop_rate_hz=1000.0)
        out_dir = os.path.join(self.tmp.name, "logs")
        backend = FakeBackend()

        with mock.patch.object(sweep_host, "BulletBackend", return_value=backend), \
                mock.patch.object(sweep_host, "UdpMessageChannel", return_value=self.channel):
            sweep_host.main([
                "--quiet", "--exit-on-done", "--seed-wait",
                "--config", path, "--output-dir", out_dir,
            ])

        self.assertEqual(sorted(os.listdir(out_dir)), [
            "Auto_k=0.000_count=0.dat",
            "Auto_k=0.000_count=1.dat",
            "Auto_k=0.010_count=0.dat",
            "Auto_k=0.010_count=1.dat",
        ])
        # initial publish, then one per trial
        self.assertEqual(self.channel.published, [0.0, 0.0, 0.01, 0.0, 0.01])
        self.assertEqual(backend.starts, 4)
        self.assertEqual(backend.stops, 4)
        self.assertTrue(backend.closed)
        self.assertTrue(self.channel.closed)


    def test_transient_read_failure_does_not_abort_sweep(self):
        path = self.write_config(k_max=0.01, max_count=1, loop_rate_hz=1000.0)
        out_dir = os.path.join(self.tmp.name, "logs")
        # read 1 starts streaming, read 2 starts the first trial
        backend = FakeBackend(failures={3: BackendError("transient read failure")})

        err = io.StringIO()
        with contextlib.redirect_stderr(err):
            self.run_host(backend, [
                "--quiet", "--exit-on-done", "--config", path, "--output-dir", out_dir,
            ])

        self.assertIn("WARNING: transient read failure", err.getvalue())
        self.assertEqual(sorted(os.listdir(out_dir)), [
            "Auto_k=0.000_count=0.dat",
            "Auto_k=0.010_count=0.dat",
        ])
        self.assertEqual(backend.starts, 2)
        self.assertEqual(backend.stops, 2)

    def test_sigterm_releases_log_backend_and_channel(self):
        path = self.write_config(loop_rate_hz=1000.0)
        controllers = []
        open_logs = []

        def terminate_mid_trial(n):
            if n == 3:
                open_logs.append(controllers[0].trial_log)
                signal.raise_signal(signal.SIGTERM)

        backend = FakeBackend(on_read=terminate_mid_trial)
        previous = signal.getsignal(signal.SIGTERM)

        self.run_host(backend, [
            "--quiet", "--config", path, "--output-dir", self.tmp.name,
        ], controllers)

        self.assertEqual(len(open_logs), 1)
        self.assertIsNotNone(open_logs[0])
        self.assertTrue(open_logs[0].closed)
        self.assertIsNone(controllers[0].trial_log)
        self.assertTrue(backend.closed)
        self.assertTrue(self.channel.closed)
        self.assertIs(signal.getsignal(signal.SIGTERM), previous)

    def test_keyboard_interrupt_releases_log_backend_and_channel(self):
        path = self.write_config(loop_rate_hz=1000.0)
        controllers = []
        open_logs = []

        def remember_log(n):
            if n == 3:
                open_logs.append(controllers[0].trial_log)

        backend = FakeBackend(failures={3: KeyboardInterrupt()}, on_read=remember_log)

        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            self.run_host(backend, [
                "--quiet", "--config", path, "--output-dir", self.tmp.name,
            ], controllers)

        self.assertIn("Sweep Terminated.", out.getvalue())
        self.assertTrue(open_logs[0].closed)
        self.assertTrue(backend.closed)
        self.assertTrue(self.channel.closed)

    def test_initial_count_at_max_exits(self):
        backend = FakeBackend()
        err = io.StringIO()
        with contextlib.redirect_stderr(err), self.assertRaises(SystemExit) as cm:
            self.run_host(backend, [
                "--quiet", "--initial-count", "10", "--output-dir", self.tmp.name,
            ])

        self.assertEqual(cm.exception.code, 1)
        self.assertIn("Initial count 10", err.getvalue())
        self.assertEqual(backend.starts, 0)
        self.assertTrue(backend.closed)
        self.assertTrue(self.channel.closed)

if __name__ == "__main__":
    unittest.main()
