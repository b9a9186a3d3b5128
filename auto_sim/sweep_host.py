"""
Automatic simulation sweep host for the snake robot.
Runs one trial per sweep value of k against a physics server and logs joint
torques of every trial to its own file.
"""
import argparse
import os
import signal
import sys
import time

from msg_channel import UdpMessageChannel
from sim_backend import BulletBackend, PositionMode
from sweep_config import load_sweep_config
from sweep_controller import SweepController, SweepState
from sweep_exceptions import BackendError, SweepError


def get_args(argv=None):
    parser = argparse.ArgumentParser(description='Automatic snake robot simulation sweep')
    parser.add_argument('--config', type=str, default=None,
                        help='JSON sweep config (defaults built in)')
    parser.add_argument('--output-dir', type=str, default=None,
                        help='Directory for per-trial torque logs')
    parser.add_argument('--initial-k', type=float, default=None,
                        help='Start the sweep at this k instead of k_min')
    parser.add_argument('--initial-count', type=int, default=0,
                        help='Start the trial counter at this value')
    parser.add_argument('--seed-wait', action='store_true',
                        help='Wait one tick after publishing the initial k before the first trial')
    parser.add_argument('--exit-on-done', action='store_true',
                        help='Exit once the sweep is complete instead of idling')

    # Physics server
    parser.add_argument('--backend-host', type=str, default=None,
                        help='Physics server host')
    parser.add_argument('--backend-port', type=int, default=None,
                        help='Physics server TCP port')

    parser.add_argument('--debug', action='store_true',
                        help='Print every logged torque sample')
    parser.add_argument('--quiet', action='store_true',
                        help='Suppress console output')
    return parser.parse_args(argv)


def main(argv=None):
    args = get_args(argv)

    try:
        config = load_sweep_config(
            args.config,
            output_dir=args.output_dir,
            backend_host=args.backend_host,
            backend_port=args.backend_port,
        )
    except (OSError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(2)

    if not args.quiet:
        print("--- Start Auto Simulation ---")
        print(f"Physics server: {config.backend_host}:{config.backend_port}")
        print(f"Sweep: k={config.k_min}..{config.k_max} step {config.k_step}, "
              f"{config.max_count} passes, {config.loop_rate_hz:g} Hz")
        print(f"Output directory: {config.output_dir}")

    os.makedirs(config.output_dir, exist_ok=True)

    try:
        channel = UdpMessageChannel(
            config.torque_stream, config.torque_addr,
            config.param_stream, config.param_addr,
            config.num_joint, quiet=args.quiet,
        )
    except OSError as e:
        print(f"ERROR: Cannot subscribe to '{config.torque_stream}' on {config.torque_addr}: {e}",
              file=sys.stderr)
        sys.exit(1)

    stop_requested = False

    def request_stop(signum, frame):
        nonlocal stop_requested
        stop_requested = True

    previous_sigterm = signal.signal(signal.SIGTERM, request_stop)

    backend = BulletBackend()
    controller = None

    try:
        if not args.quiet:
            print("Connecting to physics server")
        try:
            backend.connect(config.backend_host, config.backend_port)
            head_handle = backend.get_object_handle(config.object_name)
            backend.get_object_position(head_handle, PositionMode.STREAMING)
        except BackendError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            print("Make sure the physics server is running and the scene is loaded.", file=sys.stderr)
            sys.exit(1)
        if not args.quiet:
            print("Connected to physics server")

        controller = SweepController(
            backend, channel, head_handle, config,
            initial_k=args.initial_k,
            initial_count=args.initial_count,
            initial_state=SweepState.SEEDED if args.seed_wait else SweepState.INIT,
            debug=args.debug,
            quiet=args.quiet,
        )
        channel.publish_parameter(controller.k.value)

        period = config.tick_period
        while not stop_requested:
            t_start = time.perf_counter()

            try:
                state = controller.tick()
            except BackendError as e:
                # retried on the next tick
                print(f"WARNING: {e}", file=sys.stderr)
                state = controller.state
            if state is SweepState.DONE and args.exit_on_done:
                break

            # Fixed-rate pacing
            t_elapsed = time.perf_counter() - t_start
            time.sleep(max(0, period - t_elapsed))

    except KeyboardInterrupt:
        print("\nSweep Terminated.")
    except (SweepError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        if controller is not None:
            controller.close()
        backend.close()
        channel.close()
        signal.signal(signal.SIGTERM, previous_sigterm)


if __name__ == "__main__":
    main()
