import json
import math
import os
from dataclasses import dataclass, fields, replace


# --- Defaults ---
NUM_JOINT = 20
K_MIN = 0.0
K_MAX = 0.2
K_STEP = 0.01
MAX_COUNT = 10
RESET_LINE_X = 2.1  # head x at or below this means the scene has been reset
FINISH_LINE_X = 2.1  # head x above this means the robot crossed the finish line
LOOP_RATE_HZ = 50.0

BACKEND_HOST = "127.0.0.1"
BACKEND_PORT = 6667
OBJECT_NAME = "isnake_hp_robot"

TORQUE_STREAM = "torque_data"
TORQUE_ADDR = ("127.0.0.1", 5601)
PARAM_STREAM = "auto_change_param"
PARAM_ADDR = ("127.0.0.1", 5602)

FILENAME_TEMPLATE = "Auto_k={k:1.3f}_count={count}.dat"

# Source-tree copy; non-editable installs put it under <prefix>/share/auto-sim-snake
EXAMPLE_SWEEP_CONFIG_PATH = os.path.join(
    os.path.dirname(__file__), "config", "sweep_default.json"
)


@dataclass
class SweepConfig:
    num_joint: int = NUM_JOINT
    k_min: float = K_MIN
    k_max: float = K_MAX
    k_step: float = K_STEP
    max_count: int = MAX_COUNT
    reset_line_x: float = RESET_LINE_X
    finish_line_x: float = FINISH_LINE_X
    loop_rate_hz: float = LOOP_RATE_HZ
    backend_host: str = BACKEND_HOST
    backend_port: int = BACKEND_PORT
    object_name: str = OBJECT_NAME
    torque_stream: str = TORQUE_STREAM
    torque_addr: tuple = TORQUE_ADDR
    param_stream: str = PARAM_STREAM
    param_addr: tuple = PARAM_ADDR
    filename_template: str = FILENAME_TEMPLATE
    output_dir: str = "."

    @property
    def num_k_steps(self):
        """Number of steps between k_min and k_max (inclusive range has one more value)."""
        return int(math.floor((self.k_max - self.k_min) / self.k_step + 1e-9))

    @property
    def tick_period(self):
        return 1.0 / self.loop_rate_hz


def _require(mapping, key, path):
    if key not in mapping:
        raise ValueError(f"Missing required key '{path}.{key}' in sweep config")
    return mapping[key]


def _as_addr(value, name):
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ValueError(f"{name} must be a [host, port] pair, got {value!r}")
    return (str(value[0]), int(value[1]))


def validate_sweep_config(config):
    if config.num_joint <= 0:
        raise ValueError(f"num_joint must be > 0, got {config.num_joint}")
    if config.k_step <= 0.0:
        raise ValueError(f"k_step must be > 0, got {config.k_step}")
    if config.k_max < config.k_min:
        raise ValueError(
            f"k_max ({config.k_max}) must not be below k_min ({config.k_min})"
        )
    if config.max_count <= 0:
        raise ValueError(f"max_count must be > 0, got {config.max_count}")
    if config.loop_rate_hz <= 0.0:
        raise ValueError(f"loop_rate_hz must be > 0, got {config.loop_rate_hz}")
    try:
        config.filename_template.format(k=config.k_min, count=0)
    except (KeyError, IndexError, ValueError) as e:
        raise ValueError(
            f"filename_template {config.filename_template!r} is not usable: {e}"
        ) from e
    return config


def load_sweep_config(config_path=None, **overrides):
    """
    Build a SweepConfig from the module defaults, an optional JSON file and
    keyword overrides (applied last; None values are ignored).
    """
    config = SweepConfig()

    if config_path is not None:
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Sweep config not found: {config_path}")

        with open(config_path, "r", encoding="utf-8") as fh:
            raw = json.load(fh)

        sweep = _require(raw, "sweep", "root")
        backend = _require(raw, "backend", "root")
        streams = _require(raw, "streams", "root")
        torque = _require(streams, "torque", "streams")
        param = _require(streams, "param", "streams")

        config = replace(
            config,
            num_joint=int(_require(sweep, "num_joint", "sweep")),
            k_min=float(_require(sweep, "k_min", "sweep")),
            k_max=float(_require(sweep, "k_max", "sweep")),
            k_step=float(_require(sweep, "k_step", "sweep")),
            max_count=int(_require(sweep, "max_count", "sweep")),
            reset_line_x=float(sweep.get("reset_line_x", RESET_LINE_X)),
            finish_line_x=float(sweep.get("finish_line_x", FINISH_LINE_X)),
            loop_rate_hz=float(sweep.get("loop_rate_hz", LOOP_RATE_HZ)),
            backend_host=str(_require(backend, "host", "backend")),
            backend_port=int(_require(backend, "port", "backend")),
            object_name=str(_require(backend, "object_name", "backend")),
            torque_stream=str(_require(torque, "name", "streams.torque")),
            torque_addr=_as_addr(_require(torque, "addr", "streams.torque"), "streams.torque.addr"),
            param_stream=str(_require(param, "name", "streams.param")),
            param_addr=_as_addr(_require(param, "addr", "streams.param"), "streams.param.addr"),
            filename_template=str(raw.get("filename_template", FILENAME_TEMPLATE)),
            output_dir=str(raw.get("output_dir", ".")),
        )

    known = {f.name for f in fields(SweepConfig)}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"Unknown sweep config override(s): {sorted(unknown)}")
    config = replace(config, **{k: v for k, v in overrides.items() if v is not None})

    return validate_sweep_config(config)
