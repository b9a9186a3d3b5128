"""
Simulation backend reached over pybullet's TCP client.

The physics server (e.g. `App_PhysicsServer_SharedMemory_TCP`) owns the scene;
this side only looks up the robot, reads its base position and switches
real-time stepping on and off. Stopping restores the scene state captured at
connect time so the robot returns to its start pose before the next trial.
"""
import enum

import numpy as np
import pybullet as p

from sweep_exceptions import BackendConnectionError, BackendError, ObjectHandleError

INVALID_CLIENT = -1


class PositionMode(enum.Enum):
    STREAMING = "streaming"  # start continuous reads and return the first one
    BUFFER = "buffer"  # latest value of an already streaming handle


class BulletBackend:
    def __init__(self):
        self.client_id = INVALID_CLIENT
        self.initial_state = None
        self.running = False
        self._streaming = set()

    def connect(self, host, port):
        try:
            client_id = p.connect(p.TCP, hostName=host, port=port)
        except p.error as e:
            raise BackendConnectionError(
                f"Could not connect to physics server at {host}:{port}: {e}"
            ) from e
        if client_id == INVALID_CLIENT:
            raise BackendConnectionError(f"Could not connect to physics server at {host}:{port}")

        self.client_id = client_id
        self.initial_state = self._call(p.saveState)
        return client_id

    def _check_connected(self):
        if self.client_id == INVALID_CLIENT:
            raise BackendError("Not connected to a physics server")

    def _call(self, fn, *args, **kwargs):
        try:
            return fn(*args, physicsClientId=self.client_id, **kwargs)
        except p.error as e:
            raise BackendError(f"{getattr(fn, '__name__', fn)} failed: {e}") from e

    def get_object_handle(self, name):
        self._check_connected()
        for i in range(self._call(p.getNumBodies)):
            uid = self._call(p.getBodyUniqueId, i)
            base_name, body_name = self._call(p.getBodyInfo, uid)
            if name in (base_name.decode("utf-8"), body_name.decode("utf-8")):
                return uid
        raise ObjectHandleError(f"No body named '{name}' in the simulation")

    def get_object_position(self, handle, mode=PositionMode.BUFFER):
        self._check_connected()
        if mode is PositionMode.STREAMING:
            self._streaming.add(handle)
        elif handle not in self._streaming:
            raise BackendError(f"Handle {handle} read in buffer mode before streaming was started")

        pos, _ = self._call(p.getBasePositionAndOrientation, handle)
        return np.array(pos, dtype=float)

    def start_simulation(self):
        self._check_connected()
        self._call(p.setRealTimeSimulation, 1)
        self.running = True

    def stop_simulation(self):
        self._check_connected()
        self._call(p.setRealTimeSimulation, 0)
        self._call(p.restoreState, stateId=self.initial_state)
        self.running = False

    def close(self):
        if self.client_id == INVALID_CLIENT:
            return
        try:
            if self.running:
                self._call(p.setRealTimeSimulation, 0)
        finally:
            p.disconnect(physicsClientId=self.client_id)
            self.client_id = INVALID_CLIENT
            self._streaming.clear()
