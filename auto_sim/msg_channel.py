import socket
import struct
import sys
import threading

import numpy as np


def decode_torque_payload(payload, num_joint):
    """
    Decode one torque datagram: little-endian float32 array whose first element
    is reserved and whose next num_joint elements are per-joint torques.
    Extra trailing elements are ignored.
    """
    if len(payload) % 4 != 0:
        raise ValueError(f"Invalid payload length: {len(payload)} (not a multiple of 4)")
    n_floats = len(payload) // 4
    if n_floats < num_joint + 1:
        raise ValueError(
            f"Invalid payload length: {len(payload)} (expected at least {4 * (num_joint + 1)})"
        )

    unpacked = struct.unpack(f"<{n_floats}f", payload)
    return np.array(unpacked[1:num_joint + 1], dtype=float)


def encode_param_payload(k):
    # One-element float64 array
    return struct.pack("<d", float(k))


class SensorMailbox:
    """Single slot holding the most recent torque sample."""

    def __init__(self, num_joint):
        self.num_joint = num_joint
        self._sample = np.zeros(num_joint)
        self._lock = threading.Lock()
        self.updates = 0

    def put(self, values):
        values = np.asarray(values, dtype=float)
        if values.shape != (self.num_joint,):
            raise ValueError(f"Sample must be length-{self.num_joint}, got shape {values.shape}")
        with self._lock:
            self._sample = values.copy()
            self.updates += 1

    def latest(self):
        with self._lock:
            return self._sample.copy()


class UdpMessageChannel:
    """
    Subscribes to the torque stream on a bound UDP socket (receiver thread
    writes into a SensorMailbox) and publishes the sweep parameter as
    datagrams to the parameter stream address.
    """

    def __init__(self, torque_stream, torque_addr, param_stream, param_addr, num_joint, quiet=False):
        self.torque_stream = torque_stream
        self.param_stream = param_stream
        self.param_addr = param_addr
        self.quiet = quiet
        self.mailbox = SensorMailbox(num_joint)
        self.rejected = 0

        self.pub_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sub_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sub_sock.bind(torque_addr)
        self.sub_sock.settimeout(0.1)
        self.torque_addr = self.sub_sock.getsockname()

        self.running = True
        self.thread = threading.Thread(target=self.receive_loop, name=f"{torque_stream}-rx")
        self.thread.daemon = True
        self.thread.start()
        if not quiet:
            print(f"Subscribed to '{torque_stream}' on {self.torque_addr[0]}:{self.torque_addr[1]}")

    def receive_loop(self):
        while self.running:
            try:
                data, _ = self.sub_sock.recvfrom(4096)
            except socket.timeout:
                continue
            except OSError as e:
                if self.running:
                    print(f"WARNING: '{self.torque_stream}' receive failed: {e}", file=sys.stderr)
                break

            try:
                self.mailbox.put(decode_torque_payload(data, self.mailbox.num_joint))
            except ValueError as e:
                self.rejected += 1
                print(f"WARNING: dropped '{self.torque_stream}' message: {e}", file=sys.stderr)

    def latest_sample(self):
        return self.mailbox.latest()

    def publish_parameter(self, k):
        self.pub_sock.sendto(encode_param_payload(k), self.param_addr)

    def close(self):
        self.running = False
        self.thread.join(timeout=1.0)
        self.sub_sock.close()
        self.pub_sock.close()
