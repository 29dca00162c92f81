"""
Module: channel_registry.py
Location: src/kernel/channels/

Defines the authoritative registry of kernel channels.
Each channel is described declaratively via ChannelConfig objects.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict

import zmq

from src.kernel.messages.message_types import Channel


# ----------------------------
# Channel roles
# ----------------------------

class ChannelRole(Enum):
    """
    Defines how envelopes travel on this channel.
    """
    REQUEST_REPLY = "REQUEST_REPLY"  # ROUTER <- DEALER, many frontends, one reply per request
    INPUT = "INPUT"                  # ROUTER -> DEALER, one leased frontend at a time
    BROADCAST = "BROADCAST"          # PUB -> SUB (fan-out, no replies)
    ECHO = "ECHO"                    # Raw bytes echoed back, no envelopes


# ----------------------------
# Channel configuration
# ----------------------------

@dataclass(frozen=True)
class ChannelConfig:
    """
    Declarative configuration for a single kernel channel.
    """

    name: Channel
    role: ChannelRole

    # Kernel-side socket type; frontends use the matching peer
    kernel_socket_type: int
    frontend_socket_type: int

    # 0 means "pick a random free port at bind time"
    default_port: int = 0


class ChannelRegistry:
    """
    Central registry of kernel channels.
    """

    _channels: Dict[Channel, ChannelConfig] = {}

    @classmethod
    def initialize(cls) -> None:
        """
        Build the registry.
        Call once at kernel or client startup; repeated calls are harmless.
        """

        cls._channels = {
            Channel.SHELL: ChannelConfig(
                name=Channel.SHELL,
                role=ChannelRole.REQUEST_REPLY,
                kernel_socket_type=zmq.ROUTER,
                frontend_socket_type=zmq.DEALER,
            ),
            Channel.STDIN: ChannelConfig(
                name=Channel.STDIN,
                role=ChannelRole.INPUT,
                kernel_socket_type=zmq.ROUTER,
                frontend_socket_type=zmq.DEALER,
            ),
            Channel.IOPUB: ChannelConfig(
                name=Channel.IOPUB,
                role=ChannelRole.BROADCAST,
                kernel_socket_type=zmq.PUB,
                frontend_socket_type=zmq.SUB,
            ),
            Channel.HB: ChannelConfig(
                name=Channel.HB,
                role=ChannelRole.ECHO,
                kernel_socket_type=zmq.ROUTER,
                frontend_socket_type=zmq.DEALER,
            ),
        }

    @classmethod
    def get(cls, channel: Channel | str) -> ChannelConfig:
        if not cls._channels:
            cls.initialize()
        try:
            return cls._channels[Channel(channel)]
        except (ValueError, KeyError):
            raise KeyError(f"Unknown kernel channel: {channel}") from None

    @classmethod
    def all(cls) -> Dict[Channel, ChannelConfig]:
        if not cls._channels:
            cls.initialize()
        return dict(cls._channels)
