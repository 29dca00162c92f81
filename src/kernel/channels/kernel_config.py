"""
Module: kernel_config.py
Location: src/kernel/channels/

Kernel process configuration: where each channel binds, who the kernel
claims to be, and how it logs. Loaded from a JSON connection file and/or
the command line; after binding, the kernel writes the file back with the
ports it actually got so frontends can find it.
"""

import argparse
import json
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Optional, Sequence

from src.kernel.channels.channel_registry import ChannelRegistry
from src.kernel.logging.log_severity import LogSeverity
from src.kernel.messages.message_types import Channel

_PORT_FIELDS = {
    Channel.SHELL: "shell_port",
    Channel.IOPUB: "iopub_port",
    Channel.STDIN: "stdin_port",
    Channel.HB: "hb_port",
}


@dataclass(frozen=True)
class KernelConfig:
    transport: str = "tcp"
    ip: str = "127.0.0.1"

    # 0 binds to a random free port
    shell_port: int = ChannelRegistry.get(Channel.SHELL).default_port
    iopub_port: int = ChannelRegistry.get(Channel.IOPUB).default_port
    stdin_port: int = ChannelRegistry.get(Channel.STDIN).default_port
    hb_port: int = ChannelRegistry.get(Channel.HB).default_port

    username: str = "kernel"
    connection_file: Optional[str] = None
    log_file: Optional[str] = None
    log_level: str = "INFO"
    poll_timeout_ms: int = 100
    autocall: int = 1

    def __post_init__(self):
        for channel, field_name in _PORT_FIELDS.items():
            port = getattr(self, field_name)
            if not 0 <= port <= 65535:
                raise ValueError(f"{channel.value} port out of range: {port}")
        if self.transport != "tcp":
            raise ValueError(f"Unsupported transport: {self.transport}")
        LogSeverity.from_name(self.log_level)

    # ----------------------------
    # Addressing
    # ----------------------------

    def addr(self, port: int) -> str:
        return f"{self.transport}://{self.ip}:{port}"

    def port(self, channel: Channel) -> int:
        return getattr(self, _PORT_FIELDS[Channel(channel)])

    def bind_addr(self, channel: Channel) -> str:
        """Address to bind, or the bare interface when the port is still unassigned."""
        port = self.port(channel)
        if port == 0:
            return f"{self.transport}://{self.ip}"
        return self.addr(port)

    def with_ports(self, **ports: int) -> "KernelConfig":
        unknown = set(ports) - set(_PORT_FIELDS.values())
        if unknown:
            raise KeyError(f"Unknown port fields: {sorted(unknown)}")
        return replace(self, **ports)

    def connection_info(self) -> dict:
        """What a frontend needs to connect."""
        info = {"transport": self.transport, "ip": self.ip}
        for field_name in _PORT_FIELDS.values():
            info[field_name] = getattr(self, field_name)
        return info

    # ----------------------------
    # Connection file
    # ----------------------------

    @classmethod
    def from_file(cls, path: str) -> "KernelConfig":
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        for field_name in _PORT_FIELDS.values():
            if field_name in known:
                known[field_name] = int(known[field_name])
        known["connection_file"] = str(path)
        return cls(**known)

    def to_file(self, path: Optional[str] = None) -> Path:
        target = Path(path or self.connection_file or "kernel.json")
        target.parent.mkdir(parents=True, exist_ok=True)
        data = asdict(self)
        data.pop("connection_file")
        target.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return target

    # ----------------------------
    # Command line
    # ----------------------------

    @staticmethod
    def build_parser() -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(description="Interactive computing kernel")
        parser.add_argument("--connection-file", "-f", help="JSON connection file to read and (re)write")
        parser.add_argument("--ip", help="Interface to bind")
        parser.add_argument("--shell-port", type=int)
        parser.add_argument("--iopub-port", type=int)
        parser.add_argument("--stdin-port", type=int)
        parser.add_argument("--hb-port", type=int)
        parser.add_argument("--username")
        parser.add_argument("--log-file", help="Append JSONL log entries to this file")
        parser.add_argument(
            "--log-level",
            choices=[s.name for s in LogSeverity],
            type=str.upper,
        )
        parser.add_argument("--autocall", type=int, choices=[0, 1, 2])
        return parser

    @classmethod
    def from_args(cls, argv: Optional[Sequence[str]] = None) -> "KernelConfig":
        """
        Build config from the command line.

        When a connection file is given and exists, it is loaded first and
        explicit command line options override it.
        """
        args = cls.build_parser().parse_args(argv)

        base = cls()
        if args.connection_file and Path(args.connection_file).exists():
            base = cls.from_file(args.connection_file)

        overrides = {
            key: value
            for key, value in vars(args).items()
            if value is not None and key in cls.__dataclass_fields__
        }
        return replace(base, **overrides)
