from __future__ import annotations

import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any

import tomlkit

from .constants import CAPACITY_POLICIES, CAPACITY_QUEUE
from .paths import ensure_private_dir


@dataclass(frozen=True)
class ChatServerConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = 12345
    max_clients: int = 50
    capacity_policy: str = CAPACITY_QUEUE
    max_queued_connections: int = 50
    outbound_queue_size: int = 256
    send_timeout_s: float = 5.0
    shutdown_grace_s: float = 5.0
    accept_poll_s: float = 0.5
    accept_backoff_s: float = 0.1
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


_LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "WARN", "INFO", "DEBUG", "NOTSET"})

_LOGGING_KEYS = {
    "level": "log_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
}


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        return tomllib.load(f)


def validate_config(cfg: ChatServerConfig) -> ChatServerConfig:
    if cfg.capacity_policy not in CAPACITY_POLICIES:
        raise ValueError(
            f"capacity_policy must be one of {', '.join(CAPACITY_POLICIES)}, "
            f"got {cfg.capacity_policy!r}"
        )
    if int(cfg.max_clients) < 1:
        raise ValueError("max_clients must be at least 1")
    if int(cfg.max_queued_connections) < 0:
        raise ValueError("max_queued_connections must not be negative")
    if int(cfg.outbound_queue_size) < 1:
        raise ValueError("outbound_queue_size must be at least 1")
    if not 0 <= int(cfg.port) <= 65535:
        raise ValueError(f"port out of range: {cfg.port}")
    if float(cfg.accept_backoff_s) < 0:
        raise ValueError("accept_backoff_s must not be negative")
    if str(cfg.log_level).strip().upper() not in _LOG_LEVELS:
        raise ValueError(f"unknown log level: {cfg.log_level!r}")
    if not str(cfg.log_format).strip():
        raise ValueError("log format must not be empty")
    return cfg


def apply_config_data(cfg: ChatServerConfig, data: dict[str, Any]) -> ChatServerConfig:
    """Overlay a parsed TOML document onto ``cfg``.

    Keys may live at top level or under ``[server]``; ``[logging]`` keys use
    their short names (``level``, ``file``, ...). Unknown keys are ignored.
    """
    if not isinstance(data, dict):
        return cfg

    server = data.get("server")
    if isinstance(server, dict):
        data = {**data, **server}

    log_table = data.get("logging")
    if isinstance(log_table, dict):
        mapped = {
            field: log_table[key] for key, field in _LOGGING_KEYS.items() if key in log_table
        }
        data = {**data, **mapped}

    allowed = set(asdict(cfg).keys())
    # The file cannot relocate itself.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    if "log_file" in updates and updates["log_file"] == "":
        updates["log_file"] = None
    if "log_datefmt" in updates and updates["log_datefmt"] == "":
        updates["log_datefmt"] = None
    if "capacity_policy" in updates:
        updates["capacity_policy"] = str(updates["capacity_policy"]).strip().lower()

    return validate_config(replace(cfg, **updates) if updates else cfg)


def load_config_file(cfg: ChatServerConfig, path: str) -> ChatServerConfig:
    return apply_config_data(cfg, load_toml(path))


def default_config_document() -> tomlkit.TOMLDocument:
    defaults = ChatServerConfig()

    doc = tomlkit.document()
    doc.add(tomlkit.comment("linechat configuration (TOML)"))
    doc.add(tomlkit.comment(""))
    doc.add(tomlkit.comment("This file was created on first run."))
    doc.add(tomlkit.comment("Edit it, then start linechat again."))
    doc.add(tomlkit.nl())

    server = tomlkit.table()
    server.add(tomlkit.comment("Listening address and port."))
    server.add("host", defaults.host)
    server.add("port", defaults.port)
    server.add(tomlkit.nl())
    server.add(tomlkit.comment("Maximum concurrently served sessions (worker pool size)."))
    server.add("max_clients", defaults.max_clients)
    server.add(tomlkit.nl())
    server.add(tomlkit.comment("What to do with connections beyond max_clients:"))
    server.add(tomlkit.comment('  "queue":  wait for a free worker (up to max_queued_connections)'))
    server.add(tomlkit.comment('  "reject": send a "server full" notice and close'))
    server.add("capacity_policy", defaults.capacity_policy)
    server.add("max_queued_connections", defaults.max_queued_connections)
    server.add(tomlkit.nl())
    server.add(tomlkit.comment("Per-recipient outbound buffer; a full buffer drops deliveries."))
    server.add("outbound_queue_size", defaults.outbound_queue_size)
    server.add("send_timeout_s", defaults.send_timeout_s)
    server.add(tomlkit.nl())
    server.add(tomlkit.comment("Seconds to wait for sessions to drain on shutdown."))
    server.add("shutdown_grace_s", defaults.shutdown_grace_s)
    doc.add("server", server)

    logging_table = tomlkit.table()
    logging_table.add(tomlkit.comment("Log level for linechat itself."))
    logging_table.add("level", defaults.log_level)
    logging_table.add(tomlkit.comment("Log to stderr (systemd/journald friendly)."))
    logging_table.add("console", defaults.log_console)
    logging_table.add(tomlkit.comment("Optional file path for logs (leave empty to disable)."))
    logging_table.add("file", "")
    logging_table.add("format", defaults.log_format)
    logging_table.add("datefmt", "")
    doc.add("logging", logging_table)

    return doc


def write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(tomlkit.dumps(default_config_document()))
