from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace

from .config import ChatServerConfig, load_config_file, validate_config, write_default_config
from .constants import CAPACITY_POLICIES
from .logging_config import configure_logging
from .paths import default_config_path
from .service import ChatService


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="linechat", description="Run a line-based chat server")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--host", default=None, help="Address to listen on (default: 0.0.0.0)")
    p.add_argument("--port", type=int, default=None, help="TCP port (default: 12345)")
    p.add_argument(
        "--max-clients",
        type=int,
        default=None,
        help="Maximum concurrently served sessions",
    )
    p.add_argument(
        "--capacity-policy",
        choices=CAPACITY_POLICIES,
        default=None,
        help="What happens to connections beyond --max-clients",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace) -> ChatServerConfig:
    cfg = ChatServerConfig(config_path=str(args.config))
    if args.config and os.path.exists(args.config):
        cfg = load_config_file(cfg, str(args.config))

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.max_clients is not None:
        cfg = replace(cfg, max_clients=int(args.max_clients))
    if args.capacity_policy is not None:
        cfg = replace(cfg, capacity_policy=str(args.capacity_policy))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return validate_config(cfg)


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    if not os.path.exists(config_path):
        write_default_config(config_path)
        print(
            "Created default linechat config. Review it before starting:\n"
            f"- Config: {config_path}\n"
            "\nThen re-run linechat.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    try:
        cfg = build_config(args)
    except ValueError as e:
        print(f"linechat: invalid configuration: {e}", file=sys.stderr)
        raise SystemExit(2) from e

    configure_logging(cfg)

    svc = ChatService(cfg)
    svc.start()
    svc.run_forever()


if __name__ == "__main__":
    main()
