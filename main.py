# -- coding: utf-8 --

import argparse
import logging
import signal
import time

from core.config import ConfigError, load_config, validate_config
from core.runtime import StartupError, build_overrides, build_runtime


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="LineMonitor bottling line service (config-driven)",
    )
    p.add_argument(
        "--config-dir", default="config", help="Directory containing main_*.yaml"
    )
    p.add_argument("--verbose", action="store_true", help="Debug log")
    p.add_argument(
        "--log-level", default="", help="Override log level (debug/info/warning/error)"
    )
    return p.parse_args(argv)


def setup_logging(verbose: bool, log_level: str = ""):
    if verbose:
        level = logging.DEBUG
    else:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "warn": logging.WARNING,
            "error": logging.ERROR,
            "critical": logging.CRITICAL,
        }
        level = level_map.get(str(log_level or "").strip().lower(), logging.INFO)
    # Use UTC for all %(asctime)s timestamps in logs.
    logging.Formatter.converter = time.gmtime
    logging.basicConfig(
        level=level,
        format="%(asctime)sZ [%(levelname)s] %(name)s: %(message)s",
        force=True,
    )
    if not verbose:
        # pymodbus logs every connection at info; aiohttp and influx log each request.
        for name in (
            "pymodbus",
            "pymodbus.server",
            "aiohttp.access",
            "influxdb_client",
        ):
            logging.getLogger(name).setLevel(logging.WARNING)


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose, args.log_level)
    try:
        cfg = load_config(args.config_dir)
    except ConfigError as e:
        logging.error("Config load failed: %s", e)
        raise SystemExit(1)
    # Config-driven log level (unless overridden by CLI).
    if not args.verbose and not args.log_level:
        setup_logging(args.verbose, cfg.runtime.log_level)

    try:
        validate_config(cfg)
    except ConfigError as e:
        logging.error("Config invalid: %s", e)
        raise SystemExit(1) from e

    logging.info(
        "Starting: sensors=%s http=%s tcp=%s modbus=%s influx=%s runtime=%s",
        cfg.sensors.type,
        f"{cfg.comm.http.host}:{cfg.comm.http.port}"
        if cfg.output.hmi.enabled
        else "off",
        f"{cfg.comm.tcp.host}:{cfg.comm.tcp.port}" if cfg.override.tcp.enabled else "off",
        f"{cfg.comm.modbus.host}:{cfg.comm.modbus.port}"
        if (cfg.output.modbus.enabled or cfg.override.modbus.enabled)
        else "off",
        cfg.comm.influx.url if cfg.output.influx.enabled else "off",
        f"{cfg.runtime.max_runtime_s}s" if cfg.runtime.max_runtime_s else "unlimited",
    )
    logging.info("Config file: main=%s", cfg.paths.get("main"))

    try:
        runtime = build_runtime(cfg)
        overrides = build_overrides(cfg, runtime)
    except (ValueError, RuntimeError) as e:
        logging.error("Runtime assembly failed: %s", e)
        raise SystemExit(1) from e

    if not overrides and not cfg.override.web.enabled:
        logging.info("All override inputs disabled by config!")

    def _on_sigterm(_signum, _frame):
        logging.info("SIGTERM received; stopping")
        runtime.request_stop()

    signal.signal(signal.SIGTERM, _on_sigterm)

    try:
        runtime.start(overrides)
    except StartupError as e:
        logging.error("%s", e)
        raise SystemExit(1) from e

    try:
        runtime.run(
            runtime_limit_s=cfg.runtime.max_runtime_s
            if cfg.runtime.max_runtime_s > 0
            else None
        )
        logging.info("Done")
    except KeyboardInterrupt:
        logging.info("Service STOPPED by user (Ctrl+C)")
        runtime.stop()
    except Exception:
        logging.exception("Error")
        raise


if __name__ == "__main__":
    main()
