"""Command line entry point: ``s3bridge``.

Mounts come from the YAML config, from ``--mount`` options, or both. A
``--mount`` for a path that the config already mounts replaces that
mount's bucket and prefix and keeps its other policies::

    s3bridge --config s3bridge.yaml
    s3bridge --mount /assets=site-assets/public --mount /data=site-data
    s3bridge --backend memory --seed-dir ./buckets --mount /=site
"""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from s3bridge.config import MountConfig, ProxyConfig, S3BridgeConfig, load_config
from s3bridge.logging_config import configure_logging
from s3bridge.server import create_app

logger = logging.getLogger("s3bridge")

DEFAULT_CONFIG = Path("s3bridge.yaml")

# Served by the application itself; a mount here would be unreachable.
RESERVED_PATHS = ("/health", "/healthz", "/metrics")


def parse_mount(value: str) -> MountConfig:
    """Parse ``PATH=BUCKET[/PREFIX]`` into a MountConfig.

    Raises:
        argparse.ArgumentTypeError: The value does not have that shape.
    """
    path, sep, target = value.partition("=")
    if not sep or not path or not target:
        raise argparse.ArgumentTypeError(f"expected PATH=BUCKET[/PREFIX], got {value!r}")
    bucket, _, prefix = target.partition("/")
    if not bucket:
        raise argparse.ArgumentTypeError(f"missing bucket in {value!r}")
    return MountConfig(
        path=_normalized(path),
        proxy=ProxyConfig(bucket=bucket, key_prefix=prefix.strip("/") or None),
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="s3bridge",
        description="Serve S3 objects as static HTTP resources.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"YAML configuration file (default: {DEFAULT_CONFIG} if present)",
    )
    parser.add_argument(
        "--mount",
        dest="mounts",
        type=parse_mount,
        action="append",
        default=[],
        metavar="PATH=BUCKET[/PREFIX]",
        help="Serve BUCKET (optionally below PREFIX) at PATH; repeatable",
    )
    parser.add_argument("--backend", choices=["aws", "memory"], default=None, help="Object store backend")
    parser.add_argument("--endpoint-url", default=None, help="S3-compatible endpoint URL")
    parser.add_argument("--seed-dir", default=None, help="Directory of buckets to load into the memory backend")
    parser.add_argument("--host", default=None, help="Bind address (overrides config)")
    parser.add_argument("--port", type=int, default=None, help="Listen port (overrides config)")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config)",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        choices=["text", "json"],
        help="Log format (overrides config)",
    )
    return parser.parse_args(argv)


def _normalized(path: str) -> str:
    return path.rstrip("/") or "/"


def merge_mounts(configured: list[MountConfig], overrides: list[MountConfig]) -> list[MountConfig]:
    """Apply ``--mount`` options on top of the configured mounts."""
    merged = list(configured)
    for mount in overrides:
        for i, existing in enumerate(merged):
            if _normalized(existing.path) == mount.path:
                proxy = existing.proxy.model_copy(
                    update={"bucket": mount.proxy.bucket, "key_prefix": mount.proxy.key_prefix}
                )
                merged[i] = existing.model_copy(update={"proxy": proxy})
                break
        else:
            merged.append(mount)
    return merged


def validate_mounts(mounts: list[MountConfig]) -> list[str]:
    """Return one message per mount problem; empty when the mounts are usable."""
    if not mounts:
        return ["no mounts configured"]
    problems = []
    seen: set[str] = set()
    for mount in mounts:
        path = _normalized(mount.path)
        if not path.startswith("/"):
            problems.append(f"mount path {mount.path!r} must start with '/'")
        if path in seen:
            problems.append(f"mount path {path!r} is configured twice")
        if path in RESERVED_PATHS:
            problems.append(f"mount path {path!r} is reserved")
        if not mount.proxy.bucket:
            problems.append(f"mount {path!r} has no bucket")
        seen.add(path)
    return problems


def build_config(args: argparse.Namespace) -> S3BridgeConfig:
    """Load the config file (if any) and apply command line overrides.

    Raises:
        FileNotFoundError: An explicitly given config file does not exist.
    """
    config_path = args.config
    if config_path is None and DEFAULT_CONFIG.exists():
        config_path = DEFAULT_CONFIG
    config = load_config(config_path) if config_path is not None else S3BridgeConfig()

    config.mounts = merge_mounts(config.mounts, args.mounts)

    if args.backend is not None:
        config.store.backend = args.backend
    if args.endpoint_url is not None:
        config.store.endpoint_url = args.endpoint_url
    if args.seed_dir is not None:
        config.store.memory_seed_dir = args.seed_dir
    if args.host is not None:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port
    if args.log_level is not None:
        config.server.log_level = args.log_level
    if args.log_format is not None:
        config.server.log_format = args.log_format
    return config


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    # Until the configured logging is installed.
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    try:
        config = build_config(args)
    except FileNotFoundError:
        logger.error("Config file not found: %s", args.config)
        sys.exit(1)
    except Exception as exc:
        logger.error("Failed to load config: %s", exc)
        sys.exit(1)

    problems = validate_mounts(config.mounts)
    if problems:
        for problem in problems:
            logger.error("Invalid mounts: %s", problem)
        sys.exit(1)

    configure_logging(level=config.server.log_level, fmt=config.server.log_format)
    for mount in config.mounts:
        logger.info(
            "Mount %s -> s3://%s/%s",
            mount.path,
            mount.proxy.bucket,
            mount.proxy.key_prefix or "",
            extra={"mount": mount.path, "bucket": mount.proxy.bucket},
        )

    app = create_app(config)

    # The request middleware already logs one line per request.
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
        access_log=False,
        timeout_graceful_shutdown=config.server.shutdown_timeout,
        timeout_keep_alive=5,
    )


if __name__ == "__main__":
    main()
