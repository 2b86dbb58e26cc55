"""Metric sink contract and host helpers.

The network transport is provided by the host. buildmetrics only relies on
the ``MetricsClient`` protocol below.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from buildmetrics.config import GlobalConfig

logger = logging.getLogger(__name__)

MAX_HOSTNAME_LEN = 255
LOCAL_HOSTNAMES = frozenset({
    "localhost",
    "localhost.localdomain",
    "localhost6.localdomain6",
    "ip6-localhost",
})
_RFC_1123_HOSTNAME = re.compile(
    r"^(([a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9\-]*[a-zA-Z0-9])\.)*"
    r"([A-Za-z0-9]|[A-Za-z0-9][A-Za-z0-9\-]*[A-Za-z0-9])$"
)


class MetricsClient(Protocol):
    """Transport used to send data to the monitoring backend."""

    def emit_metric(self, name: str, value: int, hostname: str | None, tags: list[str]) -> None:
        ...

    def emit_service_check(
        self, name: str, status: int, hostname: str | None, tags: list[str]
    ) -> None:
        ...

    def emit_event(self, event: dict[str, Any]) -> None:
        ...


class LoggingClient:
    """MetricsClient that writes every emission to a logger.

    Useful as a dry-run transport while wiring up a host.
    """

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logging.getLogger("buildmetrics.client")

    def emit_metric(self, name: str, value: int, hostname: str | None, tags: list[str]) -> None:
        self.log.info(f"metric {name}={value} host={hostname} tags={','.join(tags)}")

    def emit_service_check(
        self, name: str, status: int, hostname: str | None, tags: list[str]
    ) -> None:
        self.log.info(f"service_check {name}={status} host={hostname} tags={','.join(tags)}")

    def emit_event(self, event: dict[str, Any]) -> None:
        self.log.info(f"event {event.get('title')} tags={','.join(event.get('tags', []))}")


def is_valid_hostname(hostname: str | None) -> bool:
    """Check that a hostname is usable for reporting.

    Rejects empty names, local aliases, names longer than 255 characters and
    names that are not RFC 1123 compliant.
    """
    if not hostname:
        return False
    if hostname.lower() in LOCAL_HOSTNAMES:
        logger.debug(f"Hostname: {hostname} is local")
        return False
    if len(hostname) > MAX_HOSTNAME_LEN:
        logger.debug(
            f"Hostname: {hostname} is too long (max length is {MAX_HOSTNAME_LEN} characters)"
        )
        return False
    return _RFC_1123_HOSTNAME.match(hostname) is not None


def resolve_hostname(
    global_config: GlobalConfig | None, env: Mapping[str, str] | None = None
) -> str | None:
    """Pick the hostname to report.

    Tries the configured hostname, then ``HOSTNAME`` from the build
    environment. Returns None if neither is valid.
    """
    hostname = global_config.hostname if global_config is not None else None
    if is_valid_hostname(hostname):
        return hostname

    hostname = env.get("HOSTNAME") if env else None
    if is_valid_hostname(hostname):
        logger.debug(f"Using hostname found in $HOSTNAME build environment variable: {hostname}")
        return hostname

    return None


def configure_logging(log_file: Path, level: int = logging.INFO) -> logging.Logger:
    """Send buildmetrics logs to a rotating log file.

    Args:
        log_file: Path to the log file. Parent directories are created.
        level: Minimum level to record.

    Returns:
        The package logger.
    """
    package_logger = logging.getLogger("buildmetrics")
    package_logger.setLevel(level)
    # Avoid adding multiple handlers if re-initialized
    if package_logger.handlers:
        return package_logger

    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
    handler.setFormatter(
        logging.Formatter(
            "[%(asctime)s] %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    )
    package_logger.addHandler(handler)
    return package_logger
