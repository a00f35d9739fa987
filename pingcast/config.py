"""Configuration loading for pingcast."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from xml.etree import ElementTree as ET

from .models import PROTOCOLS, WEBSUB, XMLRPC, ServiceConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "configs/pingcast.xml"

DEFAULT_SERVICES = (
    ServiceConfig(
        name="Google PubSubHubbub",
        endpoint="https://pubsubhubbub.appspot.com/",
        protocol=WEBSUB,
    ),
    ServiceConfig(name="Ping-o-Matic", endpoint="http://rpc.pingomatic.com/RPC2", protocol=XMLRPC),
    ServiceConfig(name="Yandex Blogs", endpoint="http://ping.blogs.yandex.ru/RPC2", protocol=XMLRPC),
    ServiceConfig(name="Twingly", endpoint="http://rpc.twingly.com/", protocol=XMLRPC),
    ServiceConfig(name="Weblogs.com", endpoint="http://rpc.weblogs.com/RPC2", protocol=XMLRPC),
)


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8080
    max_body_bytes: int = 16384


@dataclass
class RateLimitConfig:
    max_requests: int = 10
    window_seconds: float = 60.0


@dataclass
class AppConfig:
    services: List[ServiceConfig] = field(default_factory=lambda: list(DEFAULT_SERVICES))
    budget_seconds: float = 25.0
    safety_margin_seconds: float = 10.0
    batch_size: int = 2
    retry_base_delay: float = 1.0
    max_urls: int = 5
    public_base_url: str = "http://localhost:8080"
    cache_ttl_seconds: float = 30.0
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def websub_service(self) -> Optional[ServiceConfig]:
        return next((s for s in self.services if s.protocol == WEBSUB), None)


def _resolve_path(base_path: Path, target_path: str) -> str:
    """Resolve a path relative to the base config file if it's not absolute."""
    target = Path(target_path)
    if target.is_absolute():
        return str(target)
    return str((base_path.parent / target).resolve())


def validate_services(services: List[ServiceConfig]) -> List[ServiceConfig]:
    """Reject service lists the runner cannot work with."""
    if not services:
        raise ValueError("At least one service must be configured.")

    seen = set()
    for service in services:
        if service.name in seen:
            raise ValueError(f"Duplicate service name: {service.name}")
        seen.add(service.name)
        if service.protocol not in PROTOCOLS:
            raise ValueError(
                f"Service '{service.name}' has unknown protocol '{service.protocol}'"
            )
        if not service.endpoint:
            raise ValueError(f"Service '{service.name}' is missing an endpoint")
        if service.timeout <= 0:
            raise ValueError(f"Service '{service.name}' timeout must be positive")
        if service.max_retries < 0:
            raise ValueError(f"Service '{service.name}' max-retries must not be negative")

    if sum(1 for s in services if s.protocol == WEBSUB) > 1:
        raise ValueError("Only one websub service may be configured.")
    return services


def parse_services(node: ET.Element) -> List[ServiceConfig]:
    """Parse ``<service .../>`` children of a ``<services>`` element."""
    services: List[ServiceConfig] = []
    for item in node.findall("service"):
        name = item.attrib.get("name")
        if not name:
            raise ValueError("Service element must have a 'name' attribute.")
        services.append(
            ServiceConfig(
                name=name,
                endpoint=item.attrib.get("endpoint", "").strip(),
                protocol=item.attrib.get("protocol", XMLRPC).strip().lower(),
                timeout=float(item.attrib.get("timeout", "10")),
                max_retries=int(item.attrib.get("max-retries", "1")),
            )
        )
        logger.debug("Registered service '%s' (%s)", name, services[-1].protocol)
    return validate_services(services)


def parse_app_config(path: str) -> AppConfig:
    """Parse the main application configuration XML."""
    config_path = Path(path).resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    logger.info("Loading application configuration from %s", config_path)
    tree = ET.parse(config_path)
    root = tree.getroot()
    config = AppConfig()

    services_node = root.find("services")
    if services_node is not None:
        config.services = parse_services(services_node)

    config.budget_seconds = float(root.findtext("budget-seconds", "25"))
    config.safety_margin_seconds = float(root.findtext("safety-margin-seconds", "10"))
    config.batch_size = int(root.findtext("batch-size", "2"))
    config.retry_base_delay = float(root.findtext("retry-base-delay", "1.0"))
    config.max_urls = int(root.findtext("max-urls", "5"))
    config.cache_ttl_seconds = float(root.findtext("cache-ttl-seconds", "30"))
    base_url = root.findtext("public-base-url")
    if base_url and base_url.strip():
        config.public_base_url = base_url.strip()

    if config.batch_size < 1:
        raise ValueError("batch-size must be at least 1.")
    if config.budget_seconds <= 0:
        raise ValueError("budget-seconds must be positive.")

    # Rate limit
    rl_node = root.find("rate-limit")
    if rl_node is not None:
        config.rate_limit.max_requests = int(rl_node.findtext("max-requests", "10"))
        config.rate_limit.window_seconds = float(rl_node.findtext("window-seconds", "60"))

    # Server
    server_node = root.find("server")
    if server_node is not None:
        config.server.host = server_node.findtext("host", "127.0.0.1")
        config.server.port = int(server_node.findtext("port", "8080"))
        config.server.max_body_bytes = int(
            server_node.findtext("max-body-bytes", "16384")
        )

    # Logging
    log_node = root.find("logging")
    if log_node is not None:
        config.logging.level = log_node.findtext("level", "INFO")
        log_file = log_node.findtext("file")
        if log_file:
            config.logging.file = _resolve_path(config_path, log_file)

    return config


def load_app_config(path: Optional[str] = None) -> AppConfig:
    """Load ``path``, or the default location when present, else defaults."""
    if path:
        return parse_app_config(path)
    if Path(DEFAULT_CONFIG_PATH).exists():
        return parse_app_config(DEFAULT_CONFIG_PATH)
    logger.info("No configuration file found; using built-in defaults")
    return AppConfig()
