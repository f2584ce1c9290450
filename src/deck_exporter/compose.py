"""
Steam Deck Node Exporter Compose - Prometheus + Grafana stack files

Generates the same docker-compose.yml as example/docker-compose.yml, plus a
prometheus.yml that scrapes the Steam Deck's node_exporter.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

PROMETHEUS_PORT = 9090
GRAFANA_PORT = 3000
DEFAULT_TARGETS = ["localhost:9100"]


def generate_docker_compose(
    grafana_user: str = "admin",
    grafana_password: str = "grafana",
    prometheus_port: int = PROMETHEUS_PORT,
    grafana_port: int = GRAFANA_PORT,
) -> Dict[str, Any]:
    """Build the compose document for Prometheus and Grafana."""
    return {
        "version": "3",
        "volumes": {
            "prometheus_data": {},
            "grafana_data": {},
        },
        "services": {
            "prometheus": {
                "container_name": "prometheus",
                "image": "prom/prometheus:latest",
                "restart": "unless-stopped",
                "command": ["--config.file=/etc/prometheus/prometheus.yml"],
                "ports": [f"{prometheus_port}:9090"],
                "volumes": [
                    "./prometheus:/etc/prometheus",
                    "prometheus_data:/prometheus",
                ],
            },
            "grafana": {
                "container_name": "grafana",
                "image": "grafana/grafana:latest",
                "restart": "unless-stopped",
                "volumes": [
                    "./grafana/provisioning/:/etc/grafana/provisioning/",
                    "grafana_data:/var/lib/grafana",
                ],
                "ports": [f"{grafana_port}:3000"],
                "environment": [
                    f"GF_SECURITY_ADMIN_USER={grafana_user}",
                    f"GF_SECURITY_ADMIN_PASSWORD={grafana_password}",
                ],
            },
        },
    }


def validate_target(target: str) -> str:
    """Check a scrape target looks like host:port."""
    host, sep, port = target.rpartition(":")
    if not sep or not host or not port.isdigit() or not 0 < int(port) < 65536:
        raise ValueError(f"Invalid scrape target '{target}' (expected host:port)")
    return target


def generate_prometheus_config(
    targets: Optional[List[str]] = None,
    scrape_interval: str = "15s",
) -> Dict[str, Any]:
    """Build a prometheus.yml scraping node_exporter on the given targets."""
    targets = [validate_target(t) for t in (targets or DEFAULT_TARGETS)]
    return {
        "global": {
            "scrape_interval": scrape_interval,
            "evaluation_interval": scrape_interval,
        },
        "scrape_configs": [
            {
                "job_name": "prometheus",
                "static_configs": [{"targets": [f"localhost:{PROMETHEUS_PORT}"]}],
            },
            {
                "job_name": "node-exporter",
                "static_configs": [{"targets": targets, "labels": {"device": "steamdeck"}}],
            },
        ],
    }


def dump_yaml(data: Dict[str, Any]) -> str:
    return yaml.dump(data, default_flow_style=False, sort_keys=False)


def write_stack(
    output_dir: Path,
    targets: Optional[List[str]] = None,
    grafana_user: str = "admin",
    grafana_password: str = "grafana",
) -> List[Path]:
    """Write docker-compose.yml and prometheus/prometheus.yml under output_dir."""
    compose = generate_docker_compose(grafana_user, grafana_password)
    prometheus = generate_prometheus_config(targets)

    output_dir = Path(output_dir)
    prometheus_dir = output_dir / "prometheus"
    prometheus_dir.mkdir(parents=True, exist_ok=True)
    (output_dir / "grafana" / "provisioning").mkdir(parents=True, exist_ok=True)

    compose_file = output_dir / "docker-compose.yml"
    compose_file.write_text(dump_yaml(compose))

    prometheus_file = prometheus_dir / "prometheus.yml"
    prometheus_file.write_text(dump_yaml(prometheus))

    logger.debug(f"Wrote {compose_file} and {prometheus_file}")
    return [compose_file, prometheus_file]
