"""
Steam Deck Node Exporter - Prometheus node_exporter installer for SteamOS

Installs a pinned node_exporter release into the deck user's home directory
and runs it as a systemd user service:
- Precondition checks (tools, disk space, OS/arch, systemd)
- Checksum-verified download with retries
- Timestamped backup of any previous installation
- systemd --user registration and start

Quick Start:
    pip install steamdeck-node-exporter
    deck-exporter
"""

__version__ = "1.0.0"

# Export main classes for programmatic use
from .config import InstallerConfig
from .results import FailureKind, StepResult
from .provisioner import Provisioner, run_install

__all__ = [
    "InstallerConfig",
    "FailureKind",
    "StepResult",
    "Provisioner",
    "run_install",
]
