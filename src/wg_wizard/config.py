# src/wg_wizard/config.py
from __future__ import annotations

import os
from pathlib import Path

# Valeurs par défaut (surchargeables depuis la CLI)
DEFAULT_SUBNET: str = "10.8.0.1/24"
DEFAULT_LISTEN_PORT: int = 51820
DEFAULT_INTERFACE: str = "wg0"
DEFAULT_ENDPOINT: str = "192.168.1.1:51820"
DEFAULT_DNS: str = "1.1.1.1"
DEFAULT_ALLOWED_IPS: str = "0.0.0.0/0"
PERSISTENT_KEEPALIVE: int = 25

# Sépare l'espace de dérivation de toute autre utilisation du même secret racine.
# Ne jamais modifier : toutes les clés déjà distribuées en dépendent.
HKDF_SALT: bytes = b"wg-conf-wizard-v1"
KEY_BYTES: int = 32

BASE_DIR_ENV: str = "WG_WIZARD_DIR"


def default_base_dir() -> Path:
    return Path(os.environ.get(BASE_DIR_ENV, "generated"))
