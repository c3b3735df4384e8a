# config.py
import os
import json
import time
import base64
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger("pos_system.config")

# Default configuration
DEFAULT_CONFIG = {
    "api": {
        "base_url": "http://localhost:8080/api",
        "access_token": "",
        "timeout": 15.0
    },
    "store": {
        "warehouse_id": 1,
        "stock_location_id": 1,
        "bank_code": "ACB"
    },
    "timing": {
        "review_debounce": 0.5,
        "step_delay": 1.0,
        "poll_interval": 5.0,
        "poll_max_attempts": 120,
        "poll_timeout": None,
        "scan_interval": 0.1,
        "scan_dedup_window": 2.0,
        "camera_check_interval": 5.0,
        "error_display_seconds": 10.0
    },
    "database": {
        "name": "pos.db"
    },
    "receipt": {
        "receipt_dir": "receipts",
        "pdf": True
    },
    "logging": {
        "level": "INFO",
        "file": "logs/pos.log",
        "max_size": 1048576,
        "backup_count": 3
    }
}

# Environment variables that override the on-disk config
ENV_OVERRIDES = {
    "POS_API_BASE_URL": ("api", "base_url"),
    "POS_ACCESS_TOKEN": ("api", "access_token"),
    "POS_WAREHOUSE_ID": ("store", "warehouse_id"),
    "POS_STOCK_LOCATION_ID": ("store", "stock_location_id"),
}


def _merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path="config.json"):
    """Load configuration from JSON file or create default if not exists"""
    config = DEFAULT_CONFIG
    if os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                config = _merge(DEFAULT_CONFIG, json.load(f))
                logger.info(f"Configuration loaded from {config_path}")
        except (OSError, ValueError) as e:
            logger.error(f"Error loading config: {e}")
    else:
        with open(config_path, 'w') as f:
            json.dump(DEFAULT_CONFIG, f, indent=4)
            logger.info(f"Created default configuration at {config_path}")

    for env_name, (section, key) in ENV_OVERRIDES.items():
        if os.environ.get(env_name):
            config = _merge(config, {section: {key: os.environ[env_name]}})
            logger.debug(f"{section}.{key} overridden from {env_name}")
    return config


def token_expiry(token: str) -> Optional[float]:
    """
    Read the `exp` claim of a JWT without verifying it.
    Returns None when the token carries no readable expiry.
    """
    try:
        payload = token.split('.')[1]
        payload += '=' * (-len(payload) % 4)
        claims = json.loads(base64.urlsafe_b64decode(payload.encode('ascii')))
    except (IndexError, ValueError):
        return None
    exp = claims.get('exp') if isinstance(claims, dict) else None
    return float(exp) if isinstance(exp, (int, float)) else None


@dataclass
class EngineContext:
    """
    Everything the cart and checkout components need from the outside:
    API endpoint and credentials, store defaults, and timing policy.
    """
    api_base_url: str = DEFAULT_CONFIG["api"]["base_url"]
    access_token: str = ""
    http_timeout: float = 15.0
    warehouse_id: int = 1
    stock_location_id: int = 1
    bank_code: str = "ACB"
    pos_mode: bool = True
    review_debounce: float = 0.5
    step_delay: float = 1.0
    poll_interval: float = 5.0
    poll_max_attempts: Optional[int] = 120
    poll_timeout: Optional[float] = None
    scan_interval: float = 0.1
    scan_dedup_window: float = 2.0
    camera_check_interval: float = 5.0
    error_display_seconds: float = 10.0

    @classmethod
    def from_config(cls, config: dict, pos_mode: bool = True):
        api = config.get("api", {})
        store = config.get("store", {})
        timing = {**DEFAULT_CONFIG["timing"], **config.get("timing", {})}
        return cls(
            api_base_url=api.get("base_url", DEFAULT_CONFIG["api"]["base_url"]),
            access_token=api.get("access_token", "") or "",
            http_timeout=float(api.get("timeout", 15.0)),
            warehouse_id=int(store.get("warehouse_id", 1)),
            stock_location_id=int(store.get("stock_location_id", 1)),
            bank_code=store.get("bank_code", "ACB"),
            pos_mode=pos_mode,
            review_debounce=float(timing["review_debounce"]),
            step_delay=float(timing["step_delay"]),
            poll_interval=float(timing["poll_interval"]),
            poll_max_attempts=timing["poll_max_attempts"],
            poll_timeout=timing["poll_timeout"],
            scan_interval=float(timing["scan_interval"]),
            scan_dedup_window=float(timing["scan_dedup_window"]),
            camera_check_interval=float(timing["camera_check_interval"]),
            error_display_seconds=float(timing["error_display_seconds"]),
        )

    def has_valid_token(self, now: Optional[float] = None) -> bool:
        """True when a token is present and its `exp` claim (if any) lies in the future."""
        if not self.access_token:
            return False
        exp = token_expiry(self.access_token)
        if exp is None:
            return True
        return exp > (time.time() if now is None else now)

    def auth_headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers
