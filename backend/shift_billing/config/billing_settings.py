"""
Billing settings loader.

Loads reconciliation tunables (grace window, ledger retention, signature
tolerance) from config/billing.yml. Secrets never live in the YAML file;
the webhook signing secret is read from the environment.

Usage:
    from shift_billing.config.billing_settings import get_billing_settings

    settings = get_billing_settings()
    settings.grace_period          # timedelta(days=14)
    settings.webhook_secret        # value of BILLING_WEBHOOK_SECRET
"""

import logging
import os
from datetime import timedelta
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD_DAYS = 14
DEFAULT_RETENTION_DAYS = 30
DEFAULT_SIGNATURE_TOLERANCE_SECONDS = 300
DEFAULT_SWEEP_BATCH_SIZE = 500
DEFAULT_RETENTION_BATCH_SIZE = 1000
DEFAULT_PROVIDER = "stripe"


class BillingSettings:
    """
    Thread-safe singleton loader for config/billing.yml.

    Missing file or missing keys fall back to the module defaults, so the
    service can boot with only DATABASE_URL and a webhook secret set.
    """

    _instance: Optional["BillingSettings"] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._config_path = config_path or os.getenv("BILLING_CONFIG_PATH")
        self._raw: Dict[str, Any] = {}
        self._load_lock = Lock()

        self._load()
        self._initialized = True

    def _resolve_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        candidates = [
            Path(__file__).parent.parent.parent.parent / "config" / "billing.yml",
            Path(os.getcwd()) / "config" / "billing.yml",
            Path(os.getcwd()) / ".." / "config" / "billing.yml",
        ]

        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved

        raise FileNotFoundError(
            f"billing.yml not found in: {[str(p) for p in candidates]}"
        )

    def _load(self) -> None:
        with self._load_lock:
            try:
                path = self._resolve_path()
                logger.info("Loading billing settings from %s", path)

                with open(path, "r") as f:
                    self._raw = yaml.safe_load(f) or {}
            except FileNotFoundError:
                logger.warning("billing.yml not found, using fallback defaults")
                self._raw = {}

    def reload(self) -> None:
        """Re-read the YAML from disk."""
        self._load()

    def _section(self, name: str) -> Dict[str, Any]:
        return self._raw.get(name) or {}

    @property
    def grace_period_days(self) -> int:
        return int(self._section("grace").get("period_days", DEFAULT_GRACE_PERIOD_DAYS))

    @property
    def grace_period(self) -> timedelta:
        return timedelta(days=self.grace_period_days)

    @property
    def sweep_batch_size(self) -> int:
        return int(self._section("grace").get("sweep_batch_size", DEFAULT_SWEEP_BATCH_SIZE))

    @property
    def webhook_provider(self) -> str:
        return str(self._section("webhook").get("provider", DEFAULT_PROVIDER))

    @property
    def signature_tolerance_seconds(self) -> int:
        return int(
            self._section("webhook").get(
                "signature_tolerance_seconds", DEFAULT_SIGNATURE_TOLERANCE_SECONDS
            )
        )

    @property
    def webhook_retention_days(self) -> int:
        return int(self._section("webhook").get("retention_days", DEFAULT_RETENTION_DAYS))

    @property
    def retention_batch_size(self) -> int:
        return int(
            self._section("webhook").get("retention_batch_size", DEFAULT_RETENTION_BATCH_SIZE)
        )

    @property
    def webhook_secret(self) -> Optional[str]:
        """Signing secret shared with the payment processor."""
        return os.getenv("BILLING_WEBHOOK_SECRET") or os.getenv("STRIPE_WEBHOOK_SECRET")

    def get_all(self) -> Dict[str, Any]:
        """Return the effective non-secret settings."""
        return {
            "version": self._raw.get("version", 1),
            "grace_period_days": self.grace_period_days,
            "sweep_batch_size": self.sweep_batch_size,
            "webhook_provider": self.webhook_provider,
            "signature_tolerance_seconds": self.signature_tolerance_seconds,
            "webhook_retention_days": self.webhook_retention_days,
            "retention_batch_size": self.retention_batch_size,
        }


def get_billing_settings(config_path: Optional[str] = None) -> BillingSettings:
    """Get the singleton BillingSettings instance."""
    return BillingSettings(config_path)


def reset_billing_settings() -> None:
    """Reset singleton (for tests only)."""
    BillingSettings._instance = None
