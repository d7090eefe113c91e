from __future__ import annotations

from dataclasses import dataclass

from app.infra.auth import PasswordHasher, password_hasher_from_settings
from app.infra.kv import KeyValueStore, create_kv_store
from app.infra.metrics import Metrics, configure_metrics
from app.infra.storage import StorageBackend, new_storage_backend


@dataclass
class AppServices:
    """Typed container for runtime services stored on `app.state.services`."""

    kv: KeyValueStore
    storage: StorageBackend
    password_hasher: PasswordHasher
    metrics: Metrics


def build_app_services(app_settings, *, metrics: Metrics | None = None) -> AppServices:
    metrics_client = metrics or configure_metrics(app_settings.metrics_enabled)
    return AppServices(
        kv=create_kv_store(app_settings),
        storage=new_storage_backend(app_settings),
        password_hasher=password_hasher_from_settings(app_settings),
        metrics=metrics_client,
    )