"""Health checks for the credential core: storage reachability and key state."""
import os
import shutil
from pathlib import Path
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from .core import CredentialCore


def check_data_directory(path: str | Path) -> dict[str, Any]:
    """Data directory exists and is readable and writable."""
    path = Path(path)
    if not path.is_dir():
        return {"healthy": False, "message": f"Data directory missing: {path}"}
    if not os.access(path, os.R_OK | os.W_OK):
        return {"healthy": False, "message": f"Data directory not accessible: {path}"}
    return {"healthy": True, "message": "Data directory accessible"}


def check_disk_space(path: str | Path, min_free_mb: int = 100) -> dict[str, Any]:
    """Free space on the volume holding ``path``."""
    try:
        usage = shutil.disk_usage(path)
    except OSError:
        return {
            "healthy": True,
            "message": "Disk space check not available on this system",
        }
    free_mb = usage.free / (1024 * 1024)
    if free_mb < min_free_mb:
        return {
            "healthy": False,
            "message": f"Low disk space: {free_mb:.2f}MB free (minimum: {min_free_mb}MB)",
            "free_mb": round(free_mb),
        }
    return {
        "healthy": True,
        "message": f"Disk space OK: {free_mb:.2f}MB free",
        "free_mb": round(free_mb),
    }


def health_report(core: "CredentialCore", min_free_mb: int = 100) -> dict[str, Any]:
    """Aggregate health of a running core. Contains no secret values."""
    data_dir = core.data_dir
    checks = {
        "data_directory": check_data_directory(data_dir),
        "disk_space": check_disk_space(
            data_dir if data_dir.exists() else core.config.base_dir, min_free_mb,
        ),
        "keys": {
            "healthy": core.keys.persisted,
            "message": (
                "Key material persisted" if core.keys.persisted
                else "Running on ephemeral keys; encrypted tokens will not survive a restart"
            ),
        },
    }
    return {
        "healthy": all(check["healthy"] for check in checks.values()),
        "checks": checks,
        "users": len(core.users),
        "tokens": core.tokens.count(),
        "auth_policy": core.authenticator.policy.value,
    }
