"""Developer entry points wired to Poetry scripts.

Usage (from project root):
  poetry run runserver --host=0.0.0.0 --port=8000 --no-reload
  poetry run worker --concurrency=4
  poetry run beat
  poetry run migrate        # defaults to `alembic upgrade head`
  poetry run init-env       # copies .env.example -> .env if missing
"""
from __future__ import annotations

import shutil
import subprocess
import sys
from pathlib import Path
from typing import List


def _args() -> List[str]:
    return sys.argv[1:]


def _option(name: str, default: str) -> str:
    prefix = f"--{name}="
    for a in _args():
        if a.startswith(prefix):
            return a[len(prefix):]
    return default


def runserver() -> None:
    """Run the API with Uvicorn. Flags: --host=, --port=, --reload / --no-reload."""
    import uvicorn

    host = _option("host", "127.0.0.1")
    port = int(_option("port", "8000"))
    reload = "--no-reload" not in _args()

    print(f"Starting uvicorn on {host}:{port} (reload={reload})")
    uvicorn.run("app.main:app", host=host, port=port, reload=reload)


def worker() -> None:
    """Run a Celery worker for verification tasks."""
    cmd = [
        "celery", "-A", "app.core.celery_app:celery_app", "worker",
        "--loglevel", _option("loglevel", "info"),
        "--concurrency", _option("concurrency", "2"),
    ]
    subprocess.run(cmd, check=True)


def beat() -> None:
    """Run Celery beat (stale pipeline release and periodic reassessment)."""
    cmd = [
        "celery", "-A", "app.core.celery_app:celery_app", "beat",
        "--loglevel", _option("loglevel", "info"),
    ]
    subprocess.run(cmd, check=True)


def run_migrations() -> None:
    """Run alembic. If no args provided, runs `alembic upgrade head`."""
    args = _args()
    cmd = ["alembic"] + (args or ["upgrade", "head"])
    subprocess.run(cmd, check=True)


def init_env() -> None:
    """Copy `.env.example` to `.env` if `.env` is missing."""
    root = Path(__file__).resolve().parents[1]
    src = root / ".env.example"
    dst = root / ".env"
    if dst.exists():
        print(f".env already exists at {dst}")
        return
    if not src.exists():
        print(f".env.example not found at {src}")
        return
    shutil.copy(src, dst)
    print(f"Created .env from .env.example at {dst}")


COMMANDS = {
    "runserver": runserver,
    "worker": worker,
    "beat": beat,
    "migrate": run_migrations,
    "init-env": init_env,
}


if __name__ == "__main__":
    # python -m app.cli <command> [flags]
    if len(sys.argv) <= 1 or sys.argv[1] not in COMMANDS:
        print(__doc__)
        sys.exit(0 if len(sys.argv) <= 1 else 1)
    COMMANDS[sys.argv.pop(1)]()
