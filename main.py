"""Taleweaver: dev launcher. Starts the API in watch mode."""

import argparse
import os
import subprocess
import sys
from pathlib import Path

from taleweaver import config as app_config

ROOT = Path(__file__).parent
app_config.load_env()

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = os.getenv("BACKEND_PORT", "13013")


def main():
    parser = argparse.ArgumentParser(description="Taleweaver dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--demo", action="store_true",
                        help="Replace story types with the demo set")
    args = parser.parse_args()

    app_config.configure_logging()
    data_dir = args.data_dir or app_config.data_dir_from_env()

    if args.demo:
        from backend.demo import create_demo_data
        from taleweaver.storage import Storage
        create_demo_data(Storage(data_dir))

    # Subprocess env so the backend picks up the same data dir
    env = os.environ.copy()
    env["DATA_DIR"] = str(data_dir.resolve())

    print(f"Starting backend on http://localhost:{BACKEND_PORT} ...")
    proc = subprocess.Popen(
        ["uvicorn", "backend.app:create_app", "--factory", "--reload",
         "--host", HOST, "--port", BACKEND_PORT],
        cwd=ROOT, env=env,
    )
    try:
        proc.wait()
    except KeyboardInterrupt:
        print("\nShutting down...")
        proc.terminate()
        proc.wait()
        sys.exit(0)


if __name__ == "__main__":
    main()
