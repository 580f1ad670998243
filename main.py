"""DaggerGM — dev launcher. Starts the API server with auto-reload."""

import argparse
import os
import sys
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = int(os.getenv("BACKEND_PORT", "13013"))


def _grant(data_dir: Path, grant: str) -> None:
    from daggergm.credits import CreditLedger
    from daggergm.errors import DaggerGMError
    from daggergm.storage import Storage

    user_id, _, amount = grant.partition("=")
    try:
        balance = CreditLedger(Storage(data_dir)).add_credits(user_id, int(amount))
    except (ValueError, DaggerGMError) as e:
        sys.exit(f"Cannot grant credits: {e}")
    print(f"{user_id} now has {balance} credit(s)")


def main():
    parser = argparse.ArgumentParser(description="DaggerGM dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--mock", action="store_true",
                        help="Use the deterministic mock LLM provider")
    parser.add_argument("--grant-credits", metavar="USER=N", default=None,
                        help="Grant N credits to USER and exit")
    parser.add_argument("--no-reload", action="store_true",
                        help="Disable auto-reload")
    args = parser.parse_args()

    if args.data_dir:
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())
    if args.mock:
        os.environ["MOCK_LLM"] = "true"

    if args.grant_credits:
        _grant(Path(os.getenv("DATA_DIR", str(ROOT / "data"))), args.grant_credits)
        return

    print(f"Starting backend on http://localhost:{BACKEND_PORT} ...")
    uvicorn.run(
        "backend.app:app",
        host=HOST,
        port=BACKEND_PORT,
        reload=not args.no_reload,
        reload_dirs=[str(ROOT / "backend"), str(ROOT / "daggergm")],
    )


if __name__ == "__main__":
    main()
