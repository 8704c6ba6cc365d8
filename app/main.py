"""
ASGI entry point for Wallet Ledger.

Run with:
    uvicorn app.main:app --reload
or:
    python -m app.main
"""

import uvicorn

from ledger.api import create_app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000)
