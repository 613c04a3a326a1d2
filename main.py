"""Entrypoint. Serves the recipe book API as main:app."""

import os

from app.app import app

__all__ = ["app"]


if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", "8080"))
    uvicorn.run("main:app", host="127.0.0.1", port=port, reload=False)
