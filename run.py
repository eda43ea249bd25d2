from __future__ import annotations

import logging
import os

import uvicorn


def main() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    uvicorn.run("passport_matte.main:app", host=host, port=port, workers=1)


if __name__ == "__main__":
    main()
