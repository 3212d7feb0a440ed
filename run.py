#!/usr/bin/env python3
"""Run script for the records inventory."""

import logging
import uvicorn

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        "recinventory.api.app:app",
        host="127.0.0.1",
        port=8000,
        reload=True
    )
