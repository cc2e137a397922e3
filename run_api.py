"""Helper launcher to run the FastAPI app without worrying about PYTHONPATH.

Usage (from project root):
  python run_api.py
"""
from __future__ import annotations

import logging
import pathlib
import sys

ROOT = pathlib.Path(__file__).parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from nomadcert.api.main import app, get_keys  # noqa: E402
from nomadcert.settings import settings  # noqa: E402

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=settings.log_level.upper())
    # Surface key misconfiguration at startup rather than on the first request
    get_keys()
    uvicorn.run(app, host="127.0.0.1", port=8000, reload=False)
