"""
API server runner
Run with: python -m repairflow (or the repairflow-api script)
"""

import logging

import uvicorn

from .config import HOST, LOG_LEVEL, PORT

logger = logging.getLogger(__name__)


def main() -> None:
    logger.info(f"🚀 Starting RepairFlow API on {HOST}:{PORT}")
    uvicorn.run("repairflow.main:app", host=HOST, port=PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
