"""
Run the sweep service

    python -m funds_sweep [config_path]
"""

import sys

import uvicorn
from dotenv import find_dotenv, load_dotenv
from loguru import logger

from .api import create_app
from .session import SessionManager
from .sweep_config import load_config
from .transfer_engine import SweepTransferEngine


def build_engine(config) -> SweepTransferEngine:
    session_manager = SessionManager(
        config.rpc_endpoints,
        private_key=config.private_key,
        probe_timeout=config.probe_timeout_seconds
    )
    return SweepTransferEngine(
        session_manager,
        fee_reserve_eth=config.fee_reserve_eth,
        default_amount_eth=config.default_amount_eth,
        default_destination=config.default_destination,
        submit_timeout=config.submit_timeout_seconds,
        confirmation_timeout=config.confirmation_timeout_seconds
    )


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    config_path = argv[0] if argv else "sweep_config.yaml"

    # .env in the working directory; real environment variables win
    load_dotenv(find_dotenv(usecwd=True))

    try:
        config = load_config(config_path)
    except ValueError as e:
        logger.error(f"✗ Invalid configuration: {e}")
        sys.exit(2)

    logger.remove()
    logger.add(sys.stderr, level=config.log_level)

    app = create_app(build_engine(config))

    logger.info(f"Starting sweep service on port {config.port}")
    uvicorn.run(app, host="0.0.0.0", port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
