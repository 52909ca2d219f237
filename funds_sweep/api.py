"""
Sweep HTTP API

Routes:
- POST /transfer (aliases: /send, /sweep, /withdraw)
- GET  /balance
- GET  /status
- GET  /health
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from .errors import SweepError
from .transfer_engine import SweepTransferEngine, TransferResult, graceful_shutdown


TRANSFER_ALIASES = ("/send", "/sweep", "/withdraw")

# Status code per failure kind, mirrors SweepError.http_status
ERROR_STATUS = {cls.kind: cls.http_status for cls in SweepError.__subclasses__()}


def _first_present(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


def _result_response(result: TransferResult) -> JSONResponse:
    if result.success:
        body = {
            "success": True,
            "txHash": result.transaction_hash,
            "from": result.sender_address,
            "to": result.destination_address,
            "amountETH": str(result.amount_sent),
            "requestedETH": str(result.requested_amount),
            "blockNumber": result.confirming_block,
            "feePaidETH": str(result.fee_paid) if result.fee_paid is not None else None,
            "endpoint": result.endpoint,
        }
        return JSONResponse(status_code=200, content=body)

    body = {
        "success": False,
        "error": result.error_kind,
        "message": result.error_message,
    }
    if result.balance is not None:
        body["balance"] = str(result.balance)
    if result.transaction_hash:
        body["txHash"] = result.transaction_hash
    return JSONResponse(status_code=ERROR_STATUS.get(result.error_kind, 500), content=body)


def create_app(engine: SweepTransferEngine, bootstrap_on_startup: bool = True) -> FastAPI:
    """
    Build the FastAPI app around an engine

    Args:
        engine: Transfer engine (owns the session manager)
        bootstrap_on_startup: Bind a session when the app starts
    """
    app = FastAPI(title="Funds Sweep API", version="1.0.0")
    app.state.engine = engine

    @app.on_event("startup")
    async def startup_event():
        if not bootstrap_on_startup:
            return
        try:
            await engine.session_manager.ensure_session()
        except SweepError as e:
            # the first request retries the bootstrap
            logger.warning(f"Startup bootstrap failed [{e.kind}]: {e.message}")

    @app.on_event("shutdown")
    async def shutdown_event():
        await graceful_shutdown(engine)

    @app.exception_handler(SweepError)
    async def sweep_error_handler(request: Request, exc: SweepError):
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "internal_error", "message": str(exc)},
        )

    async def transfer(request: Request) -> JSONResponse:
        try:
            payload = await request.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        amount = _first_present(payload, "amount", "amountETH")
        destination: Optional[str] = _first_present(payload, "to", "toAddress", "treasury")

        transfer_request = engine.build_request(amount=amount, destination=destination)
        result = await engine.transfer(transfer_request)
        return _result_response(result)

    app.add_api_route("/transfer", transfer, methods=["POST"])
    for alias in TRANSFER_ALIASES:
        app.add_api_route(alias, transfer, methods=["POST"], include_in_schema=False)

    @app.get("/balance")
    async def balance() -> dict[str, Any]:
        report = await engine.get_balance()
        return {"success": True, **report.to_dict()}

    @app.get("/status")
    async def status() -> dict[str, Any]:
        return await engine.get_status()

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok"}

    return app
