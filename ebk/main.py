import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config, ledger
from .audit import EVENT_BIRTH, EVENT_TRANSFER, AuditTrail, get_audit_backend
from .config import ConfigError, load_api_secret, validate_config
from .db import StorageError, close_connection, init_db
from .gates import admit
from .logging_config import audit_log, configure_logging, set_request_id
from .models import BirthRequest, SignedRequest, TransferRequest, VerifyRequest
from .security import accept_request_id, extract_client_id, sanitize_for_logging
from .util import now_epoch

logger = logging.getLogger(__name__)

app = FastAPI(title="EBK Registration Ledger")


@app.on_event("startup")
def _startup():
    configure_logging(config.LOG_LEVEL, json_format=config.LOG_JSON)
    problems = [name for name, ok in validate_config().items() if not ok]
    if problems:
        raise ConfigError(f"invalid configuration: {', '.join(problems)}")
    app.state.api_secret = load_api_secret()
    app.state.audit = AuditTrail(get_audit_backend())
    init_db()


@app.on_event("shutdown")
def _shutdown():
    close_connection()


def bad(reason: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "reason": reason})


class BodyLimitMiddleware:
    """Reject request bodies larger than max_bytes with 413.

    A declared Content-Length is checked up front. Bodies without one
    (chunked) are counted as they are read and the route sees an
    HTTPException once the limit is crossed.
    """

    def __init__(self, app, max_bytes: int):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length")
        if length and length.isdigit() and int(length) > self.max_bytes:
            await bad("payload too large", 413)(scope, receive, send)
            return

        received = 0

        async def limited_receive():
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    raise HTTPException(status_code=413, detail="payload too large")
            return message

        await self.app(scope, limited_receive, send)


app.add_middleware(BodyLimitMiddleware, max_bytes=config.MAX_BODY_BYTES)


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = set_request_id(accept_request_id(request.headers.get("x-request-id")))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    logger.warning("rejected malformed request to %s: %s", request.url.path, exc.errors())
    return bad("bad request")


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 413:
        return bad("payload too large", exc.status_code)
    return await http_exception_handler(request, exc)


@app.exception_handler(StorageError)
async def _storage_error(request: Request, exc: StorageError):
    logger.error("storage error on %s", request.url.path, exc_info=exc)
    audit_log.storage_failure(operation=request.url.path, error=type(exc.__cause__ or exc).__name__)
    return bad("db error")


def gate(request: Request, req: SignedRequest) -> Optional[JSONResponse]:
    """Freshness then signature. Returns a rejection response, or None if admitted."""
    reason = admit(req.ts, req.signed_fields(), req.sig, request.app.state.api_secret,
                   scheme=config.SIGNATURE_SCHEME)
    if reason is None:
        return None
    client = request.client.host if request.client else None
    audit_log.admission_rejected(
        operation=req.OPERATION,
        reason=reason,
        client_id=extract_client_id(request.headers, client),
        claimed_ts=req.ts,
    )
    logger.debug("rejected payload: %s", sanitize_for_logging(req.raw_payload()))
    return bad(reason)


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/ebk/birth")
def birth(req: BirthRequest, request: Request):
    rejected = gate(request, req)
    if rejected is not None:
        return rejected

    created_at = now_epoch()
    inserted = ledger.record_birth(req, created_at)
    audit_log.birth_recorded(req.cert_id, inserted)
    request.app.state.audit.append(EVENT_BIRTH, req.raw_payload(), created_at)
    return {"ok": True, "inserted": inserted}


@app.post("/ebk/transfer")
def transfer(req: TransferRequest, request: Request):
    rejected = gate(request, req)
    if rejected is not None:
        return rejected

    ledger.record_transfer(req)
    audit_log.transfer_recorded(req.sid, req.from_owner, req.to_owner)
    request.app.state.audit.append(EVENT_TRANSFER, req.raw_payload(), now_epoch())
    return {"ok": True}


@app.post("/ebk/verify")
def verify(req: VerifyRequest, request: Request):
    rejected = gate(request, req)
    if rejected is not None:
        return rejected

    result = ledger.verify_certificate(req.cert_id, req.dna_hash)
    audit_log.verification(req.cert_id, result.status.value)
    if not result.ok:
        return {"ok": False, "reason": result.reason}
    return {"ok": True, "record": result.record}
