"""FastAPI application: the storefront's backend-for-frontend.

Endpoints:

  GET    /health                                     Health check
  GET    /api/phones                                 Active catalogue, filtered
  GET    /api/phones/{phone_id}                      One active phone
  POST   /api/sessions                               Start a shopper session
  GET    /api/sessions/{sid}                         Cart, compare list and chat state
  DELETE /api/sessions/{sid}                         End a session
  *      /api/sessions/{sid}/cart[...]               Trial cart and coupon
  *      /api/sessions/{sid}/compare[...]            Compare list (max 4)
  POST   /api/sessions/{sid}/checkout                Place a home-trial booking
  GET    /api/bookings                               The signed-in shopper's bookings
  *      /api/sessions/{sid}/chat[...]               Advisor onboarding and streamed replies
  POST   /functions/phone-advisor                    Advisor relay to the AI gateway (SSE)
  POST   /api/otp/{phone|email}/{send|verify}        One-time passwords
  *      /api/admin/...                              Staff dashboard (see admin.py)

Errors are returned as ``{"error": "..."}``.
"""

from __future__ import annotations

# Load .env into os.environ early so Settings and any direct env reads agree
from dotenv import load_dotenv
load_dotenv()

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

# Configure root logger early so every touchtrial.* logger has a handler
# when run via `uvicorn touchtrial.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from touchtrial.admin import router as admin_router
from touchtrial.advisor.chat import (
    AdvisorChat,
    ChatBusyError,
    ChatLockedError,
    ChatValidationError,
)
from touchtrial.advisor.client import AdvisorClient, AdvisorError
from touchtrial.advisor.onboarding import OnboardingError
from touchtrial.advisor.relay import AdvisorRelay, RelayError
from touchtrial.auth import AuthProvider, AuthUser, get_optional_user, require_user
from touchtrial.cart import is_valid_coupon_format
from touchtrial.catalog import PhoneFilters, filter_phones
from touchtrial.checkout import CheckoutError, place_booking
from touchtrial.config import Settings, settings
from touchtrial.models import ChatMessage, CheckoutRequest
from touchtrial.otp import OtpClient, OtpError
from touchtrial.session import ShopperSession, ShopperSessionRegistry, redact_pii
from touchtrial.store import DataStore, PostgrestStore, StoreError

log = logging.getLogger("touchtrial.app")

_START_TIME = time.time()

# Streaming replies outlive the request if the browser goes away
_background_tasks: set[asyncio.Task] = set()


@dataclass
class Services:
    """Collaborators shared by every request, created once per application."""

    settings: Settings
    store: DataStore
    auth: AuthProvider
    advisor: AdvisorClient
    relay: AdvisorRelay
    otp: OtpClient
    sessions: ShopperSessionRegistry


def build_services(cfg: Settings) -> Services:
    store = PostgrestStore(
        cfg.rest_url, cfg.supabase_anon_key, cfg.supabase_service_key, timeout=cfg.http_timeout,
    )
    advisor = AdvisorClient(cfg.resolved_advisor_url, cfg.supabase_anon_key, timeout=cfg.http_timeout)

    def new_chat() -> AdvisorChat:
        return AdvisorChat(
            advisor,
            history_window=cfg.chat_history_window,
            max_message_length=cfg.chat_max_message_length,
        )

    return Services(
        settings=cfg,
        store=store,
        auth=AuthProvider(cfg.supabase_url.rstrip("/") + "/auth/v1", cfg.supabase_anon_key),
        advisor=advisor,
        relay=AdvisorRelay(cfg.ai_gateway_url, cfg.ai_gateway_api_key, cfg.ai_model, timeout=cfg.http_timeout),
        otp=OtpClient(cfg.functions_url, cfg.supabase_anon_key),
        sessions=ShopperSessionRegistry(store, new_chat),
    )


async def _sweep_sessions(registry: ShopperSessionRegistry, idle_timeout: float) -> None:
    interval = min(idle_timeout, 60.0)
    while True:
        await asyncio.sleep(interval)
        dropped = registry.expire_idle(idle_timeout)
        if dropped:
            log.info("Expired %d idle shopper sessions", dropped)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "services", None) is None:
        for warning in settings.validate_startup():
            log.warning(warning)
        app.state.services = build_services(settings)

    services: Services = app.state.services
    sweeper = None
    if services.settings.session_idle_timeout > 0:
        sweeper = asyncio.create_task(
            _sweep_sessions(services.sessions, services.settings.session_idle_timeout)
        )
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
        services.sessions.clear()


# ── Request bodies ───────────────────────────────────────────────


class CartItemIn(BaseModel):
    phone_id: str
    variant: Optional[str] = None
    color: Optional[str] = None


class CouponIn(BaseModel):
    code: str


class ComparePhoneIn(BaseModel):
    phone_id: str


class OptionIn(BaseModel):
    key: str


class ChatMessageIn(BaseModel):
    content: str


class AdvisorRequestIn(BaseModel):
    messages: list[dict]


class PhoneOtpIn(BaseModel):
    phone: str
    otp: str = ""


class EmailOtpIn(BaseModel):
    email: str
    otp: str = ""


# ── Helpers ──────────────────────────────────────────────────────


def get_services(request: Request) -> Services:
    return request.app.state.services


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token
    return None


def _session_state(session: ShopperSession) -> dict:
    return {
        "session_id": session.session_id,
        "cart": session.cart.to_dict(),
        "compare": [p.model_dump(mode="json") for p in session.compare.phones],
        "chat": _chat_state(session.chat),
    }


def _chat_state(chat: AdvisorChat, new_messages: list[ChatMessage] | None = None) -> dict:
    state = {
        "messages": [m.model_dump(mode="json") for m in chat.messages],
        "onboarding": chat.onboarding.to_dict(),
        "busy": chat.busy,
    }
    if new_messages is not None:
        state["new_messages"] = [m.model_dump(mode="json") for m in new_messages]
    return state


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


def _stream_chat(call: Callable[[Callable[[str], None]], Awaitable[ChatMessage]]) -> StreamingResponse:
    """Run one advisor exchange and forward it as server-sent events.

    Events: ``content`` per text delta, then exactly one of ``done`` (with
    the final message) or ``error``.
    """
    queue: asyncio.Queue[Optional[dict]] = asyncio.Queue()

    async def run() -> None:
        try:
            reply = await call(lambda delta: queue.put_nowait({"type": "content", "delta": delta}))
            queue.put_nowait({"type": "done", "message": reply.model_dump(mode="json")})
        except AdvisorError as e:
            queue.put_nowait({"type": "error", "error": e.message, "status": e.status_code or 502})
        except (ChatBusyError, ChatLockedError, ChatValidationError) as e:
            queue.put_nowait({"type": "error", "error": str(e), "status": 409})
        except Exception:
            log.exception("Advisor exchange failed")
            queue.put_nowait({"type": "error", "error": "Failed to get response", "status": 500})
        finally:
            queue.put_nowait(None)

    async def events():
        task = asyncio.create_task(run())
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        while True:
            event = await queue.get()
            if event is None:
                break
            yield _sse(event)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


def create_app(services: Services | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Pass ``services`` to run against injected collaborators; otherwise
    they are built from settings when the app starts.
    """
    app = FastAPI(
        title="TouchTrial",
        description="Smartphone home-trial storefront backend",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = first.get("msg", "Invalid request")
        return JSONResponse({"error": f"{where}: {message}" if where else message}, status_code=422)

    app.include_router(admin_router)

    def shopper_session(session_id: str, svc: Services = Depends(get_services)) -> ShopperSession:
        session = svc.sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health(svc: Services = Depends(get_services)) -> JSONResponse:
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({"status": "ok", "uptime": uptime, "sessions": len(svc.sessions)})

    # ── Catalogue ──────────────────────────────────────────────

    @app.get("/api/phones")
    async def list_phones(
        search: str = "",
        brands: list[str] = Query(default=[]),
        os: list[str] = Query(default=[]),
        ram: list[str] = Query(default=[]),
        storage: list[str] = Query(default=[]),
        min_price: int = 0,
        max_price: int = 200_000,
        svc: Services = Depends(get_services),
    ):
        try:
            filters = PhoneFilters(
                search=search, brands=brands, os=os, ram=ram, storage=storage,
                min_price=min_price, max_price=max_price,
            )
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=422)
        try:
            phones = await svc.store.list_phones(active_only=True)
        except StoreError as e:
            log.error("Catalogue fetch failed: %s", e)
            return JSONResponse({"error": "Failed to load phones"}, status_code=502)
        matched = filter_phones(phones, filters)
        return JSONResponse({
            "phones": [p.model_dump(mode="json") for p in matched],
            "total": len(matched),
        })

    @app.get("/api/phones/{phone_id}")
    async def get_phone(phone_id: str, svc: Services = Depends(get_services)):
        try:
            phone = await svc.store.get_phone(phone_id)
        except StoreError as e:
            log.error("Phone fetch failed: %s", e)
            return JSONResponse({"error": "Failed to load phone"}, status_code=502)
        if phone is None or not phone.is_active:
            return JSONResponse({"error": "Phone not found"}, status_code=404)
        return JSONResponse(phone.model_dump(mode="json"))

    # ── Sessions ───────────────────────────────────────────────

    @app.post("/api/sessions", status_code=201)
    async def create_session(svc: Services = Depends(get_services)):
        session = svc.sessions.create()
        return JSONResponse(_session_state(session), status_code=201)

    @app.get("/api/sessions/{session_id}")
    async def get_session(session: ShopperSession = Depends(shopper_session)):
        return JSONResponse(_session_state(session))

    @app.delete("/api/sessions/{session_id}")
    async def end_session(session_id: str, svc: Services = Depends(get_services)):
        svc.sessions.remove(session_id)
        return JSONResponse({"ended": True})

    # ── Cart ───────────────────────────────────────────────────

    @app.get("/api/sessions/{session_id}/cart")
    async def get_cart(session: ShopperSession = Depends(shopper_session)):
        return JSONResponse(session.cart.to_dict())

    @app.post("/api/sessions/{session_id}/cart/items")
    async def add_cart_item(
        body: CartItemIn,
        session: ShopperSession = Depends(shopper_session),
        svc: Services = Depends(get_services),
    ):
        try:
            phone = await svc.store.get_phone(body.phone_id)
        except StoreError as e:
            log.error("Phone fetch failed: %s", e)
            return JSONResponse({"error": "Failed to load phone"}, status_code=502)
        if phone is None or not phone.is_active:
            return JSONResponse({"error": "Phone not found"}, status_code=404)
        session.cart.add_to_cart(phone, variant=body.variant, color=body.color)
        return JSONResponse(session.cart.to_dict())

    @app.delete("/api/sessions/{session_id}/cart/items/{phone_id}")
    async def remove_cart_item(phone_id: str, session: ShopperSession = Depends(shopper_session)):
        session.cart.remove_from_cart(phone_id)
        return JSONResponse(session.cart.to_dict())

    @app.delete("/api/sessions/{session_id}/cart")
    async def clear_cart(session: ShopperSession = Depends(shopper_session)):
        session.cart.clear_cart()
        return JSONResponse(session.cart.to_dict())

    @app.post("/api/sessions/{session_id}/cart/coupon")
    async def apply_coupon(
        body: CouponIn,
        session: ShopperSession = Depends(shopper_session),
        user: Optional[AuthUser] = Depends(get_optional_user),
    ):
        if not is_valid_coupon_format(body.code):
            return JSONResponse(
                {"error": "Coupon codes are 3-32 letters, digits, '-' or '_'"}, status_code=422,
            )
        if session.cart.coupon_pending:
            return JSONResponse({"error": "A coupon is already being checked"}, status_code=409)
        applied = await session.cart.apply_coupon(body.code, user.id if user else None)
        if not applied:
            return JSONResponse({"error": "Invalid or expired coupon code"}, status_code=400)
        return JSONResponse(session.cart.to_dict())

    @app.delete("/api/sessions/{session_id}/cart/coupon")
    async def remove_coupon(session: ShopperSession = Depends(shopper_session)):
        session.cart.remove_coupon()
        return JSONResponse(session.cart.to_dict())

    # ── Compare ────────────────────────────────────────────────

    def _compare_state(session: ShopperSession) -> dict:
        return {
            "phones": [p.model_dump(mode="json") for p in session.compare.phones],
            "is_full": session.compare.is_full,
        }

    @app.get("/api/sessions/{session_id}/compare")
    async def get_compare(session: ShopperSession = Depends(shopper_session)):
        return JSONResponse(_compare_state(session))

    @app.post("/api/sessions/{session_id}/compare")
    async def add_compare(
        body: ComparePhoneIn,
        session: ShopperSession = Depends(shopper_session),
        svc: Services = Depends(get_services),
    ):
        try:
            phone = await svc.store.get_phone(body.phone_id)
        except StoreError as e:
            log.error("Phone fetch failed: %s", e)
            return JSONResponse({"error": "Failed to load phone"}, status_code=502)
        if phone is None or not phone.is_active:
            return JSONResponse({"error": "Phone not found"}, status_code=404)
        if not session.compare.add(phone):
            return JSONResponse({"error": "You can compare up to 4 phones"}, status_code=409)
        return JSONResponse(_compare_state(session))

    @app.delete("/api/sessions/{session_id}/compare/{phone_id}")
    async def remove_compare(phone_id: str, session: ShopperSession = Depends(shopper_session)):
        session.compare.remove(phone_id)
        return JSONResponse(_compare_state(session))

    @app.delete("/api/sessions/{session_id}/compare")
    async def clear_compare(session: ShopperSession = Depends(shopper_session)):
        session.compare.clear()
        return JSONResponse(_compare_state(session))

    # ── Checkout and bookings ──────────────────────────────────

    @app.post("/api/sessions/{session_id}/checkout")
    async def checkout(
        body: CheckoutRequest,
        session: ShopperSession = Depends(shopper_session),
        user: AuthUser = Depends(require_user),
        svc: Services = Depends(get_services),
    ):
        try:
            booking = await place_booking(session.cart, svc.store, user.id, body)
        except CheckoutError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        except StoreError as e:
            log.error("Booking insert failed for %s: %s", user.id, e)
            return JSONResponse({"error": "Failed to place booking. Please try again."}, status_code=502)
        return JSONResponse(booking.model_dump(mode="json"), status_code=201)

    @app.get("/api/bookings")
    async def my_bookings(
        user: AuthUser = Depends(require_user),
        svc: Services = Depends(get_services),
    ):
        try:
            bookings = await svc.store.list_bookings(user_id=user.id)
        except StoreError as e:
            log.error("Booking list failed for %s: %s", user.id, e)
            return JSONResponse({"error": "Failed to load bookings"}, status_code=502)
        return JSONResponse({"bookings": [b.model_dump(mode="json") for b in bookings]})

    # ── Advisor chat ───────────────────────────────────────────

    @app.get("/api/sessions/{session_id}/chat")
    async def get_chat(session: ShopperSession = Depends(shopper_session)):
        return JSONResponse(_chat_state(session.chat))

    @app.post("/api/sessions/{session_id}/chat/budget")
    async def choose_budget(body: OptionIn, session: ShopperSession = Depends(shopper_session)):
        try:
            added = session.chat.choose_budget(body.key)
        except OnboardingError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        return JSONResponse(_chat_state(session.chat, added))

    @app.post("/api/sessions/{session_id}/chat/priorities/toggle")
    async def toggle_priority(body: OptionIn, session: ShopperSession = Depends(shopper_session)):
        try:
            session.chat.toggle_priority(body.key)
        except OnboardingError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        return JSONResponse(_chat_state(session.chat, []))

    @app.post("/api/sessions/{session_id}/chat/priorities/confirm")
    async def confirm_priorities(session: ShopperSession = Depends(shopper_session)):
        try:
            added = session.chat.confirm_priorities()
        except OnboardingError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        return JSONResponse(_chat_state(session.chat, added))

    @app.post("/api/sessions/{session_id}/chat/brands/toggle")
    async def toggle_brand(body: OptionIn, session: ShopperSession = Depends(shopper_session)):
        try:
            session.chat.toggle_brand(body.key)
        except OnboardingError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        return JSONResponse(_chat_state(session.chat, []))

    @app.post("/api/sessions/{session_id}/chat/brands/confirm")
    async def confirm_brands(session: ShopperSession = Depends(shopper_session)):
        try:
            added = session.chat.confirm_brands()
        except OnboardingError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        return JSONResponse(_chat_state(session.chat, added))

    @app.post("/api/sessions/{session_id}/chat/recommendations")
    async def request_recommendations(
        request: Request,
        session: ShopperSession = Depends(shopper_session),
    ):
        """Stream the advisor's answer to the onboarding summary."""
        chat = session.chat
        if not chat.onboarding.can_chat:
            return JSONResponse({"error": "Finish the quick questions first"}, status_code=409)
        if chat.summary_sent:
            return JSONResponse({"error": "Recommendations were already requested"}, status_code=409)
        if chat.busy:
            return JSONResponse({"error": "Please wait for the current reply"}, status_code=409)
        token = _bearer_token(request)
        return _stream_chat(
            lambda on_content: chat.request_recommendations(session_token=token, on_content=on_content)
        )

    @app.post("/api/sessions/{session_id}/chat/messages")
    async def send_message(
        body: ChatMessageIn,
        request: Request,
        session: ShopperSession = Depends(shopper_session),
    ):
        """Send free text and stream the reply."""
        chat = session.chat
        try:
            chat.validate(body.content)
        except ChatValidationError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        except (ChatLockedError, ChatBusyError) as e:
            return JSONResponse({"error": str(e)}, status_code=409)
        token = _bearer_token(request)
        return _stream_chat(
            lambda on_content: chat.send(body.content, session_token=token, on_content=on_content)
        )

    # ── Advisor relay ──────────────────────────────────────────

    @app.post("/functions/phone-advisor")
    async def phone_advisor(body: AdvisorRequestIn, svc: Services = Depends(get_services)):
        messages = [
            {"role": m.get("role"), "content": str(m.get("content", ""))}
            for m in body.messages
            if isinstance(m, dict) and m.get("role") in ("user", "assistant")
        ]
        try:
            phones = await svc.store.list_phones(active_only=True)
        except StoreError as e:
            log.warning("Catalogue unavailable for advisor prompt: %s", e)
            phones = []
        try:
            stream = await svc.relay.open_stream(messages, phones)
        except RelayError as e:
            return JSONResponse({"error": e.message}, status_code=e.status_code)
        return StreamingResponse(stream, media_type="text/event-stream")

    # ── OTP ────────────────────────────────────────────────────

    def _otp_error(e: OtpError) -> JSONResponse:
        return JSONResponse({"error": e.message}, status_code=e.status_code or 400)

    @app.post("/api/otp/phone/send")
    async def send_phone_otp(body: PhoneOtpIn, svc: Services = Depends(get_services)):
        try:
            await svc.otp.send_phone_otp(body.phone)
        except OtpError as e:
            return _otp_error(e)
        log.info("Phone OTP sent to %s", redact_pii(body.phone))
        return JSONResponse({"success": True})

    @app.post("/api/otp/phone/verify")
    async def verify_phone_otp(body: PhoneOtpIn, svc: Services = Depends(get_services)):
        try:
            verified = await svc.otp.verify_phone_otp(body.phone, body.otp)
        except OtpError as e:
            return _otp_error(e)
        return JSONResponse({"verified": verified})

    @app.post("/api/otp/email/send")
    async def send_email_otp(body: EmailOtpIn, svc: Services = Depends(get_services)):
        try:
            await svc.otp.send_email_otp(body.email)
        except OtpError as e:
            return _otp_error(e)
        log.info("Email OTP sent to %s", redact_pii(body.email))
        return JSONResponse({"success": True})

    @app.post("/api/otp/email/verify")
    async def verify_email_otp(body: EmailOtpIn, svc: Services = Depends(get_services)):
        try:
            verified = await svc.otp.verify_email_otp(body.email, body.otp)
        except OtpError as e:
            return _otp_error(e)
        return JSONResponse({"verified": verified})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "touchtrial.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
