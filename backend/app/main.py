"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the ticket resale
marketplace. Controllers are intentionally thin: they accept requests,
delegate to services, and return JSON bodies shaped `{success, ...}`.
Failures raised by services are rendered by `exception_handlers`.

Endpoints implemented:
- POST /api/auth/register, /api/auth/login, /api/auth/refresh, /api/auth/logout
- GET /api/auth/me
- GET /api/users/{id}, PUT /api/user/update-profile
- GET|POST /api/posts, GET|PUT|DELETE /api/posts/{id}, GET /api/search
- POST /api/ticket-purchase, GET /api/purchase, GET /api/seller-purchases
- GET|POST /api/purchase/{order_number}, POST /api/purchase/{order_number}/complete-ticketing
- POST /api/purchase/cancel, GET /api/check-purchase
- POST /api/chat/init-room, GET|POST /api/messages, GET /api/messages/unread-count, POST /api/messages/read
- GET|POST /api/notifications, POST /api/notifications/mark-read, POST /api/notifications/mark-all-read
- POST /api/ratings, GET /api/confirmed-purchases, GET /api/seller-rating, GET /api/seller/{id},
  GET /api/stats/cancellation/{seller_id}
- POST /api/reports, GET /api/seller-reports
- GET /api/unpaid-fees, POST /api/mark-fee-paid
- POST /api/payment/initiate, POST /api/payment/webhook, GET /api/payment/status
- GET|POST /api/ticket-requests/{id}/proposals, POST /api/proposals/{id}/accept, GET /api/my-ticket-requests
- POST /api/feedback
- GET /api/admin/reports, PATCH /api/admin/reports/{id}, GET /api/admin/fees, GET|PATCH /api/admin/feedback,
  GET /api/admin/purchases, GET /api/admin/auth-logs
- GET /health
"""

from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
import os
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services, models
from .auth import (
    REFRESH_COOKIE,
    clear_session_cookies,
    get_current_user,
    get_optional_user,
    require_admin,
    set_session_cookies,
)
from .exception_handlers import setup_exception_handlers
from . import schemas
from .utils.rate_limit import InMemoryRateLimiter
from .config import settings

app = FastAPI(title="Ticket Resale Marketplace API")
logger = logging.getLogger("app.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
_login_limiter = InMemoryRateLimiter()
LOGIN_WINDOW_SECONDS = 60

# Wide-open CORS keeps local frontends working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

setup_exception_handlers(app)
create_db_and_tables()


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        if request.url.path.startswith("/api"):
            logger.exception(
                "request_failed %s",
                json.dumps(
                    {
                        "request_id": req_id,
                        "path": request.url.path,
                        "method": request.method,
                        "duration_ms": elapsed_ms,
                        "client": _client_host(request),
                    },
                    ensure_ascii=True,
                ),
            )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/api"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": _client_host(request),
                },
                ensure_ascii=True,
            ),
        )
    return response


def _enforce_login_rate_limit(key: str) -> None:
    blocked, retry_after = _login_limiter.blocked(key, settings.LOGIN_RATE_LIMIT_PER_MIN, LOGIN_WINDOW_SECONDS)
    if blocked:
        raise HTTPException(
            status_code=429,
            detail=f"too many failed login attempts; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )


@app.get('/health')
def health():
    return {"status": "ok"}


# auth ------------------------------------------------------------------------

@app.post('/api/auth/register', status_code=201)
def register(payload: schemas.RegisterIn, request: Request, db: Session = Depends(get_session)):
    """Register a new account.

    Returns 409 when the email is taken; malformed fields give 400.
    """
    user = services.AuthService(db).register(
        payload.email, payload.password, payload.name, payload.phone_number,
        ip=_client_host(request), ua=request.headers.get("user-agent"),
    )
    return {"success": True, "user": services.user_to_dict(user)}


@app.post('/api/auth/login')
def login(payload: schemas.LoginIn, request: Request, response: Response, db: Session = Depends(get_session)):
    """Authenticate and start a session.

    Issues an access and a refresh token, returns both with the user and
    mirrors the session into cookies. Repeated failures from the same
    client and email are throttled with 429.
    """
    key = f"{_client_host(request)}:{payload.email.strip().lower()}"
    _enforce_login_rate_limit(key)
    auth = services.AuthService(db)
    try:
        user = auth.authenticate(payload.email, payload.password, ip=_client_host(request),
                                 ua=request.headers.get("user-agent"))
    except services.AuthError:
        _login_limiter.hit(key)
        raise
    _login_limiter.reset(key)
    access, refresh = auth.issue_tokens(user)
    set_session_cookies(response, access, refresh)
    return {"success": True, "user": services.user_to_dict(user), "token": access, "refreshToken": refresh}


@app.post('/api/auth/refresh')
def refresh_token(request: Request, response: Response, payload: Optional[schemas.RefreshIn] = None,
                  db: Session = Depends(get_session)):
    token = (payload.refresh_token if payload else None) or request.cookies.get(REFRESH_COOKIE)
    user, access = services.AuthService(db).refresh(token)
    set_session_cookies(response, access)
    return {"success": True, "token": access, "user": services.user_to_dict(user)}


@app.post('/api/auth/logout')
def logout(request: Request, response: Response, user: Optional[models.User] = Depends(get_optional_user),
           db: Session = Depends(get_session)):
    services.AuthService(db).logout(user, ip=_client_host(request), ua=request.headers.get("user-agent"))
    clear_session_cookies(response)
    return {"success": True, "message": "logged out"}


@app.get('/api/auth/me')
def me(user: models.User = Depends(get_current_user)):
    return {"success": True, "user": services.user_to_dict(user)}


# users -----------------------------------------------------------------------

@app.get('/api/users/{user_id}')
def public_profile(user_id: int, db: Session = Depends(get_session)):
    return {"success": True, "user": services.UserService(db).public_profile(user_id)}


@app.put('/api/user/update-profile')
def update_profile(payload: schemas.ProfileUpdateIn, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    user = services.UserService(db).update_profile(user, payload.name, payload.phone_number, payload.profile_image)
    return {"success": True, "user": services.user_to_dict(user)}


# posts -----------------------------------------------------------------------

@app.get('/api/posts')
def list_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    search: Optional[str] = None,
    author_id: Optional[int] = None,
    db: Session = Depends(get_session),
):
    """List non-deleted posts, newest first, with pagination metadata."""
    result = services.PostService(db).list_posts(page, limit, category, search, author_id)
    return {"success": True, **result}


@app.get('/api/posts/{post_id}')
def get_post(post_id: int, db: Session = Depends(get_session)):
    post = services.PostService(db).get_post(post_id)
    return {"success": True, "post": services.post_to_dict(post)}


@app.post('/api/posts', status_code=201)
def create_post(payload: schemas.PostIn, db: Session = Depends(get_session),
                user: models.User = Depends(get_current_user)):
    """Create a listing.

    Sellers with unpaid platform fees are refused with 403 and the
    unpaid summary.
    """
    post = services.PostService(db).create(user, payload.model_dump())
    return {"success": True, "post": services.post_to_dict(post)}


@app.put('/api/posts/{post_id}')
def update_post(post_id: int, payload: schemas.PostUpdateIn, db: Session = Depends(get_session),
                user: models.User = Depends(get_current_user)):
    post = services.PostService(db).update(user, post_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "post": services.post_to_dict(post)}


@app.delete('/api/posts/{post_id}')
def delete_post(post_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.PostService(db).delete(user, post_id)
    return {"success": True, "message": "post deleted"}


@app.get('/api/search')
def search_posts(
    query: str = "",
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_session),
):
    result = services.PostService(db).search(query, page, limit)
    return {"success": True, **result}


# purchases -------------------------------------------------------------------

@app.post('/api/ticket-purchase', status_code=201)
def ticket_purchase(payload: schemas.TicketPurchaseIn, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    """Buy tickets from an ACTIVE listing.

    The purchase starts PROCESSING and the listing is held until the
    purchase is cancelled or confirmed.
    """
    purchase = services.PurchaseService(db).create(
        user, payload.post_id, payload.quantity, payload.selected_seats,
        payload.phone_number, payload.payment_method,
    )
    return {"success": True, "purchase": services.purchase_to_dict(purchase)}


@app.get('/api/purchase')
def my_purchases(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return {"success": True, "purchases": services.PurchaseService(db).list_for_buyer(user)}


@app.get('/api/seller-purchases')
def seller_purchases(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return {"success": True, "purchases": services.PurchaseService(db).list_for_seller(user)}


@app.post('/api/purchase/cancel')
def cancel_purchase(
    payload: Optional[schemas.CancelIn] = None,
    order_number_q: Optional[str] = Query(None, alias="orderNumber"),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    order_number = order_number_q or (payload.order_number if payload else None)
    reason = payload.reason if payload else None
    purchase, changed = services.PurchaseService(db).cancel(user, order_number, reason)
    message = "purchase cancelled" if changed else "purchase is already CANCELLED"
    return {"success": True, "message": message, "purchase": services.purchase_to_dict(purchase)}


@app.get('/api/check-purchase')
def check_purchase(post_id: int = Query(..., alias="postId"), db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    return {"success": True, **services.PurchaseService(db).check(user, post_id)}


@app.get('/api/purchase/{order_number}')
def purchase_detail(order_number: str, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    return {"success": True, "purchase": services.PurchaseService(db).get_detail(user, order_number)}


@app.post('/api/purchase/{order_number}')
def update_purchase_status(order_number: str, payload: schemas.StatusUpdateIn, db: Session = Depends(get_session),
                           user: models.User = Depends(get_current_user)):
    """Move a purchase through its lifecycle.

    Setting the current status again is a no-op answered with 200;
    leaving CONFIRMED or CANCELLED is refused with 400.
    """
    purchase, changed = services.PurchaseService(db).update_status(user, order_number, payload.status)
    message = f"status updated to {purchase.status}" if changed else f"purchase is already {purchase.status}"
    return {"success": True, "message": message, "purchase": services.purchase_to_dict(purchase)}


@app.post('/api/purchase/{order_number}/complete-ticketing')
def complete_ticketing(order_number: str, db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    purchase, changed = services.PurchaseService(db).complete_ticketing(user, order_number)
    message = "ticketing completed" if changed else "purchase is already COMPLETED"
    return {"success": True, "message": message, "purchase": services.purchase_to_dict(purchase)}


# messaging -------------------------------------------------------------------

@app.post('/api/chat/init-room')
def init_room(payload: schemas.InitRoomIn, response: Response, db: Session = Depends(get_session),
              user: models.User = Depends(get_current_user)):
    room, created = services.ChatService(db).init_room(user, payload.order_number)
    if created:
        response.status_code = 201
    return {"success": True, "roomId": room.id, "created": created}


@app.post('/api/messages', status_code=201)
def send_message(payload: schemas.MessageIn, db: Session = Depends(get_session),
                 user: models.User = Depends(get_current_user)):
    """Send a chat message as the authenticated user.

    With an order the room is found or created and the receiver defaults
    to the other party; without one `receiverId` is required.
    """
    message = services.ChatService(db).send(
        user, payload.content, payload.order_number, payload.purchase_id, payload.receiver_id,
    )
    return {"success": True, "message": message.model_dump()}


@app.get('/api/messages/unread-count')
def unread_count(order_number: Optional[str] = Query(None, alias="orderNumber"), db: Session = Depends(get_session),
                 user: models.User = Depends(get_current_user)):
    return {"success": True, "count": services.ChatService(db).unread_count(user, order_number)}


@app.post('/api/messages/read')
def mark_messages_read(payload: schemas.MarkReadIn, db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    count = services.ChatService(db).mark_read(user, payload.room_id, payload.order_number, payload.with_user_id)
    return {"success": True, "count": count}


@app.get('/api/messages')
def list_messages(
    room_id: Optional[str] = Query(None, alias="roomId"),
    order_number: Optional[str] = Query(None, alias="orderNumber"),
    with_user_id: Optional[int] = Query(None, alias="withUserId"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    result = services.ChatService(db).list_messages(user, room_id, order_number, limit, offset, with_user_id)
    return {"success": True, **result}


# notifications ---------------------------------------------------------------

@app.get('/api/notifications')
def list_notifications(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return {"success": True, **services.NotificationService(db).list_for(user)}


@app.post('/api/notifications', status_code=201)
def create_notification(payload: schemas.NotificationIn, db: Session = Depends(get_session),
                        admin: models.User = Depends(require_admin)):
    n = services.NotificationService(db).create(payload.user_id, payload.message, payload.type, payload.post_id)
    return {"success": True, "notification": n.model_dump()}


@app.post('/api/notifications/mark-read')
def mark_notification_read(payload: schemas.MarkNotificationIn, db: Session = Depends(get_session),
                           user: models.User = Depends(get_current_user)):
    n = services.NotificationService(db).mark_read(user, payload.notification_id)
    return {"success": True, "notification": n.model_dump()}


@app.post('/api/notifications/mark-all-read')
def mark_all_notifications_read(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return {"success": True, "count": services.NotificationService(db).mark_all_read(user)}


# ratings & seller stats ------------------------------------------------------

@app.post('/api/ratings', status_code=201)
def create_rating(payload: schemas.RatingIn, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    rating = services.RatingService(db).create(user, payload.transaction_id, payload.rating, payload.comment)
    return {"success": True, "rating": rating.model_dump()}


@app.get('/api/confirmed-purchases')
def confirmed_purchases(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return {"success": True, "purchases": services.RatingService(db).confirmed_purchases(user)}


@app.get('/api/seller-rating')
def seller_rating(seller_id: Optional[int] = Query(None, alias="sellerId"), db: Session = Depends(get_session)):
    if seller_id is None:
        raise HTTPException(status_code=400, detail="sellerId is required")
    return {"success": True, **services.RatingService(db).seller_rating(seller_id)}


@app.get('/api/seller/{seller_id}')
def seller_profile(seller_id: int, db: Session = Depends(get_session)):
    return {"success": True, **services.SellerStatsService(db).seller_profile(seller_id)}


@app.get('/api/stats/cancellation/{seller_id}')
def cancellation_stats(seller_id: int, db: Session = Depends(get_session)):
    return {"success": True, **services.SellerStatsService(db).cancellation_stats(seller_id)}


# reports ---------------------------------------------------------------------

@app.post('/api/reports', status_code=201)
def create_report(payload: schemas.ReportIn, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    report = services.ReportService(db).create(user, payload.type, payload.reason, payload.post_id, payload.seller_id)
    return {"success": True, "report": report.model_dump()}


@app.get('/api/seller-reports')
def seller_reports(seller_id: Optional[int] = Query(None, alias="sellerId"), db: Session = Depends(get_session)):
    if seller_id is None:
        raise HTTPException(status_code=400, detail="sellerId is required")
    return {"success": True, **services.ReportService(db).seller_reports(seller_id)}


# fees ------------------------------------------------------------------------

@app.get('/api/unpaid-fees')
def unpaid_fees(user_id: Optional[int] = Query(None, alias="userId"), db: Session = Depends(get_session),
                user: models.User = Depends(get_current_user)):
    """Unpaid platform fees of the caller; admins may ask about any user."""
    target = user.id
    if user_id is not None and user_id != user.id:
        if not user.is_admin:
            raise HTTPException(status_code=403, detail="cannot view another user's fees")
        target = user_id
    return {"success": True, **services.FeeService(db).unpaid_summary(target)}


@app.post('/api/mark-fee-paid')
def mark_fee_paid(payload: schemas.MarkFeePaidIn, db: Session = Depends(get_session),
                  admin: models.User = Depends(require_admin)):
    purchase = services.FeeService(db).mark_paid(payload.purchase_id)
    return {"success": True, "purchase": services.purchase_to_dict(purchase)}


# payments --------------------------------------------------------------------

@app.post('/api/payment/initiate')
def initiate_payment(payload: schemas.PaymentInitiateIn, db: Session = Depends(get_session),
                     user: models.User = Depends(get_current_user)):
    payment = services.PaymentService(db).initiate(
        user, payload.post_id, payload.amount, payload.phone_number, payload.selected_seats,
    )
    return {"success": True, "paymentId": payment.id}


@app.post('/api/payment/webhook')
def payment_webhook(payload: Dict[str, Any] = Body(...), db: Session = Depends(get_session)):
    """Provider callback updating a payment's status.

    The event type is mapped to DONE, FAILED, CANCELLED or PENDING.
    """
    payment = services.PaymentService(db).apply_webhook(payload)
    return {"success": True, "paymentId": payment.id, "status": payment.status}


@app.get('/api/payment/status')
def payment_status(payment_id: Optional[str] = None, db: Session = Depends(get_session)):
    return {"success": True, **services.PaymentService(db).status(payment_id)}


# ticket requests & proposals -------------------------------------------------

@app.post('/api/ticket-requests/{post_id}/proposals', status_code=201)
def create_proposal(post_id: int, payload: schemas.ProposalIn, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    proposal = services.ProposalService(db).create(
        user, post_id, payload.section_id, payload.proposed_price,
        payload.section_name, payload.max_price, payload.message,
    )
    return {"success": True, "proposal": proposal.model_dump()}


@app.get('/api/ticket-requests/{post_id}/proposals')
def list_proposals(post_id: int, db: Session = Depends(get_session)):
    return {"success": True, "proposals": services.ProposalService(db).list_for_request(post_id)}


@app.post('/api/proposals/{proposal_id}/accept')
def accept_proposal(proposal_id: int, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    proposal = services.ProposalService(db).accept(user, proposal_id)
    return {"success": True, "proposal": proposal.model_dump()}


@app.get('/api/my-ticket-requests')
def my_ticket_requests(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return {"success": True, "requests": services.ProposalService(db).my_requests(user)}


# feedback --------------------------------------------------------------------

@app.post('/api/feedback', status_code=201)
def submit_feedback(payload: schemas.FeedbackIn, db: Session = Depends(get_session)):
    fb = services.FeedbackService(db).create(payload.feedback)
    return {"success": True, "feedback": fb.model_dump()}


# admin -----------------------------------------------------------------------

@app.get('/api/admin/reports')
def admin_reports(status: Optional[str] = None, db: Session = Depends(get_session),
                  admin: models.User = Depends(require_admin)):
    return {"success": True, "reports": services.ReportService(db).list_all(status)}


@app.patch('/api/admin/reports/{report_id}')
def admin_update_report(report_id: int, payload: schemas.ReportStatusIn, db: Session = Depends(get_session),
                        admin: models.User = Depends(require_admin)):
    report = services.ReportService(db).update_status(report_id, payload.status)
    return {"success": True, "report": report.model_dump()}


@app.get('/api/admin/fees')
def admin_fees(paid: Optional[bool] = None, db: Session = Depends(get_session),
               admin: models.User = Depends(require_admin)):
    return {"success": True, "fees": services.FeeService(db).list_fees(paid)}


@app.get('/api/admin/feedback')
def admin_feedback(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return {"success": True, "feedback": [f.model_dump() for f in services.FeedbackService(db).list_all()]}


@app.patch('/api/admin/feedback')
def admin_update_feedback(payload: schemas.FeedbackUpdateIn, db: Session = Depends(get_session),
                          admin: models.User = Depends(require_admin)):
    fb = services.FeedbackService(db).update(payload.id, payload.status, payload.admin_notes)
    return {"success": True, "feedback": fb.model_dump()}


@app.get('/api/admin/purchases')
def admin_purchases(
    user_id: Optional[int] = Query(None, alias="userId"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_session),
    admin: models.User = Depends(require_admin),
):
    return {"success": True, **services.AdminService(db).purchases(page, limit, user_id)}


@app.get('/api/admin/auth-logs')
def admin_auth_logs(limit: int = Query(100, ge=1, le=1000), db: Session = Depends(get_session),
                    admin: models.User = Depends(require_admin)):
    return {"success": True, "logs": [log.model_dump() for log in services.AdminService(db).auth_logs(limit)]}
