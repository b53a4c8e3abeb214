"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and auxiliary helpers. Services perform validation, execute domain
logic and persist aggregates via repositories. Failures are raised as
`ServiceError` subclasses carrying the HTTP status the controllers
should answer with.
"""

import logging
import math
import re
import secrets
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

import jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .utils import order_numbers
from .utils.kakao import KakaoNotifier, normalize_phone
from .utils.payment_webhook import parse_webhook

logger = logging.getLogger("app.services")

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
JWT_SECRET = settings.JWT_SECRET
JWT_REFRESH_SECRET = settings.JWT_REFRESH_SECRET
JWT_ALGORITHM = settings.JWT_ALGORITHM

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\d{10,11}$")


class ServiceError(ValueError):
    """Base class for expected failures; `status_code` picks the HTTP status."""
    status_code = 400

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra


class ValidationError(ServiceError):
    status_code = 400


class AuthError(ServiceError):
    status_code = 401


class PermissionDeniedError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


def make_notifier(session: Session) -> KakaoNotifier:
    """Factory for the Kakao notifier (replaced in tests)."""
    return KakaoNotifier(session)


def _safe_notify(fn, *args) -> None:
    try:
        fn(*args)
    except Exception:
        logger.exception("notification failed")


def _paginate(total: int, page: int, limit: int) -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "totalCount": total,
        "totalPages": total_pages,
        "currentPage": page,
        "pageSize": limit,
        "hasMore": page < total_pages,
    }


# serializers ---------------------------------------------------------------

def user_summary(user: Optional[models.User]) -> Optional[dict]:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "profile_image": user.profile_image}


def user_to_dict(user: models.User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "phone_number": user.phone_number,
        "profile_image": user.profile_image,
        "role": user.role,
        "created_at": user.created_at,
    }


def post_to_dict(post: models.Post, truncate: Optional[int] = None) -> dict:
    content = post.content or ""
    if truncate is not None and len(content) > truncate:
        content = content[:truncate] + "..."
    return {
        "id": post.id,
        "title": post.title,
        "content": content,
        "category": post.category,
        "status": post.status,
        "event_name": post.event_name,
        "event_date": post.event_date,
        "event_venue": post.event_venue,
        "ticket_price": post.ticket_price,
        "view_count": post.view_count,
        "author_id": post.author_id,
        "author": user_summary(post.author),
        "created_at": post.created_at,
        "updated_at": post.updated_at,
    }


def purchase_to_dict(p: models.Purchase) -> dict:
    return {
        "id": p.id,
        "order_number": p.order_number,
        "buyer_id": p.buyer_id,
        "seller_id": p.seller_id,
        "post_id": p.post_id,
        "quantity": p.quantity,
        "total_price": p.total_price,
        "status": p.status,
        "selected_seats": p.selected_seats,
        "phone_number": p.phone_number,
        "payment_method": p.payment_method,
        "cancel_reason": p.cancel_reason,
        "fee_amount": p.fee_amount,
        "fee_due_at": p.fee_due_at,
        "is_fee_paid": p.is_fee_paid,
        "created_at": p.created_at,
        "updated_at": p.updated_at,
    }


def _seats_to_str(seats: Any) -> Optional[str]:
    if seats is None:
        return None
    if isinstance(seats, (list, tuple)):
        return ",".join(str(s) for s in seats)
    return str(seats)


def _clean_phone(phone: Optional[str]) -> Optional[str]:
    if phone is None or not phone.strip():
        return None
    digits = normalize_phone(phone)
    if not PHONE_RE.match(digits):
        raise ValidationError("phone number must be 10-11 digits")
    return digits


def _validate_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if len(name) < 2:
        raise ValidationError("name must be at least 2 characters")
    return name


# tokens --------------------------------------------------------------------

def create_access_token(user: models.User) -> str:
    expire = models.utcnow() + timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS)
    payload = {"user_id": user.id, "email": user.email, "role": user.role, "exp": int(expire.timestamp())}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def create_refresh_token(user: models.User) -> str:
    expire = models.utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    payload = {"user_id": user.id, "type": "refresh", "jti": secrets.token_hex(8), "exp": int(expire.timestamp())}
    return jwt.encode(payload, JWT_REFRESH_SECRET, algorithm=JWT_ALGORITHM)


class AuthService:
    """Registration, login, refresh and logout, each recorded in the auth log."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.log_repo = repositories.AuthLogRepository(session)

    def _log(self, kind: str, email: str, status: str, error: str = None, ip: str = None, ua: str = None):
        try:
            self.log_repo.save(models.AuthLog(
                type=kind, email=email or "", status=status,
                error_message=error, ip_address=ip, user_agent=ua,
            ))
        except Exception:
            logger.exception("failed to write auth log")
            self.session.rollback()

    def register(self, email: str, password: str, name: str, phone_number: str = None,
                 ip: str = None, ua: str = None) -> models.User:
        """Validate and create a new user with a hashed password.

        Raises `ValidationError` for malformed input and `ConflictError`
        when the email is already registered.
        """
        email = (email or "").strip().lower()
        try:
            if not EMAIL_RE.match(email):
                raise ValidationError("invalid email format")
            if len(password or "") < 6:
                raise ValidationError("password must be at least 6 characters")
            name = _validate_name(name)
            phone = _clean_phone(phone_number)
            if self.user_repo.get_by_email(email):
                raise ConflictError("email already registered")
        except ServiceError as e:
            self._log("signup", email, "fail", e.message, ip, ua)
            raise
        role = models.ROLE_ADMIN if email in settings.ADMIN_EMAILS else models.ROLE_USER
        user = models.User(email=email, name=name, password_hash=PWD_CTX.hash(password),
                           phone_number=phone, role=role)
        try:
            user = self.user_repo.create(user)
        except IntegrityError:
            self.session.rollback()
            self._log("signup", email, "fail", "email already registered", ip, ua)
            raise ConflictError("email already registered")
        self._log("signup", email, "success", ip=ip, ua=ua)
        logger.info("user registered id=%s role=%s", user.id, user.role)
        return user

    def authenticate(self, email: str, password: str, ip: str = None, ua: str = None) -> models.User:
        """Verify credentials; raises `AuthError` on failure."""
        email = (email or "").strip().lower()
        user = self.user_repo.get_by_email(email)
        if not user or not PWD_CTX.verify(password or "", user.password_hash):
            self._log("login", email, "fail", "invalid credentials", ip, ua)
            raise AuthError("invalid email or password")
        self._log("login", email, "success", ip=ip, ua=ua)
        return user

    def issue_tokens(self, user: models.User) -> Tuple[str, str]:
        """Return `(access_token, refresh_token)` and store the refresh token."""
        access = create_access_token(user)
        refresh = create_refresh_token(user)
        user.refresh_token = refresh
        user.updated_at = models.utcnow()
        self.user_repo.save(user)
        return access, refresh

    def refresh(self, refresh_token: Optional[str]) -> Tuple[models.User, str]:
        if not refresh_token:
            raise AuthError("refresh token required")
        try:
            payload = jwt.decode(refresh_token, JWT_REFRESH_SECRET, algorithms=[JWT_ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise AuthError("refresh token expired")
        except jwt.PyJWTError:
            raise AuthError("invalid refresh token")
        user = self.user_repo.get(payload.get("user_id")) if payload.get("user_id") else None
        if not user or user.refresh_token != refresh_token:
            raise AuthError("invalid refresh token")
        return user, create_access_token(user)

    def logout(self, user: Optional[models.User], ip: str = None, ua: str = None) -> None:
        if user is None:
            return
        user.refresh_token = None
        self.user_repo.save(user)
        self._log("logout", user.email, "success", ip=ip, ua=ua)


class UserService:
    def __init__(self, session: Session):
        self.user_repo = repositories.UserRepository(session)

    def public_profile(self, user_id: int) -> dict:
        user = self.user_repo.get(user_id)
        if not user:
            raise NotFoundError("user not found")
        return {"id": user.id, "name": user.name, "profile_image": user.profile_image, "created_at": user.created_at}

    def update_profile(self, user: models.User, name: str = None, phone_number: str = None,
                       profile_image: str = None) -> models.User:
        if name is not None:
            user.name = _validate_name(name)
        if phone_number is not None:
            user.phone_number = _clean_phone(phone_number)
        if profile_image is not None:
            user.profile_image = profile_image or None
        user.updated_at = models.utcnow()
        return self.user_repo.save(user)


class FeeService:
    """Platform fees owed by sellers on confirmed purchases."""
    def __init__(self, session: Session):
        self.purchase_repo = repositories.PurchaseRepository(session)

    def unpaid_summary(self, seller_id: int) -> dict:
        unpaid = self.purchase_repo.unpaid_fees_for_seller(seller_id)
        return {
            "hasUnpaidFees": bool(unpaid),
            "unpaidFees": [
                {
                    "id": p.id,
                    "order_number": p.order_number,
                    "post_id": p.post_id,
                    "total_price": p.total_price,
                    "fee_amount": p.fee_amount,
                    "fee_due_at": p.fee_due_at,
                }
                for p in unpaid
            ],
            "totalAmount": sum(p.fee_amount for p in unpaid),
            "oldestDueDate": unpaid[0].fee_due_at if unpaid else None,
            "count": len(unpaid),
        }

    def mark_paid(self, purchase_id: int) -> models.Purchase:
        purchase = self.purchase_repo.get(purchase_id)
        if not purchase:
            raise NotFoundError("purchase not found")
        purchase.is_fee_paid = True
        purchase.updated_at = models.utcnow()
        logger.info("fee marked paid purchase=%s amount=%s", purchase.id, purchase.fee_amount)
        return self.purchase_repo.save(purchase)

    def list_fees(self, paid: Optional[bool] = None) -> List[dict]:
        return [purchase_to_dict(p) for p in self.purchase_repo.list_fees(paid)]


class PostService:
    """Listing CRUD and search."""
    def __init__(self, session: Session):
        self.session = session
        self.post_repo = repositories.PostRepository(session)
        self.purchase_repo = repositories.PurchaseRepository(session)
        self.proposal_repo = repositories.ProposalRepository(session)

    def list_posts(self, page: int = 1, limit: int = 10, category: str = None, search: str = None,
                   author_id: int = None) -> dict:
        posts, total = self.post_repo.list(page=page, limit=limit, category=category,
                                           search=search, author_id=author_id)
        items = [post_to_dict(p, truncate=200) for p in posts]
        request_ids = [p.id for p in posts if p.category == "TICKET_REQUEST"]
        if request_ids:
            counts = self.proposal_repo.count_for_posts(request_ids)
            for item in items:
                if item["category"] == "TICKET_REQUEST":
                    item["proposalCount"] = counts.get(item["id"], 0)
        return {"posts": items, "pagination": _paginate(total, page, limit)}

    def search(self, query: str, page: int = 1, limit: int = 10) -> dict:
        posts, total = self.post_repo.list(page=page, limit=limit, search=query or "",
                                           status="ACTIVE", title_only=True)
        return {"posts": [post_to_dict(p, truncate=100) for p in posts], "pagination": _paginate(total, page, limit)}

    def get_post(self, post_id: int, count_view: bool = True) -> models.Post:
        post = self.post_repo.get(post_id)
        if not post:
            raise NotFoundError("post not found")
        if count_view:
            post.view_count = (post.view_count or 0) + 1
            self.post_repo.save(post)
        return post

    def create(self, author: models.User, data: dict) -> models.Post:
        fees = FeeService(self.session).unpaid_summary(author.id)
        if fees["hasUnpaidFees"]:
            raise PermissionDeniedError("unpaid fees must be settled before posting", code="UNPAID_FEES",
                                        unpaidFees=fees)
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("title is required")
        category = data.get("category") or "TICKET_SALE"
        if category not in models.POST_CATEGORIES:
            raise ValidationError(f"invalid category: {category}")
        price = data.get("ticket_price") or 0
        if price < 0:
            raise ValidationError("ticket price must not be negative")
        post = models.Post(
            author_id=author.id,
            title=title,
            content=data.get("content") or "",
            category=category,
            status="ACTIVE",
            event_name=data.get("event_name"),
            event_date=data.get("event_date"),
            event_venue=data.get("event_venue"),
            ticket_price=price,
        )
        post = self.post_repo.save(post)
        logger.info("post created id=%s author=%s category=%s", post.id, author.id, category)
        return post

    def update(self, user: models.User, post_id: int, data: dict) -> models.Post:
        post = self.post_repo.get(post_id)
        if not post:
            raise NotFoundError("post not found")
        if post.author_id != user.id:
            raise PermissionDeniedError("only the author can edit this post")
        if "title" in data:
            if not (data["title"] or "").strip():
                raise ValidationError("title is required")
            data["title"] = data["title"].strip()
        if data.get("category") and data["category"] not in models.POST_CATEGORIES:
            raise ValidationError(f"invalid category: {data['category']}")
        if data.get("status") and data["status"] not in models.POST_STATUSES:
            raise ValidationError(f"invalid status: {data['status']}")
        if data.get("ticket_price") is not None and data["ticket_price"] < 0:
            raise ValidationError("ticket price must not be negative")
        for key, value in data.items():
            if value is not None:
                setattr(post, key, value)
        post.updated_at = models.utcnow()
        return self.post_repo.save(post)

    def delete(self, user: models.User, post_id: int) -> None:
        post = self.post_repo.get(post_id)
        if not post:
            raise NotFoundError("post not found")
        if post.author_id != user.id and not user.is_admin:
            raise PermissionDeniedError("only the author or an admin can delete this post")
        if self.purchase_repo.in_progress_for_post(post_id):
            raise ValidationError("post has a purchase in progress")
        post.is_deleted = True
        post.updated_at = models.utcnow()
        self.post_repo.save(post)
        logger.info("post deleted id=%s by=%s", post_id, user.id)


class PurchaseService:
    """Ticket purchases and their status lifecycle.

    Status moves forward through PENDING, PROCESSING, COMPLETED and
    CONFIRMED; CANCELLED is reachable from any non-terminal state.
    CONFIRMED and CANCELLED are terminal.
    """
    ORDER = ("PENDING", "PROCESSING", "COMPLETED", "CONFIRMED")

    def __init__(self, session: Session, notifier: KakaoNotifier = None):
        self.session = session
        self.purchase_repo = repositories.PurchaseRepository(session)
        self.post_repo = repositories.PostRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.notification_repo = repositories.NotificationRepository(session)
        self.notifier = notifier or make_notifier(session)

    def _notify(self, user_id: int, post_id: Optional[int], message: str, kind: str) -> None:
        try:
            self.notification_repo.save(models.Notification(user_id=user_id, post_id=post_id, message=message, type=kind))
        except Exception:
            logger.exception("failed to store notification for user=%s", user_id)
            self.session.rollback()

    def create(self, buyer: models.User, post_id: int, quantity: int = 1, selected_seats: Any = None,
               phone_number: str = None, payment_method: str = None) -> models.Purchase:
        post = self.post_repo.get(post_id)
        if not post:
            raise NotFoundError("post not found")
        if post.author_id == buyer.id:
            raise ValidationError("cannot purchase your own post")
        if post.status != "ACTIVE":
            raise ValidationError("post is not available for purchase")
        if self.purchase_repo.in_progress_for_post(post.id):
            raise ValidationError("post already has a purchase in progress")
        if quantity < 1:
            raise ValidationError("quantity must be at least 1")
        phone = _clean_phone(phone_number) if phone_number else None
        order_number = order_numbers.generate_order_number(self.purchase_repo.order_number_exists)
        purchase = models.Purchase(
            order_number=order_number,
            buyer_id=buyer.id,
            seller_id=post.author_id,
            post_id=post.id,
            quantity=quantity,
            total_price=(post.ticket_price or 0) * quantity,
            status="PROCESSING",
            selected_seats=_seats_to_str(selected_seats),
            phone_number=phone,
            payment_method=payment_method,
        )
        try:
            purchase = self.purchase_repo.save(purchase)
        except IntegrityError:
            self.session.rollback()
            raise ConflictError("order number already exists, please retry")
        if phone and buyer.phone_number != phone:
            buyer.phone_number = phone
            buyer.updated_at = models.utcnow()
            self.user_repo.save(buyer)
        self.post_repo.set_status(post, "PROCESSING")
        logger.info("purchase created order=%s post=%s buyer=%s", order_number, post.id, buyer.id)

        self._notify(post.author_id, post.id, f"{buyer.name} requested to buy '{post.title}'", "TICKET_REQUEST")
        seller = self.user_repo.get(post.author_id)
        product = post.event_name or post.title
        _safe_notify(self.notifier.purchase, buyer.phone_number, buyer.name, order_number, product, purchase.total_price)
        if seller:
            _safe_notify(self.notifier.purchase, seller.phone_number, seller.name, order_number, product, purchase.total_price)
        return purchase

    def _with_refs(self, purchases: List[models.Purchase]) -> List[dict]:
        users = self.user_repo.get_many([p.buyer_id for p in purchases] + [p.seller_id for p in purchases])
        out = []
        for p in purchases:
            item = purchase_to_dict(p)
            post = self.post_repo.get(p.post_id, include_deleted=True)
            item["post"] = post_to_dict(post, truncate=200) if post else None
            item["seller"] = user_summary(users.get(p.seller_id))
            item["buyer"] = user_summary(users.get(p.buyer_id))
            out.append(item)
        return out

    def list_for_buyer(self, buyer: models.User) -> List[dict]:
        return self._with_refs(self.purchase_repo.list_for_buyer(buyer.id))

    def list_for_seller(self, seller: models.User) -> List[dict]:
        return self._with_refs(self.purchase_repo.list_for_seller(seller.id))

    def _get_for(self, user: models.User, order_number: str) -> models.Purchase:
        purchase = self.purchase_repo.get_by_order_number(order_number)
        if not purchase:
            raise NotFoundError("purchase not found")
        if user.id not in (purchase.buyer_id, purchase.seller_id) and not user.is_admin:
            raise PermissionDeniedError("not a participant of this purchase")
        return purchase

    def get_detail(self, user: models.User, order_number: str) -> dict:
        return self._with_refs([self._get_for(user, order_number)])[0]

    def _check_transition(self, current: str, new: str) -> None:
        if current in models.PURCHASE_TERMINAL:
            raise ValidationError(f"purchase is already {current} and cannot change")
        if new == "CANCELLED":
            return
        if self.ORDER.index(new) < self.ORDER.index(current):
            raise ValidationError(f"cannot move purchase from {current} back to {new}")

    def update_status(self, user: models.User, order_number: str, status: str,
                      reason: str = None) -> Tuple[models.Purchase, bool]:
        """Change the status; returns `(purchase, changed)`."""
        status = (status or "").upper()
        if status not in models.PURCHASE_STATUSES:
            raise ValidationError(f"invalid status: {status}")
        purchase = self._get_for(user, order_number)
        if purchase.status == status:
            return purchase, False
        self._check_transition(purchase.status, status)
        previous = purchase.status
        purchase.status = status
        purchase.updated_at = models.utcnow()
        if status == "CONFIRMED":
            purchase.fee_amount = round(purchase.total_price * settings.PLATFORM_FEE_RATE)
            purchase.fee_due_at = models.utcnow() + timedelta(days=settings.FEE_DUE_DAYS)
            purchase.is_fee_paid = False
        if status == "CANCELLED":
            purchase.cancel_reason = reason
        purchase = self.purchase_repo.save(purchase)
        logger.info("purchase %s status %s -> %s by user=%s", order_number, previous, status, user.id)

        post = self.post_repo.get(purchase.post_id, include_deleted=True)
        if post:
            if status == "CONFIRMED":
                self.post_repo.set_status(post, "SOLD")
            elif status == "CANCELLED" and not post.is_deleted and not self.purchase_repo.in_progress_for_post(post.id):
                self.post_repo.set_status(post, "ACTIVE")

        recipients = []
        if user.id == purchase.buyer_id:
            recipients = [purchase.seller_id]
        elif user.id == purchase.seller_id:
            recipients = [purchase.buyer_id]
        else:
            recipients = [purchase.buyer_id, purchase.seller_id]
        for rid in recipients:
            self._notify(rid, purchase.post_id, f"Order {order_number} is now {status}", "PURCHASE_STATUS")

        if status == "CONFIRMED":
            product = (post.event_name or post.title) if post else order_number
            for uid in (purchase.buyer_id, purchase.seller_id):
                u = self.user_repo.get(uid)
                if u:
                    _safe_notify(self.notifier.ticket, u.phone_number, u.name, order_number, product)
        return purchase, True

    def complete_ticketing(self, user: models.User, order_number: str) -> Tuple[models.Purchase, bool]:
        purchase = self._get_for(user, order_number)
        if user.id != purchase.seller_id and not user.is_admin:
            raise PermissionDeniedError("only the seller can complete ticketing")
        return self.update_status(user, order_number, "COMPLETED")

    def cancel(self, user: models.User, order_number: Optional[str], reason: str = None) -> Tuple[models.Purchase, bool]:
        if not order_number:
            raise ValidationError("orderNumber is required")
        return self.update_status(user, order_number, "CANCELLED", reason=reason)

    def check(self, user: models.User, post_id: int) -> dict:
        active = self.purchase_repo.in_progress_for_post(post_id)
        mine = next((p for p in active if p.buyer_id == user.id), None)
        return {
            "hasPurchase": bool(active),
            "isBuyer": mine is not None,
            "purchase": purchase_to_dict(mine) if mine else None,
        }


class ChatService:
    """Rooms and messages between the two parties of an order."""
    def __init__(self, session: Session, notifier: KakaoNotifier = None):
        self.session = session
        self.room_repo = repositories.RoomRepository(session)
        self.message_repo = repositories.MessageRepository(session)
        self.purchase_repo = repositories.PurchaseRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.notification_repo = repositories.NotificationRepository(session)
        self.notifier = notifier or make_notifier(session)

    def _purchase_for(self, user: models.User, order_number: str) -> models.Purchase:
        purchase = self.purchase_repo.get_by_order_number(order_number)
        if not purchase:
            raise NotFoundError("purchase not found")
        if user.id not in (purchase.buyer_id, purchase.seller_id):
            raise PermissionDeniedError("not a participant of this order")
        return purchase

    def _get_or_create_room(self, purchase: models.Purchase) -> Tuple[models.Room, bool]:
        room = self.room_repo.get_by_order_number(purchase.order_number)
        if room:
            return room, False
        room = models.Room(order_number=purchase.order_number, purchase_id=purchase.id,
                           buyer_id=purchase.buyer_id, seller_id=purchase.seller_id)
        try:
            return self.room_repo.save(room), True
        except IntegrityError:
            self.session.rollback()
            return self.room_repo.get_by_order_number(purchase.order_number), False

    def init_room(self, user: models.User, order_number: str) -> Tuple[models.Room, bool]:
        return self._get_or_create_room(self._purchase_for(user, order_number))

    def _room_for(self, user: models.User, room_id: str = None, order_number: str = None) -> models.Room:
        if room_id:
            room = self.room_repo.get(room_id)
        elif order_number:
            self._purchase_for(user, order_number)
            room = self.room_repo.get_by_order_number(order_number)
        else:
            raise ValidationError("roomId, orderNumber or withUserId is required")
        if not room:
            raise NotFoundError("room not found")
        if user.id not in (room.buyer_id, room.seller_id):
            raise PermissionDeniedError("not a participant of this room")
        return room

    def send(self, sender: models.User, content: str, order_number: str = None, purchase_id: int = None,
             receiver_id: int = None) -> models.Message:
        content = (content or "").strip()
        if not content:
            raise ValidationError("message content is required")
        room = None
        if order_number is None and purchase_id is not None:
            purchase = self.purchase_repo.get(purchase_id)
            if not purchase:
                raise NotFoundError("purchase not found")
            order_number = purchase.order_number
        if order_number:
            purchase = self._purchase_for(sender, order_number)
            room, _ = self._get_or_create_room(purchase)
            other = purchase.seller_id if sender.id == purchase.buyer_id else purchase.buyer_id
            receiver_id = receiver_id or other
            if receiver_id not in (purchase.buyer_id, purchase.seller_id) or receiver_id == sender.id:
                raise ValidationError("receiver must be the other party of the order")
        elif receiver_id is None:
            raise ValidationError("receiverId is required without an order")
        elif receiver_id == sender.id:
            raise ValidationError("cannot send a message to yourself")
        receiver = self.user_repo.get(receiver_id)
        if not receiver:
            raise NotFoundError("receiver not found")

        message = models.Message(room_id=room.id if room else None, sender_id=sender.id,
                                 receiver_id=receiver.id, content=content)
        message = self.message_repo.save(message)
        if room:
            room.last_chat = content[:200]
            room.time_of_last_chat = message.created_at
            self.room_repo.save(room)
        try:
            self.notification_repo.save(models.Notification(
                user_id=receiver.id, message=f"New message from {sender.name}", type="MESSAGE"))
        except Exception:
            logger.exception("failed to store message notification")
            self.session.rollback()
        _safe_notify(self.notifier.new_message, receiver.phone_number, receiver.name)
        # later commits expire the instance
        self.session.refresh(message)
        return message

    def _direct_partner(self, user: models.User, other_id: int) -> models.User:
        if other_id == user.id:
            raise ValidationError("cannot open a conversation with yourself")
        other = self.user_repo.get(other_id)
        if not other:
            raise NotFoundError("user not found")
        return other

    def list_messages(self, user: models.User, room_id: str = None, order_number: str = None,
                      limit: int = 50, offset: int = 0, with_user_id: int = None) -> dict:
        """Messages of a room, or of the direct thread with `with_user_id`.

        Listing marks the caller's unread messages in that thread as read.
        """
        if not room_id and not order_number and with_user_id is not None:
            other = self._direct_partner(user, with_user_id)
            messages = self.message_repo.list_direct(user.id, other.id, limit=limit, offset=offset)
            marked = self.message_repo.mark_read(user.id, direct_from=other.id)
            result_room = None
        else:
            room = self._room_for(user, room_id, order_number)
            messages = self.message_repo.list_for_room(room.id, limit=limit, offset=offset)
            marked = self.message_repo.mark_read(user.id, room_id=room.id)
            result_room = room.id
        items = []
        for m in messages:
            items.append({
                "id": m.id,
                "room_id": m.room_id,
                "sender_id": m.sender_id,
                "receiver_id": m.receiver_id,
                "content": m.content,
                "is_read": m.is_read or m.receiver_id == user.id,
                "created_at": m.created_at,
                "isMine": m.sender_id == user.id,
            })
        return {"roomId": result_room, "messages": items, "markedRead": marked}

    def unread_count(self, user: models.User, order_number: str = None) -> int:
        if order_number:
            room = self.room_repo.get_by_order_number(order_number)
            if not room:
                return 0
            return self.message_repo.unread_count(user.id, room_id=room.id)
        return self.message_repo.unread_count(user.id)

    def mark_read(self, user: models.User, room_id: str = None, order_number: str = None,
                  with_user_id: int = None) -> int:
        if not room_id and not order_number and with_user_id is not None:
            other = self._direct_partner(user, with_user_id)
            return self.message_repo.mark_read(user.id, direct_from=other.id)
        room = self._room_for(user, room_id, order_number)
        return self.message_repo.mark_read(user.id, room_id=room.id)


class NotificationService:
    def __init__(self, session: Session):
        self.repo = repositories.NotificationRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def list_for(self, user: models.User) -> dict:
        items = self.repo.list_for_user(user.id)
        return {
            "notifications": [n.model_dump() for n in items],
            "unreadCount": sum(1 for n in items if not n.is_read),
        }

    def create(self, user_id: int, message: str, kind: str = "SYSTEM", post_id: int = None) -> models.Notification:
        if kind not in models.NOTIFICATION_TYPES:
            raise ValidationError(f"invalid notification type: {kind}")
        if not (message or "").strip():
            raise ValidationError("message is required")
        if not self.user_repo.get(user_id):
            raise NotFoundError("user not found")
        return self.repo.save(models.Notification(user_id=user_id, post_id=post_id, message=message.strip(), type=kind))

    def mark_read(self, user: models.User, notification_id: int) -> models.Notification:
        n = self.repo.get(notification_id)
        if not n:
            raise NotFoundError("notification not found")
        if n.user_id != user.id:
            raise PermissionDeniedError("not your notification")
        n.is_read = True
        return self.repo.save(n)

    def mark_all_read(self, user: models.User) -> int:
        return self.repo.mark_all_read(user.id)


class RatingService:
    def __init__(self, session: Session):
        self.repo = repositories.RatingRepository(session)
        self.purchase_repo = repositories.PurchaseRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.post_repo = repositories.PostRepository(session)

    def confirmed_purchases(self, buyer: models.User) -> List[dict]:
        """The buyer's confirmed purchases with whether each was already reviewed."""
        purchases = self.purchase_repo.list_for_buyer(buyer.id, status="CONFIRMED")
        sellers = self.user_repo.get_many([p.seller_id for p in purchases])
        out = []
        for p in purchases:
            post = self.post_repo.get(p.post_id, include_deleted=True)
            seller = sellers.get(p.seller_id)
            out.append({
                "id": p.id,
                "order_number": p.order_number,
                "title": post.title if post else None,
                "date": post.event_date if post else None,
                "venue": post.event_venue if post else None,
                "price": p.total_price,
                "status": p.status,
                "seller": seller.name if seller else None,
                "completedAt": p.updated_at,
                "reviewSubmitted": self.repo.get_for_purchase(p.id) is not None,
            })
        return out

    def create(self, user: models.User, purchase_id: int, rating: int, comment: str = None) -> models.Rating:
        purchase = self.purchase_repo.get(purchase_id)
        if not purchase:
            raise NotFoundError("purchase not found")
        if purchase.buyer_id != user.id:
            raise PermissionDeniedError("only the buyer can rate this purchase")
        if purchase.status not in ("COMPLETED", "CONFIRMED"):
            raise ValidationError("purchase must be completed before rating")
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("rating must be between 1 and 5")
        if comment and len(comment) > 500:
            raise ValidationError("comment must be at most 500 characters")
        if self.repo.get_for_purchase(purchase.id):
            raise ConflictError("purchase already rated")
        r = models.Rating(purchase_id=purchase.id, reviewer_id=user.id, seller_id=purchase.seller_id,
                          rating=rating, comment=comment or None)
        try:
            return self.repo.save(r)
        except IntegrityError:
            self.repo.session.rollback()
            raise ConflictError("purchase already rated")

    def seller_rating(self, seller_id: int, recent: int = 5) -> dict:
        average, count = self.repo.summary_for_seller(seller_id)
        reviews = self.repo.list_for_seller(seller_id, limit=recent)
        reviewers = self.user_repo.get_many([r.reviewer_id for r in reviews])
        return {
            "sellerId": seller_id,
            "averageRating": average,
            "totalRatings": count,
            "recentReviews": [
                {
                    "id": r.id,
                    "rating": r.rating,
                    "comment": r.comment,
                    "reviewer": user_summary(reviewers.get(r.reviewer_id)),
                    "created_at": r.created_at,
                }
                for r in reviews
            ],
        }


class SellerStatsService:
    def __init__(self, session: Session):
        self.session = session
        self.purchase_repo = repositories.PurchaseRepository(session)
        self.post_repo = repositories.PostRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def cancellation_stats(self, seller_id: int) -> dict:
        counts = self.purchase_repo.count_by_status_for_seller(seller_id)
        confirmed = counts.get("CONFIRMED", 0)
        cancelled = counts.get("CANCELLED", 0)
        finished = confirmed + cancelled
        rate = round(cancelled / finished * 100, 1) if finished else 0
        return {"confirmed_count": confirmed, "cancelled_count": cancelled, "cancellation_ticketing_rate": rate}

    def seller_profile(self, seller_id: int) -> dict:
        seller = self.user_repo.get(seller_id)
        if not seller:
            raise NotFoundError("seller not found")
        counts = self.purchase_repo.count_by_status_for_seller(seller_id)
        rating = RatingService(self.session).seller_rating(seller_id)
        active, _ = self.post_repo.list(page=1, limit=50, author_id=seller_id, status="ACTIVE")
        return {
            "seller": {"id": seller.id, "name": seller.name, "profile_image": seller.profile_image,
                       "created_at": seller.created_at},
            "successfulSales": counts.get("COMPLETED", 0) + counts.get("CONFIRMED", 0),
            "rating": {"average": rating["averageRating"], "count": rating["totalRatings"],
                       "recentReviews": rating["recentReviews"]},
            "cancellationStats": self.cancellation_stats(seller_id),
            "activeListings": [post_to_dict(p, truncate=200) for p in active],
        }


class ReportService:
    def __init__(self, session: Session):
        self.repo = repositories.ReportRepository(session)
        self.post_repo = repositories.PostRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def create(self, reporter: models.User, kind: str, reason: str, post_id: int = None,
               seller_id: int = None) -> models.Report:
        kind = (kind or "POST").upper()
        if kind not in models.REPORT_TYPES:
            raise ValidationError(f"invalid report type: {kind}")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("reason is required")
        if kind == "POST":
            if post_id is None:
                raise ValidationError("postId is required")
            post = self.post_repo.get(post_id)
            if not post:
                raise NotFoundError("post not found")
            if self.repo.exists_for_post(reporter.id, post_id):
                raise ConflictError("you already reported this post")
            report = models.Report(type=kind, reporter_id=reporter.id, post_id=post.id,
                                   seller_id=post.author_id, reason=reason)
        else:
            if seller_id is None:
                raise ValidationError("sellerId is required")
            if not self.user_repo.get(seller_id):
                raise NotFoundError("seller not found")
            if seller_id == reporter.id:
                raise ValidationError("cannot report yourself")
            report = models.Report(type=kind, reporter_id=reporter.id, seller_id=seller_id, reason=reason)
        report = self.repo.save(report)
        logger.info("report %s filed type=%s by=%s", report.id, kind, reporter.id)
        return report

    def seller_reports(self, seller_id: int) -> dict:
        post_ids = self.post_repo.ids_by_author(seller_id)
        reports = self.repo.list_against_seller(seller_id, post_ids)
        count = len(reports)
        severity = "high" if count >= 5 else "medium" if count >= 2 else "low"
        return {
            "hasReports": count > 0,
            "count": count,
            "severity": severity,
            "reasons": [r.reason for r in reports],
            "status": reports[0].status if reports else None,
            "lastReportDate": reports[0].created_at if reports else None,
            "reports": [r.model_dump() for r in reports],
        }

    def list_all(self, status: str = None) -> List[dict]:
        return [r.model_dump() for r in self.repo.list_all(status)]

    def update_status(self, report_id: int, status: str) -> models.Report:
        status = (status or "").upper()
        if status not in models.REPORT_STATUSES:
            raise ValidationError(f"invalid report status: {status}")
        report = self.repo.get(report_id)
        if not report:
            raise NotFoundError("report not found")
        report.status = status
        return self.repo.save(report)


class PaymentService:
    """Payment records and the provider webhook."""
    def __init__(self, session: Session):
        self.repo = repositories.PaymentRepository(session)
        self.post_repo = repositories.PostRepository(session)
        self.log = logging.getLogger("app.payments")

    @staticmethod
    def _to_int(value: Any, field: str) -> int:
        try:
            return int(str(value).strip())
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must be a number")

    def initiate(self, user: models.User, post_id: Any, amount: Any, phone_number: str = None,
                 seats: Any = None) -> models.Payment:
        post_id = self._to_int(post_id, "postId")
        amount = self._to_int(amount, "amount")
        if amount <= 0:
            raise ValidationError("amount must be positive")
        if not self.post_repo.get(post_id):
            raise NotFoundError("post not found")
        payment_id = order_numbers.generate_payment_id(self.repo.exists)
        payment = models.Payment(
            id=payment_id, user_id=user.id, post_id=post_id, amount=amount,
            phone_number=normalize_phone(phone_number) or None, seats=_seats_to_str(seats), status="PENDING",
        )
        try:
            payment = self.repo.save(payment)
        except IntegrityError:
            self.repo.session.rollback()
            raise ConflictError("payment id already exists, please retry")
        self.log.info("payment initiated id=%s user=%s amount=%s", payment.id, user.id, amount)
        return payment

    def apply_webhook(self, payload: Dict[str, Any]) -> models.Payment:
        self.log.info("payment webhook received: %s", payload)
        event = parse_webhook(payload)
        if not event.payment_id:
            raise ValidationError("payment id is required")
        payment = self.repo.get(event.payment_id)
        if not payment:
            self.log.warning("webhook for unknown payment %s", event.payment_id)
            raise NotFoundError("payment not found")
        payment.status = event.status
        payment.transaction_id = event.transaction_id
        payment.transaction_type = event.transaction_type
        payment.updated_at = models.utcnow()
        payment = self.repo.save(payment)
        self.log.info("payment %s -> %s (type=%s)", payment.id, payment.status, event.transaction_type)
        return payment

    def status(self, payment_id: Optional[str]) -> dict:
        if not payment_id:
            raise ValidationError("payment_id is required")
        payment = self.repo.get(payment_id)
        if not payment:
            raise NotFoundError("payment not found")
        return {
            "payment_id": payment.id,
            "status": payment.status,
            "transaction_id": payment.transaction_id,
            "updated_at": payment.updated_at,
        }


class ProposalService:
    """Seller offers against ticket-request posts."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.ProposalRepository(session)
        self.post_repo = repositories.PostRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.notification_repo = repositories.NotificationRepository(session)

    def _request_post(self, post_id: int) -> models.Post:
        post = self.post_repo.get(post_id)
        if not post or post.category != "TICKET_REQUEST":
            raise NotFoundError("ticket request not found")
        return post

    def create(self, proposer: models.User, post_id: int, section_id: str, proposed_price: int,
               section_name: str = None, max_price: int = None, message: str = None) -> models.Proposal:
        post = self._request_post(post_id)
        if post.author_id == proposer.id:
            raise ValidationError("cannot propose on your own request")
        if not (section_id or "").strip():
            raise ValidationError("selectedSectionId is required")
        if proposed_price is None or proposed_price <= 0:
            raise ValidationError("proposedPrice must be positive")
        if self.repo.exists_for(post.id, proposer.id):
            raise ConflictError("you already made a proposal for this request")
        proposal = models.Proposal(
            post_id=post.id, proposer_id=proposer.id, requester_id=post.author_id,
            section_id=section_id.strip(), section_name=section_name, proposed_price=proposed_price,
            max_price=max_price, message=message,
        )
        proposal = self.repo.save(proposal)
        try:
            self.notification_repo.save(models.Notification(
                user_id=post.author_id, post_id=post.id, type="PROPOSAL",
                message=f"{proposer.name} sent a proposal for '{post.title}'"))
        except Exception:
            logger.exception("failed to store proposal notification")
            self.session.rollback()
        self.session.refresh(proposal)
        return proposal

    def list_for_request(self, post_id: int) -> List[dict]:
        self._request_post(post_id)
        proposals = self.repo.list_for_post(post_id)
        users = self.user_repo.get_many([p.proposer_id for p in proposals])
        out = []
        for p in proposals:
            item = p.model_dump()
            item["proposer"] = user_summary(users.get(p.proposer_id))
            out.append(item)
        return out

    def accept(self, user: models.User, proposal_id: int) -> models.Proposal:
        proposal = self.repo.get(proposal_id)
        if not proposal:
            raise NotFoundError("proposal not found")
        if proposal.requester_id != user.id:
            raise PermissionDeniedError("only the requester can accept a proposal")
        if proposal.status != "PENDING":
            raise ValidationError(f"proposal is already {proposal.status}")
        proposal.status = "ACCEPTED"
        proposal.updated_at = models.utcnow()
        proposal = self.repo.save(proposal)
        rejected = self.repo.reject_other_pending(proposal.post_id, proposal.id)
        post = self.post_repo.get(proposal.post_id)
        if post:
            self.post_repo.set_status(post, "IN_PROGRESS")
        logger.info("proposal %s accepted; %s others rejected", proposal.id, rejected)
        self.session.refresh(proposal)
        return proposal

    def my_requests(self, user: models.User) -> List[dict]:
        posts, _ = self.post_repo.list(page=1, limit=100, author_id=user.id, category="TICKET_REQUEST")
        counts = self.repo.count_for_posts([p.id for p in posts])
        out = []
        for p in posts:
            item = post_to_dict(p, truncate=200)
            item["proposalCount"] = counts.get(p.id, 0)
            out.append(item)
        return out


class FeedbackService:
    def __init__(self, session: Session):
        self.repo = repositories.FeedbackRepository(session)

    def create(self, content: Optional[str]) -> models.Feedback:
        content = (content or "").strip()
        if not content:
            raise ValidationError("feedback is required")
        return self.repo.save(models.Feedback(content=content))

    def list_all(self) -> List[models.Feedback]:
        return self.repo.list_all()

    def update(self, feedback_id: int, status: str, admin_notes: str = None) -> models.Feedback:
        if status not in models.FEEDBACK_STATUSES:
            raise ValidationError(f"invalid feedback status: {status}")
        fb = self.repo.get(feedback_id)
        if not fb:
            raise NotFoundError("feedback not found")
        fb.status = status
        if admin_notes is not None:
            fb.admin_notes = admin_notes
        fb.updated_at = models.utcnow()
        return self.repo.save(fb)


class AdminService:
    def __init__(self, session: Session):
        self.session = session
        self.purchase_repo = repositories.PurchaseRepository(session)
        self.auth_log_repo = repositories.AuthLogRepository(session)

    def purchases(self, page: int = 1, limit: int = 10, user_id: int = None) -> dict:
        purchases, total = self.purchase_repo.list_all(page=page, limit=limit, buyer_id=user_id)
        return {
            "purchases": PurchaseService(self.session)._with_refs(purchases),
            "pagination": _paginate(total, page, limit),
        }

    def auth_logs(self, limit: int = 100) -> List[models.AuthLog]:
        return self.auth_log_repo.list_recent(limit)
