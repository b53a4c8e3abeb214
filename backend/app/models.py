"""SQLModel data models.

This module defines the marketplace tables using SQLModel. Each class
maps to a table; status-like columns hold plain upper-case strings whose
allowed values are listed in the module-level tuples below.
"""

import uuid
from typing import Optional
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"

POST_CATEGORIES = ("TICKET_SALE", "TICKET_REQUEST", "GENERAL")
POST_STATUSES = ("ACTIVE", "PROCESSING", "IN_PROGRESS", "SOLD")

PURCHASE_STATUSES = ("PENDING", "PROCESSING", "COMPLETED", "CONFIRMED", "CANCELLED")
PURCHASE_IN_PROGRESS = ("PENDING", "PROCESSING", "COMPLETED")
PURCHASE_TERMINAL = ("CONFIRMED", "CANCELLED")

PAYMENT_STATUSES = ("PENDING", "DONE", "FAILED", "CANCELLED")
PROPOSAL_STATUSES = ("PENDING", "ACCEPTED", "REJECTED")
REPORT_TYPES = ("POST", "USER")
REPORT_STATUSES = ("PENDING", "APPROVED", "REJECTED")
FEEDBACK_STATUSES = ("pending", "reviewed", "resolved")
NOTIFICATION_TYPES = ("SYSTEM", "TICKET_REQUEST", "PURCHASE_STATUS", "MESSAGE", "PROPOSAL")
KAKAO_MESSAGE_TYPES = ("NEW_MESSAGE", "PURCHASE", "TICKET")


class User(SQLModel, table=True):
    """A registered account.

    Fields:
    - `email`: unique login, stored lower-cased
    - `password_hash`: hashed password string (never store plaintext)
    - `phone_number`: digits only, used for Kakao notifications
    - `refresh_token`: the last issued refresh token; cleared on logout
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    name: str
    password_hash: str
    phone_number: Optional[str] = None
    profile_image: Optional[str] = None
    role: str = Field(default=ROLE_USER)
    refresh_token: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class Post(SQLModel, table=True):
    """A ticket-sale or ticket-request listing."""
    id: Optional[int] = Field(default=None, primary_key=True)
    author_id: int = Field(foreign_key='user.id', index=True)
    title: str
    content: str = ""
    category: str = Field(default="TICKET_SALE", index=True)
    status: str = Field(default="ACTIVE", index=True)
    event_name: Optional[str] = None
    event_date: Optional[str] = None
    event_venue: Optional[str] = None
    ticket_price: int = 0
    view_count: int = 0
    is_deleted: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    author: Optional[User] = Relationship()


class Purchase(SQLModel, table=True):
    """A transaction linking buyer, seller and listing.

    The fee columns are filled when the purchase is confirmed; the seller
    owes `fee_amount` until an admin marks it paid.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    order_number: str = Field(index=True, unique=True)
    buyer_id: int = Field(foreign_key='user.id', index=True)
    seller_id: int = Field(foreign_key='user.id', index=True)
    post_id: int = Field(foreign_key='post.id', index=True)
    quantity: int = 1
    total_price: int = 0
    status: str = Field(default="PENDING", index=True)
    selected_seats: Optional[str] = None
    phone_number: Optional[str] = None
    payment_method: Optional[str] = None
    cancel_reason: Optional[str] = None
    fee_amount: int = 0
    fee_due_at: Optional[datetime] = None
    is_fee_paid: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class Room(SQLModel, table=True):
    """A chat thread between the buyer and seller of one order."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    order_number: Optional[str] = Field(default=None, index=True, unique=True)
    purchase_id: Optional[int] = Field(default=None, foreign_key='purchase.id')
    buyer_id: int = Field(foreign_key='user.id')
    seller_id: int = Field(foreign_key='user.id')
    last_chat: Optional[str] = None
    time_of_last_chat: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class Message(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    room_id: Optional[str] = Field(default=None, foreign_key='room.id', index=True)
    sender_id: int = Field(foreign_key='user.id')
    receiver_id: Optional[int] = Field(default=None, foreign_key='user.id', index=True)
    content: str
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class Notification(SQLModel, table=True):
    """An in-app notification shown in the user's dropdown."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    post_id: Optional[int] = None
    message: str
    type: str = "SYSTEM"
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class Rating(SQLModel, table=True):
    """A buyer's review of one purchase; at most one per purchase."""
    id: Optional[int] = Field(default=None, primary_key=True)
    purchase_id: int = Field(foreign_key='purchase.id', unique=True)
    reviewer_id: int = Field(foreign_key='user.id')
    seller_id: int = Field(foreign_key='user.id', index=True)
    rating: int
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Report(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    type: str = "POST"
    reporter_id: int = Field(foreign_key='user.id')
    post_id: Optional[int] = Field(default=None, foreign_key='post.id', index=True)
    seller_id: Optional[int] = Field(default=None, foreign_key='user.id', index=True)
    reason: str
    status: str = "PENDING"
    created_at: datetime = Field(default_factory=utcnow)


class Payment(SQLModel, table=True):
    """A payment attempt keyed by the id handed to the payment provider."""
    id: str = Field(primary_key=True)
    user_id: int = Field(foreign_key='user.id')
    post_id: int = Field(foreign_key='post.id')
    amount: int = 0
    phone_number: Optional[str] = None
    seats: Optional[str] = None
    status: str = "PENDING"
    transaction_id: Optional[str] = None
    transaction_type: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class Proposal(SQLModel, table=True):
    """A seller's offer against a TICKET_REQUEST listing."""
    id: Optional[int] = Field(default=None, primary_key=True)
    post_id: int = Field(foreign_key='post.id', index=True)
    proposer_id: int = Field(foreign_key='user.id')
    requester_id: int = Field(foreign_key='user.id')
    section_id: str
    section_name: Optional[str] = None
    proposed_price: int
    max_price: Optional[int] = None
    message: Optional[str] = None
    status: str = "PENDING"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class Feedback(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    content: str
    status: str = "pending"
    admin_notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class KakaoSendLog(SQLModel, table=True):
    """One row per Kakao notification actually sent; drives the cooldown."""
    id: Optional[int] = Field(default=None, primary_key=True)
    phone_number: str = Field(index=True)
    message_type: str
    created_at: datetime = Field(default_factory=utcnow, index=True)


class AuthLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    type: str
    email: str
    status: str
    error_message: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
