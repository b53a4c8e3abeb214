"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable. Field names follow the web
client's camelCase keys through aliases; snake_case names are accepted
too so scripts and tests can use either.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional


class _In(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterIn(_In):
    """Payload for user registration."""
    email: str
    password: str
    name: str
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")


class LoginIn(_In):
    email: str
    password: str


class RefreshIn(_In):
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")


class ProfileUpdateIn(_In):
    name: Optional[str] = None
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    profile_image: Optional[str] = Field(default=None, alias="profileImage")


class PostIn(_In):
    """Payload for creating a listing."""
    title: Optional[str] = None
    content: str = ""
    category: str = "TICKET_SALE"
    event_name: Optional[str] = Field(default=None, alias="eventName")
    event_date: Optional[str] = Field(default=None, alias="eventDate")
    event_venue: Optional[str] = Field(default=None, alias="eventVenue")
    ticket_price: Optional[int] = Field(default=None, alias="ticketPrice")


class PostUpdateIn(_In):
    title: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None
    status: Optional[str] = None
    event_name: Optional[str] = Field(default=None, alias="eventName")
    event_date: Optional[str] = Field(default=None, alias="eventDate")
    event_venue: Optional[str] = Field(default=None, alias="eventVenue")
    ticket_price: Optional[int] = Field(default=None, alias="ticketPrice")


class TicketPurchaseIn(_In):
    """Request to buy tickets from a listing."""
    post_id: int = Field(alias="postId")
    quantity: int = Field(default=1, ge=1)
    selected_seats: Optional[Any] = Field(default=None, alias="selectedSeats")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")


class StatusUpdateIn(_In):
    status: str


class CancelIn(_In):
    order_number: Optional[str] = Field(default=None, alias="orderNumber")
    reason: Optional[str] = None


class InitRoomIn(_In):
    order_number: str = Field(alias="orderNumber")


class MessageIn(_In):
    """A chat message; the sender is always the authenticated user."""
    content: str
    order_number: Optional[str] = Field(default=None, alias="orderNumber")
    purchase_id: Optional[int] = Field(default=None, alias="purchaseId")
    receiver_id: Optional[int] = Field(default=None, alias="receiverId")


class MarkReadIn(_In):
    room_id: Optional[str] = Field(default=None, alias="roomId")
    order_number: Optional[str] = Field(default=None, alias="orderNumber")
    with_user_id: Optional[int] = Field(default=None, alias="withUserId")


class NotificationIn(_In):
    user_id: int = Field(alias="userId")
    post_id: Optional[int] = Field(default=None, alias="postId")
    message: str
    type: str = "SYSTEM"


class MarkNotificationIn(_In):
    notification_id: int = Field(alias="notificationId")


class RatingIn(_In):
    transaction_id: int = Field(alias="transactionId")
    rating: Any
    comment: Optional[str] = None


class ReportIn(_In):
    type: str = "POST"
    post_id: Optional[int] = Field(default=None, alias="postId")
    seller_id: Optional[int] = Field(default=None, alias="sellerId")
    reason: str


class ReportStatusIn(_In):
    status: str


class MarkFeePaidIn(_In):
    purchase_id: int = Field(alias="purchaseId")


class PaymentInitiateIn(_In):
    """Values are coerced to integers by the service."""
    post_id: Any = Field(alias="postId")
    amount: Any
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    selected_seats: Optional[Any] = Field(default=None, alias="selectedSeats")


class ProposalIn(_In):
    section_id: str = Field(alias="selectedSectionId")
    section_name: Optional[str] = Field(default=None, alias="selectedSectionName")
    proposed_price: int = Field(alias="proposedPrice")
    max_price: Optional[int] = Field(default=None, alias="maxPrice")
    message: Optional[str] = None


class FeedbackIn(_In):
    feedback: Optional[str] = None


class FeedbackUpdateIn(_In):
    id: int
    status: str
    admin_notes: Optional[str] = None
