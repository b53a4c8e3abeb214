"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
posts, purchases, rooms, messages, ...). Repositories return SQLModel
objects and perform commits/refreshes where appropriate.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple
from sqlmodel import Session, select, col
from sqlalchemy import and_, func, or_, update
from . import models


class BaseRepository:
    """Shared session handling; `save` commits and refreshes one row."""
    def __init__(self, session: Session):
        self.session = session

    def save(self, obj):
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def _count(self, stmt) -> int:
        return self.session.exec(select(func.count()).select_from(stmt.subquery())).one()


class UserRepository(BaseRepository):
    """CRUD operations for `User` objects."""

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        return self.save(user)

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by (lower-cased) email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email.strip().lower())
        return self.session.exec(stmt).first()

    def get_many(self, user_ids: Sequence[int]) -> dict:
        """Return `{id: User}` for the given ids, skipping unknown ones."""
        ids = {i for i in user_ids if i is not None}
        if not ids:
            return {}
        stmt = select(models.User).where(col(models.User.id).in_(ids))
        return {u.id: u for u in self.session.exec(stmt).all()}


class PostRepository(BaseRepository):
    """Listing queries; deleted posts are hidden unless asked for."""

    def get(self, post_id: int, include_deleted: bool = False) -> Optional[models.Post]:
        post = self.session.get(models.Post, post_id)
        if post and post.is_deleted and not include_deleted:
            return None
        return post

    def list(
        self,
        *,
        page: int = 1,
        limit: int = 10,
        category: Optional[str] = None,
        author_id: Optional[int] = None,
        search: Optional[str] = None,
        status: Optional[str] = None,
        title_only: bool = False,
    ) -> Tuple[List[models.Post], int]:
        """Return one page of posts (newest first) and the total match count."""
        stmt = select(models.Post).where(models.Post.is_deleted == False)  # noqa: E712
        if category:
            stmt = stmt.where(models.Post.category == category)
        if author_id is not None:
            stmt = stmt.where(models.Post.author_id == author_id)
        if status:
            stmt = stmt.where(models.Post.status == status)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            if title_only:
                stmt = stmt.where(col(models.Post.title).ilike(pattern))
            else:
                stmt = stmt.where(col(models.Post.title).ilike(pattern) | col(models.Post.content).ilike(pattern))
        total = self._count(stmt)
        offset = (page - 1) * limit
        stmt = stmt.order_by(col(models.Post.created_at).desc(), col(models.Post.id).desc()).offset(offset).limit(limit)
        return list(self.session.exec(stmt).all()), total

    def ids_by_author(self, author_id: int) -> List[int]:
        stmt = select(models.Post.id).where(models.Post.author_id == author_id)
        return list(self.session.exec(stmt).all())

    def set_status(self, post: models.Post, status: str) -> models.Post:
        post.status = status
        post.updated_at = models.utcnow()
        return self.save(post)


class PurchaseRepository(BaseRepository):
    """Queries over purchases, including fee bookkeeping."""

    def get(self, purchase_id: int) -> Optional[models.Purchase]:
        return self.session.get(models.Purchase, purchase_id)

    def get_by_order_number(self, order_number: str) -> Optional[models.Purchase]:
        stmt = select(models.Purchase).where(models.Purchase.order_number == order_number)
        return self.session.exec(stmt).first()

    def order_number_exists(self, order_number: str) -> bool:
        stmt = select(models.Purchase.id).where(models.Purchase.order_number == order_number)
        return self.session.exec(stmt).first() is not None

    def in_progress_for_post(self, post_id: int) -> List[models.Purchase]:
        stmt = select(models.Purchase).where(
            models.Purchase.post_id == post_id,
            col(models.Purchase.status).in_(models.PURCHASE_IN_PROGRESS),
        )
        return list(self.session.exec(stmt).all())

    def list_for_buyer(self, buyer_id: int, status: Optional[str] = None) -> List[models.Purchase]:
        """Purchases of `buyer_id` in `status`, or every non-cancelled one."""
        stmt = select(models.Purchase).where(models.Purchase.buyer_id == buyer_id)
        if status is not None:
            stmt = stmt.where(models.Purchase.status == status)
        else:
            stmt = stmt.where(models.Purchase.status != "CANCELLED")
        stmt = stmt.order_by(col(models.Purchase.created_at).desc(), col(models.Purchase.id).desc())
        return list(self.session.exec(stmt).all())

    def list_for_seller(self, seller_id: int) -> List[models.Purchase]:
        stmt = select(models.Purchase).where(models.Purchase.seller_id == seller_id).order_by(
            col(models.Purchase.created_at).desc(), col(models.Purchase.id).desc()
        )
        return list(self.session.exec(stmt).all())

    def list_all(self, *, page: int = 1, limit: int = 10, buyer_id: Optional[int] = None) -> Tuple[List[models.Purchase], int]:
        stmt = select(models.Purchase)
        if buyer_id is not None:
            stmt = stmt.where(models.Purchase.buyer_id == buyer_id)
        total = self._count(stmt)
        stmt = stmt.order_by(col(models.Purchase.created_at).desc(), col(models.Purchase.id).desc())
        stmt = stmt.offset((page - 1) * limit).limit(limit)
        return list(self.session.exec(stmt).all()), total

    def unpaid_fees_for_seller(self, seller_id: int) -> List[models.Purchase]:
        """Confirmed sales whose platform fee has not been paid yet."""
        stmt = select(models.Purchase).where(
            models.Purchase.seller_id == seller_id,
            models.Purchase.is_fee_paid == False,  # noqa: E712
            models.Purchase.status == "CONFIRMED",
        ).order_by(col(models.Purchase.fee_due_at).asc())
        return list(self.session.exec(stmt).all())

    def list_fees(self, paid: Optional[bool] = None) -> List[models.Purchase]:
        stmt = select(models.Purchase).where(models.Purchase.status == "CONFIRMED", models.Purchase.fee_amount > 0)
        if paid is not None:
            stmt = stmt.where(models.Purchase.is_fee_paid == paid)
        stmt = stmt.order_by(col(models.Purchase.fee_due_at).asc())
        return list(self.session.exec(stmt).all())

    def count_by_status_for_seller(self, seller_id: int) -> dict:
        stmt = (
            select(models.Purchase.status, func.count())
            .where(models.Purchase.seller_id == seller_id)
            .group_by(models.Purchase.status)
        )
        return {status: count for status, count in self.session.exec(stmt).all()}


class RoomRepository(BaseRepository):
    def get(self, room_id: str) -> Optional[models.Room]:
        return self.session.get(models.Room, room_id)

    def get_by_order_number(self, order_number: str) -> Optional[models.Room]:
        stmt = select(models.Room).where(models.Room.order_number == order_number)
        return self.session.exec(stmt).first()


class MessageRepository(BaseRepository):
    def list_for_room(self, room_id: str, limit: int = 50, offset: int = 0) -> List[models.Message]:
        stmt = (
            select(models.Message)
            .where(models.Message.room_id == room_id)
            .order_by(col(models.Message.created_at).asc(), col(models.Message.id).asc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.exec(stmt).all())

    def list_direct(self, user_id: int, other_id: int, limit: int = 50, offset: int = 0) -> List[models.Message]:
        """Room-less messages exchanged between two users, oldest first."""
        stmt = (
            select(models.Message)
            .where(
                col(models.Message.room_id).is_(None),
                or_(
                    and_(models.Message.sender_id == user_id, models.Message.receiver_id == other_id),
                    and_(models.Message.sender_id == other_id, models.Message.receiver_id == user_id),
                ),
            )
            .order_by(col(models.Message.created_at).asc(), col(models.Message.id).asc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.exec(stmt).all())

    def mark_read(self, receiver_id: int, room_id: Optional[str] = None, direct_from: Optional[int] = None) -> int:
        """Flag unread messages addressed to `receiver_id` as read; return the count.

        `room_id` limits it to one room, `direct_from` to room-less messages
        sent by that user.
        """
        stmt = update(models.Message).where(
            models.Message.receiver_id == receiver_id,
            models.Message.is_read == False,  # noqa: E712
        )
        if room_id is not None:
            stmt = stmt.where(models.Message.room_id == room_id)
        if direct_from is not None:
            stmt = stmt.where(col(models.Message.room_id).is_(None), models.Message.sender_id == direct_from)
        result = self.session.exec(stmt.values(is_read=True))
        self.session.commit()
        return result.rowcount or 0

    def unread_count(self, receiver_id: int, room_id: Optional[str] = None) -> int:
        stmt = select(models.Message.id).where(
            models.Message.receiver_id == receiver_id,
            models.Message.is_read == False,  # noqa: E712
        )
        if room_id is not None:
            stmt = stmt.where(models.Message.room_id == room_id)
        return self._count(stmt)


class NotificationRepository(BaseRepository):
    def get(self, notification_id: int) -> Optional[models.Notification]:
        return self.session.get(models.Notification, notification_id)

    def list_for_user(self, user_id: int) -> List[models.Notification]:
        stmt = select(models.Notification).where(models.Notification.user_id == user_id).order_by(
            col(models.Notification.created_at).desc(), col(models.Notification.id).desc()
        )
        return list(self.session.exec(stmt).all())

    def mark_all_read(self, user_id: int) -> int:
        stmt = update(models.Notification).where(
            models.Notification.user_id == user_id,
            models.Notification.is_read == False,  # noqa: E712
        ).values(is_read=True)
        result = self.session.exec(stmt)
        self.session.commit()
        return result.rowcount or 0


class RatingRepository(BaseRepository):
    def get_for_purchase(self, purchase_id: int) -> Optional[models.Rating]:
        stmt = select(models.Rating).where(models.Rating.purchase_id == purchase_id)
        return self.session.exec(stmt).first()

    def list_for_seller(self, seller_id: int, limit: Optional[int] = None) -> List[models.Rating]:
        stmt = select(models.Rating).where(models.Rating.seller_id == seller_id).order_by(
            col(models.Rating.created_at).desc(), col(models.Rating.id).desc()
        )
        if limit:
            stmt = stmt.limit(limit)
        return list(self.session.exec(stmt).all())

    def summary_for_seller(self, seller_id: int) -> Tuple[float, int]:
        stmt = select(func.avg(models.Rating.rating), func.count(models.Rating.id)).where(
            models.Rating.seller_id == seller_id
        )
        avg, count = self.session.exec(stmt).one()
        return (round(float(avg), 1) if avg is not None else 0.0), count


class ReportRepository(BaseRepository):
    def get(self, report_id: int) -> Optional[models.Report]:
        return self.session.get(models.Report, report_id)

    def exists_for_post(self, reporter_id: int, post_id: int) -> bool:
        stmt = select(models.Report.id).where(
            models.Report.reporter_id == reporter_id,
            models.Report.post_id == post_id,
        )
        return self.session.exec(stmt).first() is not None

    def list_against_seller(self, seller_id: int, post_ids: List[int]) -> List[models.Report]:
        """Reports on any of the seller's posts or on the seller directly."""
        cond = models.Report.seller_id == seller_id
        if post_ids:
            cond = cond | col(models.Report.post_id).in_(post_ids)
        stmt = select(models.Report).where(cond).order_by(
            col(models.Report.created_at).desc(), col(models.Report.id).desc()
        )
        return list(self.session.exec(stmt).all())

    def list_all(self, status: Optional[str] = None) -> List[models.Report]:
        stmt = select(models.Report)
        if status:
            stmt = stmt.where(models.Report.status == status)
        stmt = stmt.order_by(col(models.Report.created_at).desc(), col(models.Report.id).desc())
        return list(self.session.exec(stmt).all())


class PaymentRepository(BaseRepository):
    def get(self, payment_id: str) -> Optional[models.Payment]:
        return self.session.get(models.Payment, payment_id)

    def exists(self, payment_id: str) -> bool:
        return self.get(payment_id) is not None


class ProposalRepository(BaseRepository):
    def get(self, proposal_id: int) -> Optional[models.Proposal]:
        return self.session.get(models.Proposal, proposal_id)

    def exists_for(self, post_id: int, proposer_id: int) -> bool:
        stmt = select(models.Proposal.id).where(
            models.Proposal.post_id == post_id,
            models.Proposal.proposer_id == proposer_id,
        )
        return self.session.exec(stmt).first() is not None

    def list_for_post(self, post_id: int) -> List[models.Proposal]:
        stmt = select(models.Proposal).where(models.Proposal.post_id == post_id).order_by(
            col(models.Proposal.created_at).desc(), col(models.Proposal.id).desc()
        )
        return list(self.session.exec(stmt).all())

    def count_for_posts(self, post_ids: List[int]) -> dict:
        if not post_ids:
            return {}
        stmt = (
            select(models.Proposal.post_id, func.count())
            .where(col(models.Proposal.post_id).in_(post_ids))
            .group_by(models.Proposal.post_id)
        )
        return {post_id: count for post_id, count in self.session.exec(stmt).all()}

    def reject_other_pending(self, post_id: int, accepted_id: int) -> int:
        stmt = update(models.Proposal).where(
            models.Proposal.post_id == post_id,
            models.Proposal.id != accepted_id,
            models.Proposal.status == "PENDING",
        ).values(status="REJECTED", updated_at=models.utcnow())
        result = self.session.exec(stmt)
        self.session.commit()
        return result.rowcount or 0


class FeedbackRepository(BaseRepository):
    def get(self, feedback_id: int) -> Optional[models.Feedback]:
        return self.session.get(models.Feedback, feedback_id)

    def list_all(self) -> List[models.Feedback]:
        stmt = select(models.Feedback).order_by(col(models.Feedback.created_at).desc(), col(models.Feedback.id).desc())
        return list(self.session.exec(stmt).all())


class KakaoSendLogRepository(BaseRepository):
    """Send history backing the per-recipient notification cooldown."""

    def latest_since(self, phone_number: str, message_type: str, since: datetime) -> Optional[models.KakaoSendLog]:
        stmt = (
            select(models.KakaoSendLog)
            .where(
                models.KakaoSendLog.phone_number == phone_number,
                models.KakaoSendLog.message_type == message_type,
                models.KakaoSendLog.created_at > since,
            )
            .order_by(col(models.KakaoSendLog.created_at).desc())
            .limit(1)
        )
        return self.session.exec(stmt).first()

    def record(self, phone_number: str, message_type: str) -> models.KakaoSendLog:
        return self.save(models.KakaoSendLog(phone_number=phone_number, message_type=message_type))


class AuthLogRepository(BaseRepository):
    def list_recent(self, limit: int = 100) -> List[models.AuthLog]:
        stmt = select(models.AuthLog).order_by(col(models.AuthLog.created_at).desc(), col(models.AuthLog.id).desc()).limit(limit)
        return list(self.session.exec(stmt).all())
