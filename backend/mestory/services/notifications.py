from __future__ import annotations

from collections import Counter
from typing import Any

from ..observability.logging import get_logger
from ..repositories import books_repo, notifications_repo, users_repo

log = get_logger("notifications")

PROMOTION_LABELS = {
    "FEATURED": "was selected as a featured book",
    "TRENDING": "is trending",
    "RISING_STAR": "was spotted as a rising star",
    "EDITOR_PICK": "was chosen as an editor's pick",
}


def _name(user_id: str) -> str | None:
    u = users_repo.get_user_by_id(user_id)
    return str(u.get("name") or "") if u else None


def _book_title(book_id: str) -> str | None:
    b = books_repo.get_book(book_id)
    return str(b.get("title") or "") if b else None


def notify(**kwargs: Any) -> dict[str, Any] | None:
    """Create one notification; failures are logged so the triggering request still succeeds."""
    try:
        return notifications_repo.create_notification(**kwargs)
    except Exception as e:  # noqa: BLE001
        log.warning("notification_create_failed", type=kwargs.get("type"), error=str(e))
        return None


def notify_book_like(*, book_id: str, liker_id: str, author_id: str) -> dict[str, Any] | None:
    if liker_id == author_id:
        return None
    name, title = _name(liker_id), _book_title(book_id)
    if name is None or title is None:
        return None
    return notify(
        recipient_id=author_id,
        sender_id=liker_id,
        type="like",
        title="New like on your book!",
        message=f'{name} liked your book "{title}"',
        data={"bookId": book_id, "bookTitle": title, "link": f"/reader/{book_id}"},
    )


def notify_book_comment(
    *, book_id: str, commenter_id: str, author_id: str, rating: int | None = None
) -> dict[str, Any] | None:
    if commenter_id == author_id:
        return None
    name, title = _name(commenter_id), _book_title(book_id)
    if name is None or title is None:
        return None
    rating_text = f" ({rating} stars)" if rating else ""
    return notify(
        recipient_id=author_id,
        sender_id=commenter_id,
        type="comment",
        title="New review on your book!",
        message=f'{name} reviewed "{title}"{rating_text}',
        data={"bookId": book_id, "bookTitle": title, "link": f"/reader/{book_id}"},
    )


def notify_book_share(
    *, book_id: str, sharer_id: str, author_id: str, platform: str | None = None
) -> dict[str, Any] | None:
    if sharer_id == author_id:
        return None
    name, title = _name(sharer_id), _book_title(book_id)
    if name is None or title is None:
        return None
    platform_text = f" on {platform}" if platform else ""
    return notify(
        recipient_id=author_id,
        sender_id=sharer_id,
        type="share",
        title="Your book was shared!",
        message=f'{name} shared your book "{title}"{platform_text}',
        data={"bookId": book_id, "bookTitle": title, "link": f"/reader/{book_id}"},
    )


def notify_book_purchase(
    *, book_id: str, buyer_id: str, author_id: str, amount: float, currency: str = "USD"
) -> dict[str, Any] | None:
    if buyer_id == author_id:
        return None
    name, title = _name(buyer_id), _book_title(book_id)
    if name is None or title is None:
        return None
    return notify(
        recipient_id=author_id,
        sender_id=buyer_id,
        type="purchase",
        title="New sale!",
        message=f'{name} bought "{title}" for {amount:g} {currency}',
        data={
            "bookId": book_id,
            "bookTitle": title,
            "amount": amount,
            "currency": currency,
            "link": "/dashboard",
        },
    )


def notify_new_message(
    *,
    recipient_id: str,
    sender_id: str,
    conversation_id: str,
    preview: str,
    book_title: str | None = None,
) -> dict[str, Any] | None:
    if recipient_id == sender_id:
        return None
    name = _name(sender_id)
    if name is None:
        return None
    text = preview[:100] + ("..." if len(preview) > 100 else "")
    context = f' (about "{book_title}")' if book_title else ""
    return notify(
        recipient_id=recipient_id,
        sender_id=sender_id,
        type="new_message",
        title=f"New message from {name}",
        message=f"{text}{context}",
        data={"conversationId": conversation_id, "link": f"/messages/{conversation_id}"},
    )


def notify_new_follower(*, author_id: str, follower_id: str) -> dict[str, Any] | None:
    if author_id == follower_id:
        return None
    name = _name(follower_id)
    if name is None:
        return None
    return notify(
        recipient_id=author_id,
        sender_id=follower_id,
        type="new_follower",
        title="You have a new follower!",
        message=f"{name} started following you",
        data={"followerId": follower_id, "link": "/dashboard"},
    )


def notify_payment_received(
    *, user_id: str, amount: float, currency: str, description: str, payment_id: str
) -> dict[str, Any] | None:
    return notify(
        recipient_id=user_id,
        type="payment",
        title="Payment received",
        message=f"We received your payment of {amount:g} {currency} - {description}",
        data={"paymentId": payment_id, "amount": amount, "currency": currency, "link": "/settings/payments"},
    )


def notify_subscription_change(*, user_id: str, plan: str, is_upgrade: bool) -> dict[str, Any] | None:
    if is_upgrade:
        title = f"You upgraded to {plan}!"
        message = f"Congratulations! You now have access to every {plan} feature"
    else:
        title = f"Your plan changed to {plan}"
        message = f"Your subscription was updated to the {plan} plan"
    return notify(
        recipient_id=user_id,
        type="subscription",
        title=title,
        message=message,
        data={"subscriptionPlan": plan, "link": "/subscription"},
    )


def notify_book_published(*, author_id: str, book_id: str, book_title: str) -> dict[str, Any] | None:
    return notify(
        recipient_id=author_id,
        type="book_published",
        title="Your book is published!",
        message=f'"{book_title}" is now live and available to readers',
        data={"bookId": book_id, "bookTitle": book_title, "link": f"/reader/{book_id}"},
    )


def notify_quality_score(
    *, author_id: str, book_id: str, book_title: str, score: int, rating_label: str
) -> dict[str, Any] | None:
    return notify(
        recipient_id=author_id,
        type="quality_score",
        title=f"Quality score for your book: {score}/100",
        message=f'"{book_title}" scored {rating_label} ({score}/100)',
        data={"bookId": book_id, "bookTitle": book_title, "qualityScore": score, "link": f"/book/{book_id}/layout"},
    )


def notify_book_promotion(
    *, author_id: str, book_id: str, book_title: str, promotion_type: str
) -> dict[str, Any] | None:
    label = PROMOTION_LABELS.get(promotion_type, "was promoted")
    return notify(
        recipient_id=author_id,
        type="promotion",
        title=f"Your book {label}!",
        message=f'"{book_title}" {label} and will get extra exposure',
        data={"bookId": book_id, "bookTitle": book_title, "promotionType": promotion_type, "link": "/marketplace"},
    )


def notify_system(*, user_id: str, title: str, message: str, link: str | None = None) -> dict[str, Any] | None:
    return notify(
        recipient_id=user_id,
        type="system",
        title=title,
        message=message,
        data={"link": link} if link else {},
    )


# --- reads ---


def _visible(items: list[dict[str, Any]], *, include_archived: bool) -> list[dict[str, Any]]:
    return [n for n in items if include_archived or not n.get("isArchived")]


def unread_count(user_id: str) -> int:
    return sum(1 for n in _visible(notifications_repo.list_notifications(user_id), include_archived=False) if not n.get("isRead"))


def list_for_user(
    user_id: str,
    *,
    page: int = 1,
    limit: int = 20,
    type: str | None = None,
    unread_only: bool = False,
    include_archived: bool = False,
) -> dict[str, Any]:
    all_items = notifications_repo.list_notifications(user_id)
    items = _visible(all_items, include_archived=include_archived)
    if type:
        items = [n for n in items if n.get("type") == type]
    if unread_only:
        items = [n for n in items if not n.get("isRead")]

    page = max(1, int(page))
    limit = max(1, min(100, int(limit)))
    start = (page - 1) * limit
    total = len(items)
    return {
        "notifications": [notifications_repo.normalize_notification_for_api(n) for n in items[start : start + limit]],
        "unreadCount": sum(1 for n in _visible(all_items, include_archived=False) if not n.get("isRead")),
        "pagination": {"page": page, "limit": limit, "total": total, "pages": -(-total // limit)},
    }


def summary(user_id: str) -> dict[str, Any]:
    items = _visible(notifications_repo.list_notifications(user_id), include_archived=False)
    return {
        "total": len(items),
        "unread": sum(1 for n in items if not n.get("isRead")),
        "byType": dict(Counter(str(n.get("type")) for n in items)),
    }
