"""
Admin analytics over users, books, activity documents, interaction events and
completed transactions. Aggregation happens in process.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any

from ..repositories import activity_repo, books_repo, conversations_repo, transactions_repo, users_repo
from .promotion import days_since

AUTHOR_SHARE = 0.5


def _iso_ago(*, days: float = 0, minutes: float = 0) -> str:
    dt = datetime.now(timezone.utc) - timedelta(days=days, minutes=minutes)
    return dt.isoformat().replace("+00:00", "Z")


def _stats(book: dict[str, Any]) -> dict[str, Any]:
    return book.get("statistics") or {}


def _quality(book: dict[str, Any]) -> float:
    return float((book.get("qualityScore") or {}).get("overallScore") or 0)


def _status(book: dict[str, Any]) -> str:
    return str((book.get("publishingStatus") or {}).get("status") or "draft")


def _avg(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _pct(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def _growth(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 1)


def _published(books: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [b for b in books if _status(b) == "published"]


# --- admin dashboard ---


def admin_stats() -> dict[str, Any]:
    users = users_repo.list_users()
    books = books_repo.list_all_books()
    roles = Counter(str(u.get("role") or "free") for u in users)
    published = _published(books)

    book_revenue = sum(float(_stats(b).get("revenue") or 0) for b in published)
    platform_revenue = book_revenue * (1 - AUTHOR_SHARE)
    subscription_revenue = sum(float(t.get("amount") or 0) for t in transactions_repo.list_completed_transactions())

    week_ago = _iso_ago(days=7)
    month_ago = _iso_ago(days=30)
    signups = Counter(
        str(u.get("createdAt"))[:10] for u in users if str(u.get("createdAt") or "") >= month_ago
    )

    by_author: dict[str, dict[str, Any]] = defaultdict(lambda: {"totalRevenue": 0.0, "totalSales": 0, "bookCount": 0})
    for b in published:
        row = by_author[str(b.get("authorId"))]
        row["totalRevenue"] += float(_stats(b).get("revenue") or 0)
        row["totalSales"] += int(_stats(b).get("purchases") or 0)
        row["bookCount"] += 1
    top = sorted(by_author.items(), key=lambda kv: kv[1]["totalRevenue"], reverse=True)[:10]
    names = users_repo.get_users_by_ids([aid for aid, _ in top])

    return {
        "overview": {
            "totalUsers": len(users),
            "totalBooks": len(books),
            "publishedBooks": len(published),
            "platformRevenue": round(platform_revenue + subscription_revenue, 2),
            "recentSignups": sum(1 for u in users if str(u.get("createdAt") or "") >= week_ago),
        },
        "users": {
            "total": len(users),
            "free": roles.get("free", 0),
            "standard": roles.get("standard", 0),
            "premium": roles.get("premium", 0),
            "admin": roles.get("admin", 0),
        },
        "books": {
            "total": len(books),
            "published": len(published),
            "drafts": sum(1 for b in books if _status(b) == "draft"),
        },
        "revenue": {
            "total": round(platform_revenue + subscription_revenue, 2),
            "fromBooks": round(platform_revenue, 2),
            "fromSubscriptions": round(subscription_revenue, 2),
        },
        "signupTrend": [{"_id": day, "count": n} for day, n in sorted(signups.items())],
        "topAuthors": [
            {
                "authorId": aid,
                "authorName": (names.get(aid) or {}).get("name") or "Unknown",
                "authorEmail": (names.get(aid) or {}).get("email") or "",
                **{k: round(v, 2) if isinstance(v, float) else v for k, v in row.items()},
            }
            for aid, row in top
        ],
    }


# --- analytics ---


def platform_metrics() -> dict[str, Any]:
    users = users_repo.list_users()
    books = books_repo.list_all_books()
    week_ago = _iso_ago(days=7)
    scored = [_quality(b) for b in books if _quality(b) > 0]
    return {
        "totalUsers": len(users),
        "activeUsers": len(activity_repo.list_activities(active_since=_iso_ago(days=30))),
        "newUsersThisWeek": sum(1 for u in users if str(u.get("createdAt") or "") >= week_ago),
        "totalBooks": len(books),
        "publishedBooks": len(_published(books)),
        "newBooksThisWeek": sum(1 for b in books if str(b.get("createdAt") or "") >= week_ago),
        "totalRevenue": round(sum(float(_stats(b).get("revenue") or 0) for b in books), 2),
        "averageQualityScore": round(_avg(scored), 1),
    }


def real_time_activity() -> dict[str, Any]:
    hour_ago = _iso_ago(minutes=60)
    events = books_repo.list_events_since(hour_ago)
    by_type = Counter(str(e.get("type")) for e in events)
    return {
        "activeNow": len(activity_repo.list_activities(active_since=_iso_ago(minutes=15))),
        "eventsLastHour": len(events),
        "byType": dict(by_type),
        "reading": by_type.get("read", 0),
        "browsing": by_type.get("view", 0),
        "recentPurchases": by_type.get("purchase", 0),
        "recentSignups": sum(1 for u in users_repo.list_users() if str(u.get("createdAt") or "") >= hour_ago),
        "recentPublished": sum(
            1
            for b in books_repo.list_books_by_status("published")
            if str((b.get("publishingStatus") or {}).get("publishedAt") or "") >= hour_ago
        ),
    }


def engagement_funnel() -> dict[str, Any]:
    registered = len(users_repo.list_users())
    activities = activity_repo.list_activities()
    engaged = sum(
        1 for a in activities if int(a.get("totalBooksRead") or 0) > 0 or int(a.get("totalBooksWritten") or 0) > 0
    )
    readers = sum(1 for a in activities if a.get("completedBooks"))
    purchasers = sum(
        1 for a in activities if any(e.get("type") == "purchase" for e in a.get("interactionEvents") or [])
    )
    writers = sum(1 for a in activities if int(a.get("totalBooksWritten") or 0) > 0)
    return {
        "registered": registered,
        "engaged": engaged,
        "readers": readers,
        "purchasers": purchasers,
        "writers": writers,
        "conversionRates": {
            "registeredToEngaged": _pct(engaged, registered),
            "engagedToReader": _pct(readers, engaged),
            "readerToPurchaser": _pct(purchasers, readers),
        },
    }


TOP_BOOK_SORTS = {
    "views": lambda b: int(_stats(b).get("views") or 0),
    "purchases": lambda b: int(_stats(b).get("purchases") or 0),
    "quality": _quality,
    "revenue": lambda b: float(_stats(b).get("revenue") or 0),
}


def top_books(limit: int = 20, sort_by: str = "views") -> list[dict[str, Any]]:
    key = TOP_BOOK_SORTS.get(sort_by, TOP_BOOK_SORTS["views"])
    books = sorted(books_repo.list_books_by_status("published"), key=key, reverse=True)[:limit]
    authors = users_repo.get_users_by_ids([str(b.get("authorId")) for b in books])
    out = []
    for b in books:
        stats = _stats(b)
        views = int(stats.get("views") or 0)
        purchases = int(stats.get("purchases") or 0)
        out.append(
            {
                "bookId": b.get("bookId"),
                "title": b.get("title"),
                "author": (authors.get(str(b.get("authorId"))) or {}).get("name") or "Unknown",
                "genre": b.get("genre"),
                "views": views,
                "purchases": purchases,
                "revenue": float(stats.get("revenue") or 0),
                "qualityScore": _quality(b),
                "publishedAt": (b.get("publishingStatus") or {}).get("publishedAt") or b.get("createdAt"),
                "performanceScore": views * 0.1 + purchases * 5 + (_quality(b) or 50) * 0.5,
            }
        )
    return out


def top_authors(limit: int = 20) -> list[dict[str, Any]]:
    groups: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for b in books_repo.list_books_by_status("published"):
        groups[str(b.get("authorId"))].append(b)

    rows = []
    for author_id, books in groups.items():
        views = sum(int(_stats(b).get("views") or 0) for b in books)
        purchases = sum(int(_stats(b).get("purchases") or 0) for b in books)
        revenue = sum(float(_stats(b).get("revenue") or 0) for b in books)
        quality = _avg([_quality(b) for b in books if _quality(b) > 0])
        rows.append(
            {
                "authorId": author_id,
                "totalBooks": len(books),
                "totalViews": views,
                "totalPurchases": purchases,
                "totalRevenue": round(revenue, 2),
                "averageQuality": quality,
                "engagementScore": len(books) * 10 + views * 0.1 + purchases * 5 + (quality or 50) * 0.5 + revenue * 0.2,
            }
        )
    rows.sort(key=lambda r: r["engagementScore"], reverse=True)
    rows = rows[:limit]
    users = users_repo.get_users_by_ids([r["authorId"] for r in rows])
    return [
        {
            **r,
            "name": users[r["authorId"]].get("name"),
            "email": users[r["authorId"]].get("email"),
            "avatar": (users[r["authorId"]].get("profile") or {}).get("avatar") or "",
        }
        for r in rows
        if r["authorId"] in users
    ]


def genre_analytics() -> list[dict[str, Any]]:
    published = books_repo.list_books_by_status("published")
    month_ago = _iso_ago(days=30)
    two_months_ago = _iso_ago(days=60)

    groups: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for b in published:
        groups[str(b.get("genre") or "Unknown")].append(b)

    out = []
    for genre, books in groups.items():
        last_month = sum(1 for b in books if two_months_ago <= str(b.get("createdAt") or "") < month_ago)
        growth = (len(books) - last_month) / last_month * 100 if last_month else 100
        out.append(
            {
                "genre": genre,
                "bookCount": len(books),
                "totalViews": sum(int(_stats(b).get("views") or 0) for b in books),
                "totalPurchases": sum(int(_stats(b).get("purchases") or 0) for b in books),
                "averageQuality": _avg([_quality(b) for b in books if _quality(b) > 0]),
                "growthRate": round(growth, 1),
            }
        )
    out.sort(key=lambda g: g["totalViews"], reverse=True)
    return out


def books_needing_evaluation(limit: int = 50) -> list[dict[str, Any]]:
    books = [b for b in books_repo.list_books_by_status("published") if not _quality(b)]
    books.sort(key=lambda b: str(b.get("createdAt") or ""), reverse=True)
    books = books[:limit]
    authors = users_repo.get_users_by_ids([str(b.get("authorId")) for b in books])
    return [
        {
            "bookId": b.get("bookId"),
            "title": b.get("title"),
            "author": (authors.get(str(b.get("authorId"))) or {}).get("name"),
            "genre": b.get("genre"),
            "wordCount": int(_stats(b).get("wordCount") or 0),
            "publishedAt": (b.get("publishingStatus") or {}).get("publishedAt"),
        }
        for b in books
    ]


def activity_trends(days: int = 30) -> list[dict[str, Any]]:
    events = books_repo.list_events_since(_iso_ago(days=days))
    by_day: dict[str, Counter[str]] = defaultdict(Counter)
    for e in events:
        by_day[str(e.get("createdAt") or "")[:10]][str(e.get("type"))] += 1
    return [
        {"date": day, "totalInteractions": sum(counts.values()), "breakdown": dict(counts)}
        for day, counts in sorted(by_day.items())
    ]


def revenue(days: int = 30) -> dict[str, Any]:
    """Book sales come from purchase events in the window; subscriptions from completed transactions."""
    since = _iso_ago(days=days)
    previous_since = _iso_ago(days=days * 2)

    events = books_repo.list_events_since(previous_since)
    purchases = [e for e in events if e.get("type") == "purchase"]
    current = [e for e in purchases if str(e.get("createdAt") or "") >= since]
    previous = [e for e in purchases if str(e.get("createdAt") or "") < since]

    def _amount(e: dict[str, Any]) -> float:
        return float((e.get("metadata") or {}).get("price") or 0)

    book_sales = sum(_amount(e) for e in current)
    txns = transactions_repo.list_completed_transactions()
    subs = sum(float(t.get("amount") or 0) for t in txns if str(t.get("completedAt") or t.get("createdAt") or "") >= since)
    prev_subs = sum(
        float(t.get("amount") or 0)
        for t in txns
        if previous_since <= str(t.get("completedAt") or t.get("createdAt") or "") < since
    )
    total = book_sales + subs
    previous_total = sum(_amount(e) for e in previous) + prev_subs

    books = {str(b.get("bookId")): b for b in books_repo.list_books_by_status("published")}
    by_genre: dict[str, float] = defaultdict(float)
    by_author: dict[str, float] = defaultdict(float)
    for e in current:
        b = books.get(str(e.get("bookId")))
        if not b:
            continue
        by_genre[str(b.get("genre") or "Unknown")] += _amount(e)
        by_author[str(b.get("authorId"))] += _amount(e)
    top_authors_rev = sorted(by_author.items(), key=lambda kv: kv[1], reverse=True)[:10]
    names = users_repo.get_users_by_ids([a for a, _ in top_authors_rev])

    return {
        "days": days,
        "totalRevenue": round(total, 2),
        "bookSalesRevenue": round(book_sales, 2),
        "subscriptionRevenue": round(subs, 2),
        "averageOrderValue": round(book_sales / len(current), 2) if current else 0.0,
        "revenueByGenre": [
            {"genre": g, "revenue": round(v, 2)}
            for g, v in sorted(by_genre.items(), key=lambda kv: kv[1], reverse=True)[:10]
        ],
        "topEarningAuthors": [
            {"authorId": a, "name": (names.get(a) or {}).get("name") or "Unknown", "revenue": round(v, 2)}
            for a, v in top_authors_rev
        ],
        "revenueGrowth": _growth(total, previous_total),
    }


def churned_users(days: int = 30, limit: int = 50) -> list[dict[str, Any]]:
    cutoff = _iso_ago(days=days)
    churned = [
        a
        for a in activity_repo.list_activities()
        if str(a.get("lastActiveAt") or "") < cutoff and int(a.get("totalBooksRead") or 0) > 0
    ][:limit]
    users = users_repo.get_users_by_ids([str(a.get("userId")) for a in churned])
    out = []
    for a in churned:
        u = users.get(str(a.get("userId"))) or {}
        out.append(
            {
                "userId": a.get("userId"),
                "name": u.get("name") or "Unknown",
                "email": u.get("email") or "Unknown",
                "lastActiveAt": a.get("lastActiveAt"),
                "daysSinceActive": days_since(a.get("lastActiveAt")) or 0,
                "booksStarted": len(a.get("currentlyReading") or []) + len(a.get("completedBooks") or []),
                "booksCompleted": len(a.get("completedBooks") or []),
                "registeredAt": u.get("createdAt"),
            }
        )
    return out


def social_engagement() -> dict[str, Any]:
    published = books_repo.list_books_by_status("published")
    likes = sum(int(b.get("likes") or 0) for b in published)
    shares = sum(int(_stats(b).get("shares") or 0) for b in published)
    comments = sum(int(_stats(b).get("totalReviews") or 0) for b in published)
    count = len(published) or 1

    since = _iso_ago(days=30)
    events = books_repo.list_events_since(_iso_ago(days=60))
    recent = Counter(str(e.get("type")) for e in events if str(e.get("createdAt") or "") >= since)
    earlier = Counter(str(e.get("type")) for e in events if str(e.get("createdAt") or "") < since)

    return {
        "totalLikes": likes,
        "totalShares": shares,
        "totalComments": comments,
        "averageLikesPerBook": round(likes / count, 1),
        "averageSharesPerBook": round(shares / count, 1),
        "averageCommentsPerBook": round(comments / count, 1),
        "likesGrowth": _growth(recent.get("like", 0), earlier.get("like", 0)),
        "sharesGrowth": _growth(recent.get("share", 0), earlier.get("share", 0)),
        "commentsGrowth": _growth(recent.get("comment", 0), earlier.get("comment", 0)),
    }


# --- social engagement detail ---

SOCIAL_EVENT_TYPES = ("like", "share", "comment")


def inactive_new_users(days: int = 7, limit: int = 50) -> list[dict[str, Any]]:
    """Recent signups who have neither read nor written anything yet."""
    cutoff = _iso_ago(days=days)
    recent = [u for u in users_repo.list_users() if str(u.get("createdAt") or "") >= cutoff]
    active = {
        str(a.get("userId"))
        for a in activity_repo.list_activities(active_since=cutoff)
        if int(a.get("totalBooksRead") or 0) > 0 or int(a.get("totalBooksWritten") or 0) > 0
    }
    out = []
    for u in recent:
        if str(u.get("userId")) in active:
            continue
        out.append(
            {
                "userId": u.get("userId"),
                "name": u.get("name") or "",
                "email": u.get("email") or "",
                "registeredAt": u.get("createdAt"),
                "daysSinceRegistration": days_since(u.get("createdAt")) or 0,
            }
        )
        if len(out) >= limit:
            break
    return out


def _message_counts(user_id: str) -> tuple[int, int]:
    conversations = conversations_repo.list_conversations_for_user(user_id)
    sent = 0
    for c in conversations:
        sent += sum(
            1
            for m in conversations_repo.list_messages(str(c.get("conversationId")))
            if m.get("senderId") == user_id
        )
    return len(conversations), sent


def engaged_users(limit: int = 20) -> list[dict[str, Any]]:
    """
    Ranks readers by social activity:
    likes + shares*5 + comments*3 + conversations*2 + messages*0.5.
    """
    rows = []
    for a in activity_repo.list_activities():
        uid = str(a.get("userId"))
        counts = Counter(str(e.get("type")) for e in a.get("interactionEvents") or [])
        conversations, messages = _message_counts(uid)
        likes, shares, comments = counts.get("like", 0), counts.get("share", 0), counts.get("comment", 0)
        score = likes + shares * 5 + comments * 3 + conversations * 2 + messages * 0.5
        if score <= 0:
            continue
        rows.append(
            {
                "userId": uid,
                "totalLikes": likes,
                "totalShares": shares,
                "totalComments": comments,
                "conversationsStarted": conversations,
                "messagesSent": messages,
                "engagementScore": round(score, 1),
            }
        )
    rows.sort(key=lambda r: r["engagementScore"], reverse=True)
    rows = rows[:limit]

    users = users_repo.get_users_by_ids([r["userId"] for r in rows])
    for r in rows:
        u = users.get(r["userId"]) or {}
        r["name"] = u.get("name") or "Unknown"
        r["email"] = u.get("email") or ""
        r["avatar"] = (u.get("profile") or {}).get("avatar") or ""
        r["joinedAt"] = u.get("createdAt")
    return rows


def engaged_books(limit: int = 20) -> list[dict[str, Any]]:
    candidates = [
        b
        for b in books_repo.list_books_by_status("published")
        if int(b.get("likes") or 0) > 0
        or int(_stats(b).get("shares") or 0) > 0
        or int(_stats(b).get("totalReviews") or 0) > 0
    ]
    candidates.sort(key=lambda b: int(b.get("likes") or 0), reverse=True)
    candidates = candidates[: limit * 2]

    velocity = Counter(
        str(e.get("bookId"))
        for e in books_repo.list_events_since(_iso_ago(days=7))
        if e.get("type") in SOCIAL_EVENT_TYPES
    )
    authors = users_repo.get_users_by_ids(sorted({str(b.get("authorId")) for b in candidates}))

    rows = []
    for b in candidates:
        likes = int(b.get("likes") or 0)
        shares = int(_stats(b).get("shares") or 0)
        comments = int(_stats(b).get("totalReviews") or 0)
        rows.append(
            {
                "bookId": b.get("bookId"),
                "title": b.get("title"),
                "authorName": (authors.get(str(b.get("authorId"))) or {}).get("name") or "Unknown",
                "likes": likes,
                "shares": shares,
                "comments": comments,
                "engagementScore": likes + shares * 5 + comments * 3,
                "socialVelocity": velocity.get(str(b.get("bookId")), 0),
            }
        )
    rows.sort(key=lambda r: r["engagementScore"], reverse=True)
    return rows[:limit]


def social_trends(days: int = 30) -> list[dict[str, Any]]:
    by_day: dict[str, Counter] = defaultdict(Counter)
    for e in books_repo.list_events_since(_iso_ago(days=days)):
        if e.get("type") in SOCIAL_EVENT_TYPES:
            by_day[str(e.get("createdAt"))[:10]][str(e.get("type"))] += 1
    out = []
    for day in sorted(by_day):
        c = by_day[day]
        out.append(
            {
                "date": day,
                "likes": c.get("like", 0),
                "shares": c.get("share", 0),
                "comments": c.get("comment", 0),
                "total": sum(c.values()),
            }
        )
    return out
