from __future__ import annotations

from typing import Any

from ..repositories import books_repo

DEFAULT_GENRE_PRICE = 25
MAX_PRICE = 150


def author_stats(author_books: list[dict[str, Any]]) -> dict[str, Any]:
    published = [b for b in author_books if (b.get("publishingStatus") or {}).get("status") == "published"]
    total_sales = 0
    total_revenue = 0.0
    rating_sum = 0.0
    rating_count = 0
    quality: list[float] = []
    for b in published:
        stats = b.get("statistics") or {}
        purchases = int(stats.get("purchases") or 0)
        total_sales += purchases
        total_revenue += purchases * float((b.get("publishingStatus") or {}).get("price") or 0)
        reviews = int(stats.get("totalReviews") or 0)
        if reviews:
            rating_sum += float(stats.get("averageRating") or 0) * reviews
            rating_count += reviews
        q = float((b.get("qualityScore") or {}).get("overallScore") or 0)
        if q:
            quality.append(q)
    return {
        "totalBooks": len(author_books),
        "publishedBooks": len(published),
        "totalSales": total_sales,
        "totalRevenue": round(total_revenue, 2),
        "averageRating": rating_sum / rating_count if rating_count else 0.0,
        "averageQualityScore": sum(quality) / len(quality) if quality else 0.0,
    }


def market_analysis(genre_books: list[dict[str, Any]]) -> dict[str, Any]:
    prices = [
        float((b.get("publishingStatus") or {}).get("price") or 0)
        for b in genre_books
        if not (b.get("publishingStatus") or {}).get("isFree") and (b.get("publishingStatus") or {}).get("price")
    ]
    avg = sum(prices) / len(prices) if prices else DEFAULT_GENRE_PRICE
    sales = sum(int((b.get("statistics") or {}).get("purchases") or 0) for b in genre_books)
    per_book = sales / len(genre_books) if genre_books else 0
    demand = "medium"
    if per_book > 50:
        demand = "high"
    elif per_book < 10:
        demand = "low"
    return {
        "genreAveragePrice": round(avg),
        "competitorPriceRange": {
            "min": round(min(prices)) if prices else 0,
            "max": round(max(prices)) if prices else 100,
        },
        "demandLevel": demand,
        "recentSalesInGenre": sales,
    }


def recommend(
    *, stats: dict[str, Any], market: dict[str, Any], genre: str, quality: float | None = None
) -> dict[str, Any]:
    published = int(stats["publishedBooks"])
    sales = int(stats["totalSales"])
    avg_price = float(market["genreAveragePrice"])
    price: float = 0
    free = True
    tips: list[str]

    if published == 0:
        reasoning = (
            "This is your first book! Offering it for free builds an initial readership and "
            "collects reviews. Readers are more willing to try a new author when there is no cost."
        )
        tips = [
            "A free first book helps build a loyal reader base",
            "Ask readers to leave reviews, they are critical for future success",
            "Share the book on social networks and in reading communities",
            "Use positive reviews to market your future books",
        ]
    elif published == 1 and sales > 10:
        free = False
        price = min(20, avg_price * 0.5)
        reasoning = (
            f"You already have {sales} sales from your first book. Now is the time to start earning, "
            "with a relatively low price to keep growing your audience."
        )
        tips = [
            "A below-average price will help you keep growing",
            "Offer a discount to readers of your first book",
            "Consider making your first book free for a limited time to attract new readers",
            "Build a mailing list of interested readers",
        ]
    elif published == 1:
        reasoning = (
            "Your first book has not gathered enough readers yet. Offering this one for free "
            "as well will increase your exposure."
        )
        tips = [
            "Focus on marketing and reaching new readers",
            "Study the reviews of your first book and learn from them",
            "Consider updating the cover or description of your first book",
            "Join reading and writing communities online",
        ]
    elif sales > 50:
        free = False
        factor = min(1.5, 1 + float(stats["averageRating"]) / 5 * 0.3 + sales / 100 * 0.2)
        price = min(round(avg_price * factor), float(market["competitorPriceRange"]["max"]))
        reasoning = (
            f"With {sales} sales and {published} published books you have a loyal audience. "
            "The price reflects your track record and prices in the genre."
        )
        tips = [
            "Your readers are willing to pay, give them value!",
            "Consider bundles or subscriptions for loyal readers",
            "Add bonuses such as exclusive chapters or behind-the-scenes content",
            "Use a higher price for special or longer books",
        ]
    else:
        free = False
        price = round(avg_price * 0.7)
        reasoning = (
            "You have publishing experience. A price slightly below the genre average can "
            "increase sales and build momentum."
        )
        tips = [
            "Analyze what works for successful authors in your genre",
            "Consider improving the covers and descriptions of all your books",
            "Build a presence on social networks",
            "Consider collaborations with other authors",
        ]

    if not free and market["demandLevel"] == "high":
        price = round(price * 1.2)
        tips.append(f"Demand for {genre} is high, you can raise the price")
    elif not free and market["demandLevel"] == "low":
        price = round(price * 0.8)
        tips.append("Demand in this genre is relatively low, a competitive price will help")

    if not free and quality and quality >= 85:
        price = round(price * 1.15)
        tips.append("The high quality score justifies a premium price")

    price = max(0, min(price, MAX_PRICE))
    return {
        "recommendedPrice": price,
        "recommendFree": free,
        "reasoning": reasoning,
        "authorStats": {
            "totalBooks": stats["totalBooks"],
            "publishedBooks": published,
            "totalSales": sales,
            "averageRating": round(float(stats["averageRating"]) * 10) / 10,
        },
        "marketAnalysis": market,
        "strategyTips": tips[:4],
    }


def pricing_strategy(book: dict[str, Any]) -> dict[str, Any]:
    genre = str(book.get("genre") or "Fiction")
    needle = genre.lower()
    genre_books = [
        b for b in books_repo.list_books_by_status("published") if needle in str(b.get("genre") or "").lower()
    ][:100]
    return recommend(
        stats=author_stats(books_repo.list_books_by_author(str(book.get("authorId")))),
        market=market_analysis(genre_books),
        genre=genre,
        quality=float((book.get("qualityScore") or {}).get("overallScore") or 0) or None,
    )
