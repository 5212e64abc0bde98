"""
Book templates: system defaults, search and recommendations, and applying a
template to a book (or saving a book's layout back as a template).
"""

from __future__ import annotations

from typing import Any

from ..db.dynamodb.errors import DdbConflict
from ..observability.logging import get_logger
from ..repositories import books_repo, templates_repo

log = get_logger("templates")

CATEGORIES = (
    "academic",
    "personal-story",
    "children",
    "novel",
    "poetry",
    "self-help",
    "cookbook",
    "travel",
    "photo-album",
    "custom",
)

PAGE_SIZES = ("A4", "A5", "Letter", "Custom", "6x9", "5x8")

# Book genre -> template categories, best match first.
GENRE_CATEGORIES: dict[str, list[str]] = {
    "fantasy": ["novel", "children"],
    "sci-fi": ["novel"],
    "romance": ["novel", "personal-story"],
    "mystery": ["novel"],
    "thriller": ["novel"],
    "non-fiction": ["academic", "self-help"],
    "self-help": ["self-help"],
    "humor": ["novel", "personal-story"],
    "biography": ["personal-story"],
    "memoir": ["personal-story"],
    "poetry": ["poetry"],
    "cooking": ["cookbook"],
    "travel": ["travel", "photo-album"],
    "children": ["children"],
    "photography": ["photo-album"],
}


class TemplateAccessError(PermissionError):
    pass


def system_template_id(category: str) -> str:
    return f"tpl_system_{category}"


def _header_footer(*, enabled: bool, font: str, center: str | None = None) -> dict[str, Any]:
    return {
        "enabled": enabled,
        "height": 40 if enabled else 0,
        "content": {"center": center} if center else {},
        "style": {
            "fontSize": 10,
            "fontFamily": font,
            "textColor": "#333333",
            "showOnFirstPage": False,
            "showOnOddPages": True,
            "showOnEvenPages": True,
        },
    }


def page_layout(
    *,
    name: str,
    body_font: str = "Georgia",
    heading_font: str | None = None,
    font_size: int = 12,
    line_height: float = 1.6,
    heading_size: int = 18,
    margins: dict[str, int] | None = None,
    columns: int = 1,
    background: str = "#ffffff",
    is_rtl: bool = False,
    show_page_number: bool = True,
    header: bool = False,
) -> dict[str, Any]:
    return {
        "name": name,
        "splitType": "none",
        "sections": [],
        "columns": columns,
        "columnGap": 20,
        "header": _header_footer(enabled=header, font=body_font, center="{title}" if header else None),
        "footer": _header_footer(enabled=show_page_number, font=body_font, center="{pageNumber}"),
        "background": {"type": "solid", "color": background},
        "margins": margins or {"top": 25, "bottom": 25, "left": 25, "right": 25},
        "typography": {
            "bodyFont": body_font,
            "bodyFontSize": font_size,
            "lineHeight": line_height,
            "textColor": "#000000",
            "headingFont": heading_font or body_font,
            "headingFontSize": heading_size,
            "headingColor": "#000000",
        },
        "isRTL": is_rtl,
        "showPageNumber": show_page_number,
        "pageNumberPosition": "bottom-center",
    }


def _cover_defaults(*, bg: str, title_font: str, title_color: str = "#ffffff", accent: str | None = None) -> dict[str, Any]:
    return {
        "frontCover": {
            "backgroundColor": bg,
            "gradientColors": [bg, accent] if accent else None,
            "titlePosition": {"x": 50, "y": 40},
            "authorPosition": {"x": 50, "y": 85},
            "titleFont": title_font,
            "titleSize": 36,
            "titleColor": title_color,
            "authorFont": "Inter",
            "authorSize": 14,
            "authorColor": "#cccccc",
        },
        "backCover": {
            "backgroundColor": bg,
            "synopsisPosition": {"x": 50, "y": 50},
            "synopsisFont": "Georgia",
            "synopsisFontSize": 12,
            "synopsisColor": title_color,
        },
        "spine": {"backgroundColor": bg, "textColor": title_color, "fontSize": 10},
    }


def _system_template(
    category: str,
    *,
    name: str,
    description: str,
    page_size: str,
    body_font: str,
    heading_font: str,
    cover_bg: str,
    cover_accent: str | None = None,
    font_size: int = 12,
    line_height: float = 1.6,
    columns: int = 1,
    tags: list[str],
) -> dict[str, Any]:
    body = page_layout(
        name="Body",
        body_font=body_font,
        heading_font=heading_font,
        font_size=font_size,
        line_height=line_height,
        columns=columns,
    )
    return {
        "name": name,
        "category": category,
        "description": description,
        "thumbnail": "",
        "previewImages": [],
        "defaults": {"pageSize": page_size, "pageLayout": body},
        "pageTypes": {
            "titlePage": page_layout(name="Title", body_font=heading_font, heading_size=36, show_page_number=False),
            "tableOfContents": page_layout(name="Contents", body_font=body_font, line_height=2.0),
            "chapterOpener": page_layout(
                name="Chapter",
                body_font=body_font,
                heading_font=heading_font,
                heading_size=24,
                margins={"top": 60, "bottom": 25, "left": 25, "right": 25},
                show_page_number=False,
            ),
            "bodyPage": body,
        },
        "coverDefaults": _cover_defaults(bg=cover_bg, title_font=heading_font, accent=cover_accent),
        "aiSettings": {
            "suggestedFonts": [body_font, heading_font],
            "suggestedColorPalettes": [[cover_bg, cover_accent or "#ffffff"]],
            "imagePlacementRules": "",
            "styleGuidelines": description,
        },
        "tags": tags,
        "isActive": True,
    }


DEFAULT_TEMPLATES: list[dict[str, Any]] = [
    _system_template(
        "academic",
        name="Academic Paper",
        description="Clean layout for research, essays and textbooks",
        page_size="A4",
        body_font="Times New Roman",
        heading_font="Arial",
        cover_bg="#1f2937",
        font_size=11,
        line_height=1.5,
        tags=["academic", "research", "textbook"],
    ),
    _system_template(
        "personal-story",
        name="Personal Story",
        description="Warm, readable layout for memoirs and family stories",
        page_size="A5",
        body_font="Georgia",
        heading_font="Playfair Display",
        cover_bg="#7c2d12",
        cover_accent="#f59e0b",
        tags=["memoir", "biography", "family"],
    ),
    _system_template(
        "children",
        name="Children's Book",
        description="Large type and generous space for illustrations",
        page_size="Letter",
        body_font="Nunito",
        heading_font="Fredoka One",
        cover_bg="#2563eb",
        cover_accent="#facc15",
        font_size=16,
        line_height=1.8,
        tags=["children", "illustrated", "picture book"],
    ),
    _system_template(
        "novel",
        name="Classic Novel",
        description="Traditional trade paperback layout for fiction",
        page_size="6x9",
        body_font="Georgia",
        heading_font="Playfair Display",
        cover_bg="#1a1a2e",
        cover_accent="#16213e",
        tags=["novel", "fiction", "classic"],
    ),
    _system_template(
        "poetry",
        name="Poetry Collection",
        description="Airy pages with room for short lines and stanzas",
        page_size="5x8",
        body_font="Cormorant Garamond",
        heading_font="Cormorant Garamond",
        cover_bg="#312e81",
        font_size=13,
        line_height=1.9,
        tags=["poetry", "verse", "collection"],
    ),
    _system_template(
        "self-help",
        name="Self Help Guide",
        description="Structured layout with clear headings for practical books",
        page_size="6x9",
        body_font="Source Sans Pro",
        heading_font="Montserrat",
        cover_bg="#065f46",
        cover_accent="#34d399",
        tags=["self-help", "guide", "non-fiction"],
    ),
    _system_template(
        "cookbook",
        name="Cookbook",
        description="Two-column recipe pages with space for photos",
        page_size="Letter",
        body_font="Lato",
        heading_font="Playfair Display",
        cover_bg="#b91c1c",
        cover_accent="#fde68a",
        columns=2,
        tags=["cookbook", "recipes", "food"],
    ),
    _system_template(
        "travel",
        name="Travel Journal",
        description="Photo-friendly layout for travel writing",
        page_size="A5",
        body_font="Open Sans",
        heading_font="Raleway",
        cover_bg="#0e7490",
        cover_accent="#fcd34d",
        tags=["travel", "journal", "adventure"],
    ),
    _system_template(
        "photo-album",
        name="Photo Album",
        description="Minimal text, full-page images",
        page_size="Letter",
        body_font="Helvetica",
        heading_font="Montserrat",
        cover_bg="#111827",
        font_size=10,
        tags=["photography", "album", "images"],
    ),
    _system_template(
        "custom",
        name="Blank Canvas",
        description="A neutral starting point for your own design",
        page_size="A5",
        body_font="Georgia",
        heading_font="Georgia",
        cover_bg="#374151",
        tags=["custom", "blank"],
    ),
]


def seed_system_templates() -> int:
    """Creates any missing system template; returns how many were created."""
    created = 0
    for tpl in DEFAULT_TEMPLATES:
        try:
            templates_repo.put_template(
                fields=tpl,
                created_by=None,
                is_system=True,
                template_id=system_template_id(str(tpl["category"])),
                only_if_absent=True,
            )
            created += 1
        except DdbConflict:
            continue
    log.info("system_templates_seeded", created=created, total=len(DEFAULT_TEMPLATES))
    return created


# --- reads ---


def _active(templates: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [t for t in templates if t.get("isActive", True)]


def list_all(category: str | None = None) -> list[dict[str, Any]]:
    items = templates_repo.list_templates()
    if category:
        items = [t for t in items if t.get("category") == category]
    items.sort(
        key=lambda t: (bool(t.get("isSystem")), int(t.get("usageCount") or 0), str(t.get("createdAt") or "")),
        reverse=True,
    )
    return items


def list_system() -> list[dict[str, Any]]:
    items = [t for t in _active(templates_repo.list_templates()) if t.get("isSystem")]
    return sorted(items, key=lambda t: str(t.get("category") or ""))


def list_by_category(category: str) -> list[dict[str, Any]]:
    items = [t for t in _active(templates_repo.list_templates()) if t.get("category") == category]
    return sorted(items, key=lambda t: int(t.get("usageCount") or 0), reverse=True)


def list_for_user(user_id: str) -> list[dict[str, Any]]:
    items = [
        t for t in templates_repo.list_templates() if not t.get("isSystem") and str(t.get("createdBy")) == str(user_id)
    ]
    return sorted(items, key=lambda t: str(t.get("createdAt") or ""), reverse=True)


def search(query: str, *, category: str | None = None, limit: int = 10) -> list[dict[str, Any]]:
    q = str(query or "").strip().lower()
    if not q:
        return []
    out = []
    for t in _active(templates_repo.list_templates()):
        if category and t.get("category") != category:
            continue
        haystack = [str(t.get("name") or ""), str(t.get("description") or ""), *[str(x) for x in t.get("tags") or []]]
        if any(q in h.lower() for h in haystack):
            out.append(t)
    out.sort(key=lambda t: int(t.get("usageCount") or 0), reverse=True)
    return out[:limit]


def recommend(genre: str, target_audience: str | None = None) -> list[dict[str, Any]]:
    categories = list(GENRE_CATEGORIES.get(str(genre or "").lower(), ["novel", "custom"]))
    if target_audience == "children":
        categories.insert(0, "children")
    active = _active(templates_repo.list_templates())
    picked = sorted(
        (t for t in active if t.get("category") in categories),
        key=lambda t: int(t.get("usageCount") or 0),
        reverse=True,
    )[:5]
    if not any(t.get("category") == "custom" for t in picked):
        blank = next((t for t in active if t.get("category") == "custom" and t.get("isSystem")), None)
        if blank:
            picked.append(blank)
    return picked


# --- writes ---


def _check_editable(template: dict[str, Any], user_id: str, action: str) -> None:
    if template.get("isSystem"):
        raise TemplateAccessError(f"Cannot {action} system templates")
    owner = template.get("createdBy")
    if owner and str(owner) != str(user_id):
        raise TemplateAccessError(f"Not authorized to {action} this template")


def create(fields: dict[str, Any], user_id: str) -> dict[str, Any]:
    return templates_repo.put_template(fields=fields, created_by=user_id)


def update(template_id: str, fields: dict[str, Any], user_id: str) -> dict[str, Any] | None:
    current = templates_repo.get_template(template_id)
    if not current:
        return None
    _check_editable(current, user_id, "modify")
    return templates_repo.update_template(template_id, fields)


def delete(template_id: str, user_id: str) -> bool:
    current = templates_repo.get_template(template_id)
    if not current:
        return False
    _check_editable(current, user_id, "delete")
    templates_repo.delete_template(template_id)
    return True


def clone(template_id: str, user_id: str, new_name: str | None = None) -> dict[str, Any] | None:
    source = templates_repo.get_template(template_id)
    if not source:
        return None
    fields = templates_repo.normalize_template_for_api(source) or {}
    fields["name"] = new_name or f"{source.get('name')} (Copy)"
    return templates_repo.put_template(fields=fields, created_by=user_id)


def page_layout_from_template(template: dict[str, Any]) -> dict[str, Any]:
    defaults = template.get("defaults") or {}
    layout = defaults.get("pageLayout") or {}
    typo = layout.get("typography") or {}
    position = str(layout.get("pageNumberPosition") or "bottom-center")
    page_size = str(defaults.get("pageSize") or "A5")
    return {
        "bodyFont": typo.get("bodyFont") or "Georgia",
        "fontSize": typo.get("bodyFontSize") or 12,
        "lineHeight": typo.get("lineHeight") or 1.6,
        "pageSize": page_size if page_size in ("A4", "A5", "Letter") else "Custom",
        "customPageSize": defaults.get("customPageSize"),
        "margins": layout.get("margins") or {"top": 25, "bottom": 25, "left": 25, "right": 25},
        "includeTableOfContents": True,
        "headerFooter": {
            "includeHeader": bool((layout.get("header") or {}).get("enabled")),
            "includeFooter": bool((layout.get("footer") or {}).get("enabled")),
            "includePageNumbers": bool(layout.get("showPageNumber", True)),
            "pageNumberPosition": "top" if "top" in position else "bottom",
        },
    }


def cover_from_template(template: dict[str, Any], book: dict[str, Any]) -> dict[str, Any]:
    cover = template.get("coverDefaults") or {}
    front = cover.get("frontCover") or {}
    back = cover.get("backCover") or {}
    spine = cover.get("spine") or {}
    return {
        "front": {
            "type": "gradient",
            "backgroundColor": front.get("backgroundColor"),
            "gradientColors": front.get("gradientColors"),
            "title": {
                "text": book.get("title") or "",
                "font": front.get("titleFont"),
                "size": front.get("titleSize"),
                "color": front.get("titleColor"),
                "position": front.get("titlePosition"),
            },
            "authorName": {
                "text": "",
                "font": front.get("authorFont"),
                "size": front.get("authorSize"),
                "color": front.get("authorColor"),
            },
        },
        "back": {"backgroundColor": back.get("backgroundColor"), "synopsis": book.get("synopsis") or ""},
        "spine": {
            "width": 0,
            "title": book.get("title") or "",
            "author": "",
            "backgroundColor": spine.get("backgroundColor"),
        },
    }


def apply_to_book(book: dict[str, Any], template: dict[str, Any]) -> dict[str, Any] | None:
    """Sets the page layout; the cover only when the book has no front cover yet."""
    fields: dict[str, Any] = {
        "pageLayout": page_layout_from_template(template),
        "templateId": template.get("templateId"),
    }
    if not (book.get("coverDesign") or {}).get("front"):
        fields["coverDesign"] = cover_from_template(template, book)
    updated = books_repo.update_book(str(book.get("bookId")), fields, current=book)
    templates_repo.increment_usage(str(template.get("templateId")))
    return updated


def template_from_book(book: dict[str, Any], *, name: str, category: str = "custom") -> dict[str, Any]:
    layout = book.get("pageLayout") or {}
    hf = layout.get("headerFooter") or {}
    font = str(layout.get("bodyFont") or "Georgia")
    front = (book.get("coverDesign") or {}).get("front") or {}
    body = page_layout(
        name="Custom",
        body_font=font,
        font_size=int(layout.get("fontSize") or 12),
        line_height=float(layout.get("lineHeight") or 1.6),
        margins=layout.get("margins"),
        is_rtl=book.get("language") == "he",
        show_page_number=bool(hf.get("includePageNumbers", True)),
        header=bool(hf.get("includeHeader")),
    )
    cover = _cover_defaults(
        bg=str(front.get("backgroundColor") or "#1a1a2e"),
        title_font=str((front.get("title") or {}).get("font") or "Playfair Display"),
        title_color=str((front.get("title") or {}).get("color") or "#ffffff"),
    )
    return {
        "name": name,
        "category": category if category in CATEGORIES else "custom",
        "description": f'Custom template created from "{book.get("title")}"',
        "defaults": {"pageSize": layout.get("pageSize") or "A5", "pageLayout": body},
        "pageTypes": {"bodyPage": body},
        "coverDefaults": cover,
        "aiSettings": {
            "suggestedFonts": [font],
            "suggestedColorPalettes": [],
            "imagePlacementRules": "",
            "styleGuidelines": "",
        },
        "tags": ["custom", "user-created"],
        "isActive": True,
    }


def save_book_as_template(book: dict[str, Any], user_id: str, *, name: str, category: str = "custom") -> dict[str, Any]:
    return templates_repo.put_template(fields=template_from_book(book, name=name, category=category), created_by=user_id)
