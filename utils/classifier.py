"""Keyword heuristic that suggests a category and tags from complaint text."""
from typing import Dict, List

CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    "sanitation": ["garbage", "waste", "trash", "dump", "clean", "dirty"],
    "roads": ["road", "street", "pothole", "repair", "construction", "traffic"],
    "water": ["water", "leak", "pipe", "supply", "drainage", "flood"],
    "electricity": ["power", "electricity", "light", "outage", "pole", "wire"],
    "parks": ["park", "garden", "playground", "maintenance", "tree"],
    "traffic": ["traffic", "signal", "parking", "congestion", "vehicle"],
}

CONFIDENCE_PER_KEYWORD = 0.2


def suggest_category(title: str, description: str = "") -> dict:
    """Score each category by keyword hits; ties keep the earlier category.

    The suggestion is advisory. A complaint submitted without a category
    takes it, and it is stored alongside the complaint either way.
    """
    text = f"{title or ''} {description or ''}".lower()
    best_category = "other"
    best_score = 0
    for category, keywords in CATEGORY_KEYWORDS.items():
        score = sum(1 for keyword in keywords if keyword in text)
        if score > best_score:
            best_category = category
            best_score = score

    tags = [keyword for keyword in CATEGORY_KEYWORDS.get(best_category, []) if keyword in text]
    return {
        "category": best_category,
        "tags": tags,
        "confidence": round(min(best_score * CONFIDENCE_PER_KEYWORD, 1.0), 2),
    }
