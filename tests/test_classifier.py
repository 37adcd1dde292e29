from utils.classifier import suggest_category


def test_picks_category_with_most_keyword_hits():
    suggestion = suggest_category("Garbage dump near park", "Trash has not been collected")
    assert suggestion["category"] == "sanitation"
    assert suggestion["tags"] == ["garbage", "trash", "dump"]
    assert suggestion["confidence"] == 0.6


def test_unmatched_text_falls_back_to_other():
    assert suggest_category("Noisy neighbours", "") == {"category": "other", "tags": [], "confidence": 0}


def test_confidence_is_capped():
    text = "power electricity light outage pole wire"
    assert suggest_category(text)["confidence"] == 1.0


def test_ties_keep_earlier_category():
    assert suggest_category("traffic")["category"] == "roads"
