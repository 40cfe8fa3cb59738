import re

# Livestock, farm-waste and commerce vocabulary (Indonesian).
_RECOMMENDATION_KEYWORDS = re.compile(
    r"(sapi|kambing|ayam|ternak|pakan|kompos|biogas|beli|jual|produk|rekomendasi"
    r"|limbah|sekam|ampas|kulit singkong|padi)"
)


def wants_recommendations(text: str) -> bool:
    """
    Keyword heuristic deciding whether a chat turn should trigger product retrieval.
    False negatives are acceptable; the chat answers either way.
    """
    return bool(_RECOMMENDATION_KEYWORDS.search((text or "").lower()))
