from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict

from app.domain.models import ProductCard, SearchFilters, SearchHit


class RecommendationRequest(BaseModel):
    """
    Cuerpo de `/chat/recommendations`: texto directo en `query` o el historial
    en `messages` (se usa el contenido del último mensaje).
    """
    query: Optional[str] = None
    messages: Optional[List[Dict[str, Any]]] = None

    model_config = ConfigDict(extra="ignore")

    def resolve_text(self) -> str:
        if isinstance(self.query, str):
            return self.query
        if self.messages:
            return str(self.messages[-1].get("content") or "")
        return ""


class RecommendationConfig(BaseModel):
    limit: int
    num_candidates: int
    min_score: float


class RecommendationMeta(BaseModel):
    intent: bool
    took_ms: int
    config: Optional[RecommendationConfig] = None


class RecommendationResponse(BaseModel):
    products: List[ProductCard]
    meta: RecommendationMeta


class ProductSearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    species: Optional[str] = None
    use_case: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    limit: Optional[int] = Field(default=None, ge=1, le=50)
    num_candidates: Optional[int] = Field(default=None, ge=1, le=1000)
    min_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    def to_filters(self) -> SearchFilters:
        return SearchFilters(species=self.species, use_case=self.use_case, tags=self.tags, categories=self.categories)


class ProductSearchResponse(BaseModel):
    hits: List[SearchHit]
    took_ms: int
