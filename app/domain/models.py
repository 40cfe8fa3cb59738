from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict

# Unit-norm float vector. Never mutated after creation.
EmbeddingVector = List[float]


class EmbeddingKind(str, Enum):
    """Prefix convention of the E5 family: queries and passages are embedded differently."""
    QUERY = "query"
    PASSAGE = "passage"


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChatTurn(BaseModel):
    """Una vuelta de la conversación tal como la envía el cliente."""
    model_config = ConfigDict(frozen=True)

    role: ChatRole
    content: str


class ChatTranscript(BaseModel):
    """Full ordered history; the service is stateless so it is resent on every request."""
    messages: List[ChatTurn] = Field(..., min_length=1)

    def last_user_text(self) -> Optional[str]:
        for turn in reversed(self.messages):
            if turn.role == ChatRole.USER:
                return turn.content
        return None


class SearchFilters(BaseModel):
    """Conjunction of optional metadata filters applied inside the vector search stage."""
    species: Optional[str] = None
    use_case: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.species or self.use_case or self.tags or self.categories)


class SearchHit(BaseModel):
    """Display-safe projection of a product returned by the vector search."""
    id: str
    title: str
    short_desc: str = ""
    slug: str = Field(..., min_length=1)
    url: str
    image: Optional[str] = None
    rating: Optional[float] = None
    stock: Optional[int] = None
    score: float
    badges: List[str] = Field(default_factory=list)
    species: List[str] = Field(default_factory=list)
    price: Optional[float] = None
    unit: Optional[str] = None


class ProductCard(BaseModel):
    """Payload sent to the chat UI in the `products` event."""
    id: str
    slug: str
    title: str
    short_desc: str
    image: Optional[str] = None
    stock: Optional[int] = None
    score: Optional[float] = None
    species: List[str] = Field(default_factory=list)
    price: Optional[float] = None
    unit: Optional[str] = None
    url: str


class ServerSentEvent(BaseModel):
    """A single frame of the push stream. `comment` frames are keep-alive pings."""
    model_config = ConfigDict(frozen=True)

    data: Optional[str] = None
    event: Optional[str] = None
    comment: Optional[str] = None


class BackfillReport(BaseModel):
    total: int = 0
    processed: int = 0
    updated: int = 0
    dry_run: bool = False
    failed_ids: List[str] = Field(default_factory=list)
