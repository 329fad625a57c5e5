from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from agriguru.models import QueryIntent, ResolutionResult


# ---------- Request models ----------

class Geo(BaseModel):
    lat: Optional[float] = Field(None, description="Latitude in WGS84")
    lon: Optional[float] = Field(None, description="Longitude in WGS84")

class AskRequest(BaseModel):
    # User message
    text: str = Field(..., description="User's question or query text")
    lang: Optional[str] = Field(None, description="Language hint (e.g., 'en','hi','te'). If omitted, auto-detected.")
    geo: Optional[Geo] = Field(None, description="Optional GPS fix, used for nearby-market fallback")
    context: List[str] = Field(default_factory=list, description="Recent conversation turns, oldest first")

    # Optional domain hints; they override what the intent extractor inferred
    crop: Optional[str] = Field(None, description="Commodity/crop name (e.g., 'Tomato')")
    state: Optional[str] = None
    district: Optional[str] = None
    market: Optional[str] = None

class ResolveRequest(BaseModel):
    intent: QueryIntent = Field(..., description="Structured intent, as produced by /ask's extractor")


# ---------- Response models ----------

class AskResponse(BaseModel):
    answer: str
    lang: str = "en"                                              # final answer language code
    intent: QueryIntent
    result: ResolutionResult
    timings_ms: Dict[str, Any] = Field(default_factory=dict)
