from typing import List
from pydantic import BaseModel, Field

class CarouselSlide(BaseModel):
    headline: str = ""
    body: str = ""
    visual_suggestion: str = ""

class CarouselContent(BaseModel):
    slides: List[CarouselSlide] = Field(default_factory=list)
    hashtags: List[str] = Field(default_factory=list)
    caption: str = ""

class StoryTypeDetection(BaseModel):
    detected_type: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
