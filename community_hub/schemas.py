"""
Pydantic schemas for API request/response models
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


# ===== LISTING SCHEMAS =====

class ListingBase(BaseModel):
    """Fields a seller fills in"""
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    category: Optional[str] = None
    condition: Optional[str] = None
    location: Optional[str] = None
    images: List[str] = []

    class Config:
        from_attributes = True


class ListingCreate(ListingBase):
    """Create listing request"""
    pass


class ListingUpdate(BaseModel):
    """Partial listing update; unset fields are left alone"""
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    condition: Optional[str] = None
    location: Optional[str] = None
    images: Optional[List[str]] = None
    status: Optional[str] = None


# ===== FEED SCHEMAS =====

class PostCreate(BaseModel):
    """Create post request"""
    content: str = Field(..., min_length=1)
    image_url: Optional[str] = None


# ===== MESSAGE SCHEMAS =====

class MessageCreate(BaseModel):
    """Send message request"""
    content: str = Field(..., min_length=1)


# ===== RESPONSE SCHEMAS =====

class CacheMetaOut(BaseModel):
    """Cache metadata attached to read responses"""
    lastUpdated: str
    cacheSource: str
    debug: Optional[Dict[str, Any]] = Field(None, alias="_debug")

    class Config:
        populate_by_name = True


class ItemResponse(BaseModel):
    """Single entity with cache metadata"""
    data: Dict[str, Any]
    meta: Optional[CacheMetaOut] = None


class ListResponse(BaseModel):
    """Entity list with cache metadata"""
    data: List[Dict[str, Any]]
    count: int
    meta: CacheMetaOut
