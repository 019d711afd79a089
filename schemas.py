"""
Database Schemas for the catalog backend

Each Pydantic model corresponds to a MongoDB collection (lowercased class name).
Field names match the public JSON API, so productCode and subCategory stay camelCase.
"""
from __future__ import annotations
from pydantic import BaseModel, Field, EmailStr
from typing import List, Optional, Literal

# Auth models

class User(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)
    email: EmailStr
    password: str  # bcrypt hash, never the plain password
    role: Literal["user", "admin"] = "user"

# Catalog models

class Category(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None

class SubCategory(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: str = Field(..., min_length=1)

class Variation(BaseModel):
    size: Optional[str] = None
    color: Optional[str] = None
    price: float = Field(..., ge=0)
    discount: float = Field(0, ge=0, le=100)
    stock: int = Field(0, ge=0)

class Product(BaseModel):
    name: str = Field(..., min_length=1)
    productCode: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    images: List[str] = []
    category: str = Field(..., min_length=1)
    subCategory: Optional[str] = None
    variations: List[Variation] = []
