"""
Pydantic schemas for request bodies.

Fields are optional at this layer so missing values reach the service and
come back as a 400 with the same message on every backend.
"""

from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)


class CreateItemRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    status: Optional[str] = Field(default=None, max_length=50)
    category: Optional[str] = Field(default=None, max_length=100)
    quantity: Optional[Union[int, float]] = None


class UpdateItemRequest(BaseModel):
    """Partial item; only the keys the client sent are applied."""

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    status: Optional[str] = Field(default=None, max_length=50)
    category: Optional[str] = Field(default=None, max_length=100)
    quantity: Optional[Union[int, float]] = None
