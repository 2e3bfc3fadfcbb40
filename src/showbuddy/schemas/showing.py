"""
Pydantic schemas for Showing resources
"""
from datetime import date, datetime, time
from typing import List
from pydantic import BaseModel, ConfigDict, Field


class ShowingCreate(BaseModel):
    movie_id: str = Field(..., min_length=1, max_length=64)
    movie_title: str = Field(..., min_length=1, max_length=300)
    theater_id: str = Field(..., min_length=1, max_length=64)
    theater_name: str = Field(..., min_length=1, max_length=300)
    show_date: date
    show_time: time
    seat_map_template: str = Field("standard", max_length=50)


class ShowingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    movie_id: str
    movie_title: str
    theater_id: str
    theater_name: str
    show_date: date
    show_time: time
    seat_map_template: str
    starts_at: datetime
    created_at: datetime


class ShowingListResponse(BaseModel):
    showings: List[ShowingResponse]
    total: int
    page: int
    page_size: int
