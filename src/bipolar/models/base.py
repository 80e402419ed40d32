# Copyright (c) Syntropy Systems
"""Shared Pydantic model helpers for bipolar."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict


class BipolarBaseModel(BaseModel):
    """Base model with shared config for bipolar schemas."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
    )
