from __future__ import annotations

from pydantic import BaseModel, Field
from typing import Dict, Optional


class PayloadMappingIn(BaseModel):
    signal: Optional[str] = None
    symbol: Optional[str] = None
    price: Optional[str] = None
    time: Optional[str] = None
    interval: Optional[str] = None
    alertId: Optional[str] = None


class ApiKeyIn(BaseModel):
    name: str = ""
    strategy_id: Optional[str] = None
    payload_mapping: PayloadMappingIn = PayloadMappingIn()
    default_values: Dict[str, str] = Field(default_factory=dict)
    rate_limit_per_minute: Optional[int] = None
    is_active: bool = True


class ApiKeyPatch(BaseModel):
    name: Optional[str] = None
    strategy_id: Optional[str] = None
    payload_mapping: Optional[PayloadMappingIn] = None
    default_values: Optional[Dict[str, str]] = None
    rate_limit_per_minute: Optional[int] = None
    is_active: Optional[bool] = None


class ApiKeyOut(BaseModel):
    id: str
    name: str
    api_key: str
    strategy_id: Optional[str]
    payload_mapping: Dict[str, str]
    default_values: Dict[str, str]
    rate_limit_per_minute: int
    is_active: bool
    request_count: int
    last_used_at: Optional[str]


class WebhookSettingsIn(BaseModel):
    rate_limit_per_minute: Optional[int] = None


class IngestAccepted(BaseModel):
    accepted: bool = True
    signal_id: str
    possible_duplicate_of: Optional[str] = None
    replayed: bool = False
    trade_action: Optional[str] = None
    trade_id: Optional[str] = None


class IngestRejected(BaseModel):
    accepted: bool = False
    reason: str
    message: Optional[str] = None
