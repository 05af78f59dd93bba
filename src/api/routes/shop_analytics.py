"""
Shop Analytics API Routes.

Public storefront endpoint for recording product views.

Business misses (duplicate view, unknown product, unknown channel,
tracking disabled) are reported as success=false, never as HTTP errors.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Response
from pydantic import BaseModel, ConfigDict, Field

from src.api.deps import get_channel_id, get_clock, get_rules, get_store
from src.components.analytics import (
    AnalyticsStorePort,
    TimePort,
    TrackViewInput,
    run_track_view,
)
from src.rules.models import Rules

logger = logging.getLogger(__name__)

router = APIRouter()

SESSION_TOKEN_HEADER = "X-Session-Token"


# --- Request/Response Models ---


class TrackProductViewRequest(BaseModel):
    """Product view request."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(
        ..., min_length=1, max_length=100, alias="productId", description="Product ID"
    )


class TrackProductViewResponse(BaseModel):
    """Tracking response."""

    success: bool


# --- Routes ---


@router.post("/track-product-view", response_model=TrackProductViewResponse)
def track_product_view(
    body: TrackProductViewRequest,
    response: Response,
    channel_id: str = Depends(get_channel_id),
    session_token: Annotated[str | None, Header(alias=SESSION_TOKEN_HEADER)] = None,
    customer_id: Annotated[str | None, Header(alias="X-Customer-Id")] = None,
    store: AnalyticsStorePort = Depends(get_store),
    clock: TimePort = Depends(get_clock),
    rules: Rules = Depends(get_rules),
) -> TrackProductViewResponse:
    """
    Record one product view for the caller's session.

    When the request carries no session token, one is synthesized and
    echoed back in the X-Session-Token response header so the storefront
    can reuse it.
    """
    result = run_track_view(
        TrackViewInput(
            channel_id=channel_id,
            product_id=body.product_id,
            session_token=session_token or None,
            customer_id=customer_id or None,
        ),
        store=store,
        time_port=clock,
        rules=rules.analytics,
    )

    if result.session_token:
        response.headers[SESSION_TOKEN_HEADER] = result.session_token

    if not result.recorded:
        logger.debug("Product view not recorded: %s", result.reason)

    return TrackProductViewResponse(success=result.recorded)
