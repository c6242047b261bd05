"""
Pydantic schemas for payment verification and post-payment redirects
"""

from typing import Any, Dict, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VerificationResult(BaseModel):
    """
    Response of the backend verify endpoint.
    Only status == "PAID" together with success counts as a paid order.
    """

    model_config = ConfigDict(extra="allow")

    success: bool = False
    status: str = "unknown"
    order: Optional[Dict[str, Any]] = None

    @field_validator("success", mode="before")
    @classmethod
    def null_success_is_false(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("status", mode="before")
    @classmethod
    def null_status_is_unknown(cls, v: Any) -> Any:
        """The backend sends null for orders it has no status for."""
        return "unknown" if v is None else v

    @property
    def is_paid(self) -> bool:
        return self.success and self.status == "PAID"


class Redirect(BaseModel):
    """
    Navigation decision: target path, query parameters and the out-of-band
    state handed to the next view.
    """

    path: str
    params: Dict[str, str] = Field(default_factory=dict)
    state: Dict[str, Any] = Field(default_factory=dict)
    replace: bool = True

    @property
    def url(self) -> str:
        if not self.params:
            return self.path
        return f"{self.path}?{urlencode(self.params)}"


class PaymentReturnResponse(BaseModel):
    """
    Response returned from the JSON payment-return endpoint
    """

    status: str
    order_id: Optional[str] = None
    redirect_url: str
    replace: bool = True
    continue_url: Optional[str] = None
    continue_label: Optional[str] = None
    state: Dict[str, Any] = Field(default_factory=dict)
