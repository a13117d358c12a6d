"""Request payloads accepted by the checkout API."""

from typing import List, Optional, Union

import phonenumbers
from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)

from .helpers import normalize_dates

DEFAULT_PHONE_REGION = "NG"


def normalize_phone(value: str) -> str:
    """Parse a phone number (Nigerian by default) into E.164."""
    try:
        number = phonenumbers.parse(value, DEFAULT_PHONE_REGION)
    except phonenumbers.NumberParseException:
        raise ValueError("Enter a valid phone number")
    if not phonenumbers.is_valid_number(number):
        raise ValueError("Enter a valid phone number")
    return phonenumbers.format_number(
        number, phonenumbers.PhoneNumberFormat.E164
    )


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class CustomerIn(_Payload):
    first_name: str = Field(..., alias="firstName", min_length=1, max_length=80)
    last_name: str = Field(..., alias="lastName", min_length=1, max_length=80)
    email: EmailStr
    phone: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        return normalize_phone(v)


class LineIn(_Payload):
    sku: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    selected_date: Optional[str] = Field(None, alias="selectedDate")
    selected_dates: Optional[Union[List[str], str]] = Field(
        None, alias="selectedDates"
    )

    @field_validator("quantity", mode="before")
    @classmethod
    def _whole(cls, v):
        if isinstance(v, bool):
            raise ValueError("Quantity must be a whole number")
        if isinstance(v, float) and not v.is_integer():
            raise ValueError("Quantity must be a whole number")
        return v

    @model_validator(mode="after")
    def _dates(self) -> "LineIn":
        dates = normalize_dates(self.selected_dates)
        if not dates and self.selected_date:
            dates = normalize_dates([self.selected_date])
        self.selected_dates = dates
        self.selected_date = dates[0] if len(dates) == 1 else None
        return self


class PreparePayload(_Payload):
    customer: CustomerIn
    lines: List[LineIn] = Field(..., min_length=1)
    discount_code: Optional[str] = Field(None, alias="discountCode")

    @field_validator("discount_code")
    @classmethod
    def _code(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class DiscountValidatePayload(_Payload):
    code: str = Field(..., min_length=1)
    cart_total: int = Field(..., alias="cartTotal", ge=0)
    cart_skus: Optional[List[str]] = Field(None, alias="cartSkus")
    customer_email: Optional[EmailStr] = Field(None, alias="customerEmail")


class VerifyPayload(_Payload):
    transaction_id: Union[int, str] = Field(..., alias="transactionId")
    expected_amount: Optional[int] = Field(None, alias="expectedAmount")
    expected_currency: Optional[str] = Field(None, alias="expectedCurrency")
