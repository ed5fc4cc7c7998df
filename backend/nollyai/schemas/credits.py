from pydantic import BaseModel
from typing import Optional


class CreditStatus(BaseModel):
    current_balance: int
    credits_used: int
    can_claim_free: bool
    seconds_until_reset: int
    daily_free_tokens: int
    last_claim: Optional[str] = None


class ClaimResponse(BaseModel):
    new_balance: int
    tokens_added: int


class AdminCreditRequest(BaseModel):
    action: str
    user_id: str
    amount: int


class AdminCreditResponse(BaseModel):
    user_id: str
    action: str
    amount: int
    current_balance: int
    credits_used: int


class CreditPackage(BaseModel):
    id: str
    name: str
    tokens: int
    amount_kobo: int
    currency: str = "NGN"


class PaystackVerifyRequest(BaseModel):
    reference: str


class PurchaseResponse(BaseModel):
    reference: str
    package_id: str
    tokens_added: int
    already_applied: bool
    current_balance: int


class PaystackInitializeRequest(BaseModel):
    package_id: str
    callback_url: Optional[str] = None
