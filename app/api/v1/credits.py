from fastapi import APIRouter, Header

from app.core.credit_ledger import get_credit_ledger
from app.core.security import check_api_key, require_account_id
from app.schemas.resume import CreditsResponse

router = APIRouter()


@router.get("/credits", response_model=CreditsResponse)
async def get_credits(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
):
    check_api_key(x_api_key)
    account_id = require_account_id(x_account_id)
    account = get_credit_ledger().get_account(account_id)
    if account is None:
        return CreditsResponse(account_id=account_id, credits_left=0, is_unlimited=False)
    return CreditsResponse(
        account_id=account.account_id,
        plan_ref=account.plan_ref,
        credits_left=account.credits_left,
        is_unlimited=account.is_unlimited,
    )
