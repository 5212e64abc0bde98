from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel

from ..auth.deps import current_user
from ..auth.tokens import AuthUser
from ..observability.logging import get_logger
from ..repositories import transactions_repo, users_repo
from ..responses import ok
from ..services import email_ses, notifications, paypal, plans
from ..settings import settings
from .subscription import account_view, apply_plan, fresh_token, require_plan

router = APIRouter(tags=["payments"])
log = get_logger("payments")

PAID_PLANS = ("standard", "premium")


class CreateOrderRequest(BaseModel):
    plan: str


class CaptureOrderRequest(BaseModel):
    orderId: str | None = None


def _paypal_http_error(e: paypal.PayPalError) -> HTTPException:
    return HTTPException(status_code=e.status_code or 502, detail=str(e))


@router.post("/create-order")
def create_order(body: CreateOrderRequest, user: AuthUser = Depends(current_user)):
    plan_id = str(body.plan or "").strip().lower()
    if plan_id not in PAID_PLANS:
        raise HTTPException(status_code=400, detail='Invalid plan. Must be "standard" or "premium"')
    plan = require_plan(plan_id)

    item = users_repo.get_user_by_id(user.id)
    if not item:
        raise HTTPException(status_code=404, detail="User not found")
    if plans.rank(item.get("role")) >= plans.rank(plan_id):
        raise HTTPException(status_code=400, detail=f"You are already on the {plan_id} plan or higher")

    description = f"MeStory {plans.plan_label(plan_id)} Plan - Monthly Subscription"
    if paypal.is_mock_mode():
        order_id = paypal.mock_order_id()
        transactions_repo.create_transaction(
            user_id=user.id,
            order_id=order_id,
            amount=plan["price"],
            currency=plan["currency"],
            plan=plan_id,
            payment_method="mock",
            description=description,
            metadata={"mockMode": True},
        )
        log.info("payment_order_created", order_id=order_id, plan=plan_id, mock=True)
        return ok(
            {
                "orderId": order_id,
                "amount": plan["price"],
                "currency": plan["currency"],
                "plan": plan_id,
                "mockMode": True,
            },
            message="Mock order created (development mode)",
        )

    try:
        order = paypal.create_order(
            amount=plan["price"],
            currency=plan["currency"],
            description=description,
            return_url=f"{settings.frontend_base_url}/upgrade/success?plan={plan_id}",
            cancel_url=f"{settings.frontend_base_url}/subscription",
        )
    except paypal.PayPalError as e:
        raise _paypal_http_error(e)

    transactions_repo.create_transaction(
        user_id=user.id,
        order_id=str(order["id"]),
        amount=plan["price"],
        currency=plan["currency"],
        plan=plan_id,
        payment_method="paypal",
        description=description,
        paypal_order_id=str(order["id"]),
    )
    log.info("payment_order_created", order_id=order["id"], plan=plan_id, mock=False)
    return ok(
        {
            "orderId": order["id"],
            "approvalUrl": order.get("approvalUrl"),
            "amount": plan["price"],
            "currency": plan["currency"],
            "plan": plan_id,
            "mockMode": False,
        }
    )


@router.post("/capture-order")
def capture_order(body: CaptureOrderRequest, background_tasks: BackgroundTasks, user: AuthUser = Depends(current_user)):
    order_id = str(body.orderId or "").strip()
    if not order_id:
        raise HTTPException(status_code=400, detail="Order ID is required")

    txn = transactions_repo.get_transaction(order_id)
    if not txn:
        raise HTTPException(status_code=404, detail="Transaction not found")
    if str(txn.get("userId")) != user.id:
        raise HTTPException(status_code=403, detail="Unauthorized access to this transaction")
    if txn.get("status") == "completed":
        raise HTTPException(status_code=400, detail="Transaction already completed")

    item = users_repo.get_user_by_id(user.id)
    if not item:
        raise HTTPException(status_code=404, detail="User not found")

    if txn.get("paymentMethod") == "mock":
        capture_id = paypal.mock_capture_id()
    else:
        try:
            capture_id = paypal.capture_order(order_id).get("captureId")
        except paypal.PayPalError as e:
            transactions_repo.update_transaction(order_id, {"status": "failed", "failureReason": str(e)})
            raise _paypal_http_error(e)

    plan = require_plan(str(txn.get("plan")))
    previous = str(item.get("role") or "free")
    updated = apply_plan(item, plan)
    transactions_repo.complete_transaction(order_id, {"paypalCaptureId": capture_id} if capture_id else {})

    amount = float(txn.get("amount") or 0)
    currency = str(txn.get("currency") or "USD")
    background_tasks.add_task(
        notifications.notify_payment_received,
        user_id=user.id,
        amount=amount,
        currency=currency,
        description=str(txn.get("description") or ""),
        payment_id=order_id,
    )
    background_tasks.add_task(
        notifications.notify_subscription_change,
        user_id=user.id,
        plan=plans.plan_label(plan["id"]),
        is_upgrade=plans.is_upgrade(previous, plan["id"]),
    )
    background_tasks.add_task(
        email_ses.send_email_safe,
        **email_ses.subscription_email(
            to_email=str(item.get("email")),
            name=str(item.get("name") or ""),
            plan=plans.plan_label(plan["id"]),
            amount=amount,
            currency=currency,
        ),
    )
    log.info("payment_captured", order_id=order_id, plan=plan["id"], user_id=user.id)
    return ok(
        {
            "user": account_view(updated),
            "transaction": {"orderId": order_id, "captureId": capture_id, "amount": amount, "currency": currency},
            "token": fresh_token(updated),
        },
        message=f"Payment successful! Upgraded to {plan['id']} plan.",
    )


@router.get("/history")
def history(user: AuthUser = Depends(current_user)):
    items = transactions_repo.list_user_transactions(user.id, limit=50)
    return ok(
        {"transactions": [transactions_repo.normalize_transaction_for_api(t) for t in items], "count": len(items)}
    )
