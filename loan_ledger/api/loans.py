"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Request, status

from ..money import Money
from ..plans import LoanKind
from ..ledger import PaymentMode
from ..schedule import maturity_date
from ..service import LoanService
from .schemas import (
    CreateLoanRequest, PaymentRequest, PreviewRequest, SettleRequest,
    ForeclosureQuoteRequest, ForeclosureRequest, DefaultRequest,
    parse_date, summary_to_dict, preview_to_dict
)


router = APIRouter()


def get_loan_service(request: Request) -> LoanService:
    return request.app.state.loan_service


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    service: LoanService = Depends(get_loan_service)
):
    """Disburse a new loan"""
    ledger = service.create_loan(
        principal=Money(request.principal),
        kind=LoanKind.parse(request.kind),
        params=request.to_term_params(),
        loan_id=request.loan_id
    )
    return {
        "loan_id": ledger.loan_id,
        "plan": ledger.plan.to_dict(),
        "state": ledger.state.to_dict(),
        "message": "Loan created successfully"
    }


@router.get("/overdue")
async def list_overdue_loans(
    as_of: Optional[str] = None,
    service: LoanService = Depends(get_loan_service)
):
    """Open loans with overdue periods, oldest arrears first"""
    reports = service.overdue_loans(parse_date(as_of))
    return {"loans": [report.to_dict() for report in reports]}


@router.get("/collections")
async def list_collections(
    start: Optional[str] = None,
    end: Optional[str] = None,
    service: LoanService = Depends(get_loan_service)
):
    """Unpaid periods due in a window; today's round when no dates are given"""
    collections = service.collections_due(parse_date(start), parse_date(end))
    return {
        "loans": [collection.to_dict() for collection in collections],
        "total_due": sum(collection.amount_due.minor for collection in collections)
    }


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    service: LoanService = Depends(get_loan_service)
):
    """Get loan details"""
    ledger = service.get_ledger(loan_id)
    maturity = maturity_date(ledger.plan)
    return {
        "loan_id": ledger.loan_id,
        "plan": ledger.plan.to_dict(),
        "state": ledger.state.to_dict(),
        "summary": summary_to_dict(ledger.summary()),
        "maturity_date": maturity.isoformat() if maturity else None,
        "payments": [payment.to_dict() for payment in ledger.payments]
    }


@router.get("/{loan_id}/schedule")
async def get_loan_schedule(
    loan_id: str,
    periods: Optional[int] = None,
    service: LoanService = Depends(get_loan_service)
):
    """Get the due-date schedule"""
    plan = service.get_plan(loan_id)
    schedule = service.get_schedule(loan_id, periods)
    return {
        "loan_id": loan_id,
        "open_ended": not plan.kind.has_fixed_term,
        "schedule": [entry.to_dict() for entry in schedule]
    }


@router.post("/{loan_id}/payments", status_code=status.HTTP_201_CREATED)
async def record_payment(
    loan_id: str,
    request: PaymentRequest,
    service: LoanService = Depends(get_loan_service)
):
    """Record a payment"""
    receipt = service.record_payment(
        loan_id,
        Money(request.amount),
        paid_date=parse_date(request.paid_date),
        mode=PaymentMode.parse(request.mode),
        note=request.note
    )
    return receipt.to_dict()


@router.delete("/{loan_id}/payments/last")
async def undo_last_payment(
    loan_id: str,
    service: LoanService = Depends(get_loan_service)
):
    """Undo the most recently recorded payment"""
    return service.undo_last_payment(loan_id).to_dict()


@router.post("/{loan_id}/payments/preview")
async def preview_payment(
    loan_id: str,
    request: PreviewRequest,
    service: LoanService = Depends(get_loan_service)
):
    """Show the effect of a payment without recording it"""
    return preview_to_dict(service.preview_payment(loan_id, Money(request.amount)))


@router.post("/{loan_id}/settle")
async def settle_loan(
    loan_id: str,
    request: SettleRequest,
    service: LoanService = Depends(get_loan_service)
):
    """Return the principal of an interest-only loan"""
    receipt = service.settle(
        loan_id,
        amount=Money(request.amount) if request.amount is not None else None,
        paid_date=parse_date(request.paid_date),
        mode=PaymentMode.parse(request.mode),
        note=request.note
    )
    return receipt.to_dict()


@router.get("/{loan_id}/overdue")
async def get_overdue(
    loan_id: str,
    as_of: Optional[str] = None,
    service: LoanService = Depends(get_loan_service)
):
    """Classify unpaid periods as overdue or upcoming"""
    return service.classify_overdue(loan_id, parse_date(as_of)).to_dict()


@router.post("/{loan_id}/foreclosure/quote")
async def quote_foreclosure(
    loan_id: str,
    request: ForeclosureQuoteRequest,
    service: LoanService = Depends(get_loan_service)
):
    """Quote an early payoff"""
    return service.quote_foreclosure(loan_id, request.penalty_percent).to_dict()


@router.post("/{loan_id}/foreclosure")
async def commit_foreclosure(
    loan_id: str,
    request: ForeclosureRequest,
    service: LoanService = Depends(get_loan_service)
):
    """Close a loan early at the quoted amount"""
    receipt, quote = service.commit_foreclosure(
        loan_id,
        penalty_percent=request.penalty_percent,
        paid_date=parse_date(request.paid_date),
        mode=PaymentMode.parse(request.mode),
        note=request.note
    )
    return {**receipt.to_dict(), "quote": quote.to_dict()}


@router.post("/{loan_id}/default")
async def mark_defaulted(
    loan_id: str,
    request: DefaultRequest,
    service: LoanService = Depends(get_loan_service)
):
    """Set or clear the default flag"""
    state = service.mark_defaulted(loan_id, request.defaulted)
    return {"loan_id": loan_id, "state": state.to_dict()}
