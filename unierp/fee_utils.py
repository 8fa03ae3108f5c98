from datetime import datetime
from decimal import Decimal, InvalidOperation

from .attendance_stats import as_date

FEE_TYPES = ("tuition", "library", "laboratory", "hostel", "exam", "activity", "other")
STATUSES = ("pending", "partial", "paid", "overdue", "waived")
PAYMENT_METHODS = ("cash", "card", "bank_transfer", "online")

CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("99999999.99")


def parse_amount(raw):
    """Parse user input such as "1,000", "$ 250.5" or "₹1000" into a Decimal."""
    if isinstance(raw, (int, float, Decimal)):
        cleaned = str(raw)
    elif isinstance(raw, str) or raw is None:
        # sanitize common formatting (commas, currency symbols, spaces)
        cleaned = (raw or "").replace(",", "").replace(" ", "").replace("₹", "").replace("$", "")
    else:
        raise ValueError("Invalid amount format")
    if cleaned == "":
        raise ValueError("Amount is required")
    try:
        amount = Decimal(cleaned)
        if not amount.is_finite() or amount < 0:
            raise ValueError("Amount must be a positive number")
        amount = amount.quantize(CENT)
    except InvalidOperation:
        raise ValueError("Invalid amount format")
    if amount > MAX_AMOUNT:
        raise ValueError(f"Amount cannot exceed {MAX_AMOUNT}")
    return amount


def _dec(value):
    return Decimal(str(value or 0)).quantize(CENT)


def effective_status(fee, today):
    status = fee.get("status")
    if status in ("pending", "partial") and fee.get("due_date"):
        if as_date(fee["due_date"]) < as_date(today):
            return "overdue"
    return status


def paid_so_far(fee):
    return _dec(fee.get("paid_amount"))


def outstanding(fee):
    if fee.get("status") == "waived":
        return Decimal("0.00")
    return max(_dec(fee.get("amount")) - paid_so_far(fee), Decimal("0.00"))


def totals(fees, today):
    total_amount = Decimal("0.00")
    total_paid = Decimal("0.00")
    total_pending = Decimal("0.00")
    overdue = 0
    for fee in fees:
        if fee.get("status") == "waived":
            continue
        total_amount += _dec(fee.get("amount"))
        total_paid += _dec(fee.get("paid_amount"))
        total_pending += outstanding(fee)
        if effective_status(fee, today) == "overdue":
            overdue += 1
    return {
        "total_amount": float(total_amount),
        "total_paid": float(total_paid),
        "total_pending": float(total_pending),
        "overdue_count": overdue,
    }


def new_reference(prefix, now):
    return f"{prefix}{int(now.timestamp() * 1000)}"


def apply_payment(fee, method, amount=None, now=None):
    """Column updates for paying ``amount`` (default: everything due) on ``fee``."""
    if fee.get("status") in ("paid", "waived"):
        raise ValueError(f"Fee is already {fee['status']}")
    if method not in PAYMENT_METHODS:
        raise ValueError("Invalid payment method")

    now = now or datetime.now()
    due = outstanding(fee)
    pay = due if amount is None else parse_amount(amount)
    if pay <= 0:
        raise ValueError("Payment amount must be greater than zero")
    if pay > due:
        raise ValueError(f"Payment exceeds the outstanding amount of {due}")

    paid_amount = paid_so_far(fee) + pay
    return {
        "paid_amount": paid_amount,
        "status": "paid" if paid_amount >= _dec(fee.get("amount")) else "partial",
        "payment_method": method,
        "paid_date": now.date(),
        "transaction_id": new_reference("TXN", now),
        "receipt_number": new_reference("RCP", now),
        "paid_now": pay,
    }
