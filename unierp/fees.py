import logging
from datetime import date, datetime

from flask import Blueprint, abort, current_app, request

from . import db, exports, fee_utils, mailer
from .auth import current_role, current_student_id, login_required, role_required
from .errors import ApiError, integer, ok, require_fields, text

log = logging.getLogger(__name__)

bp = Blueprint("fees", __name__, url_prefix="/api/fees")

FINANCE = ("admin", "accountant")

FEE_SELECT = """
    SELECT f.*, s.student_code, s.user_id,
           CONCAT(u.first_name, ' ', u.last_name) AS student_name, u.email
    FROM fees f
    JOIN students s ON s.id = f.student_id
    JOIN users u ON u.id = s.user_id
"""


def with_status(fees, today=None):
    today = today or date.today()
    for fee in fees:
        fee["status"] = fee_utils.effective_status(fee, today)
        fee["outstanding"] = float(fee_utils.outstanding(fee))
    return fees


def load_fee(fee_id):
    fee = db.fetch_one(FEE_SELECT + " WHERE f.id = %s", (fee_id,))
    if not fee:
        raise ApiError("Fee not found", 404)
    return fee


def check_fee_access(fee):
    if current_role() in FINANCE:
        return
    if current_role() == "student" and fee["student_id"] == current_student_id():
        return
    abort(403, description="Fee not found or you do not have permission to access it")


def parse_due_date(value):
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ApiError("Valid due date is required", 400)


def amount_or_400(raw):
    try:
        return fee_utils.parse_amount(raw)
    except ValueError as e:
        raise ApiError(str(e), 400)


def institution():
    cfg = current_app.config
    return {
        "name": cfg["INSTITUTION_NAME"],
        "address": cfg["INSTITUTION_ADDRESS"],
        "phone": cfg["INSTITUTION_PHONE"],
        "currency": cfg["CURRENCY"],
    }


# ---------- FEES MODULE ----------
@bp.route("/my")
@role_required("student")
def my_fees():
    fees = with_status(db.fetch_all(
        FEE_SELECT + " WHERE f.student_id = %s ORDER BY f.due_date", (current_student_id(),)
    ))
    return ok({"fees": fees, "totals": fee_utils.totals(fees, date.today())})


@bp.route("")
@role_required(*FINANCE)
def list_fees():
    where = []
    params = []
    for arg, column in (("student_id", "f.student_id"), ("type", "f.fee_type")):
        value = request.args.get(arg, "").strip()
        if value:
            where.append(f"{column} = %s")
            params.append(value)

    sql = FEE_SELECT
    if where:
        sql += " WHERE " + " AND ".join(where)
    fees = with_status(db.fetch_all(sql + " ORDER BY f.due_date", params))

    # status filter runs after overdue is derived
    status = request.args.get("status", "").strip()
    if status:
        fees = [f for f in fees if f["status"] == status]
    return ok(fees)


@bp.route("", methods=["POST"])
@role_required(*FINANCE)
def add_fee():
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "student_id", "fee_type", "amount", "due_date")

    if payload["fee_type"] not in fee_utils.FEE_TYPES:
        raise ApiError("Invalid fee type", 400)
    amount = amount_or_400(payload["amount"])
    due_date = parse_due_date(payload["due_date"])

    fee_id, _ = db.execute(
        "INSERT INTO fees (student_id, fee_type, amount, due_date, description) VALUES (%s,%s,%s,%s,%s)",
        (integer(payload["student_id"], "student_id"), payload["fee_type"], str(amount), due_date,
         text(payload, "description"))
    )
    return ok(load_fee(fee_id), "Fee created successfully", 201)


@bp.route("/<int:fee_id>", methods=["PUT"])
@role_required(*FINANCE)
def update_fee(fee_id):
    payload = request.get_json(silent=True) or {}
    fee = load_fee(fee_id)

    fee_type = payload.get("fee_type", fee["fee_type"])
    if fee_type not in fee_utils.FEE_TYPES:
        raise ApiError("Invalid fee type", 400)
    status = payload.get("status", fee["status"])
    if status not in fee_utils.STATUSES:
        raise ApiError("Invalid status", 400)
    amount = amount_or_400(payload["amount"]) if "amount" in payload else fee["amount"]
    due_date = parse_due_date(payload["due_date"]) if "due_date" in payload else fee["due_date"]
    description = text(payload, "description") if "description" in payload else (fee["description"] or "")

    db.execute(
        "UPDATE fees SET fee_type=%s, amount=%s, due_date=%s, status=%s, description=%s WHERE id=%s",
        (fee_type, str(amount), due_date, status, description, fee_id)
    )
    return ok(load_fee(fee_id), "Fee updated successfully")


@bp.route("/<int:fee_id>", methods=["DELETE"])
@role_required("admin")
def delete_fee(fee_id):
    _, count = db.execute("DELETE FROM fees WHERE id=%s", (fee_id,))
    if not count:
        raise ApiError("Fee not found", 404)
    return ok(message="Fee deleted successfully")


@bp.route("/<int:fee_id>/pay", methods=["POST"])
@login_required
def pay_fee(fee_id):
    payload = request.get_json(silent=True) or {}
    fee = load_fee(fee_id)
    check_fee_access(fee)

    try:
        updates = fee_utils.apply_payment(
            fee, payload.get("payment_method", "online"), payload.get("amount")
        )
    except ValueError as e:
        raise ApiError(str(e), 400)

    # only applies if no other payment landed since the fee was read
    _, count = db.execute("""
        UPDATE fees
        SET paid_amount=%s, status=%s, payment_method=%s, paid_date=%s,
            transaction_id=%s, receipt_number=%s
        WHERE id=%s AND paid_amount=%s AND status NOT IN ('paid','waived')
    """, (str(updates["paid_amount"]), updates["status"], updates["payment_method"],
          updates["paid_date"], updates["transaction_id"], updates["receipt_number"], fee_id,
          str(fee_utils.paid_so_far(fee))))
    if not count:
        raise ApiError("Fee was updated by another payment, please retry", 409)
    log.info("fee %s paid %s via %s (%s)", fee_id, updates["paid_now"],
             updates["payment_method"], updates["transaction_id"])

    receipt = {
        "receipt_number": updates["receipt_number"],
        "transaction_id": updates["transaction_id"],
        "student_name": fee["student_name"],
        "student_code": fee["student_code"],
        "fee_type": fee["fee_type"],
        "description": fee["description"],
        "amount": float(updates["paid_now"]),
        "payment_method": updates["payment_method"],
        "payment_date": updates["paid_date"],
        "status": updates["status"],
    }
    return ok(receipt, "Fee marked as paid successfully" if updates["status"] == "paid"
              else "Partial payment recorded")


@bp.route("/<int:fee_id>/receipt")
@login_required
def fee_receipt(fee_id):
    fee = load_fee(fee_id)
    check_fee_access(fee)
    if fee["status"] not in ("paid", "partial"):
        raise ApiError("Receipt available only for paid fees.", 400)

    all_fees = db.fetch_all("SELECT * FROM fees WHERE student_id=%s", (fee["student_id"],))
    balance = fee_utils.totals(all_fees, date.today())
    pdf = exports.fee_receipt_pdf(fee, institution(), balance)
    return exports.pdf_response(f"receipt_fee_{fee_id}.pdf", pdf)


@bp.route("/summary")
@role_required(*FINANCE)
def fees_summary():
    fees = db.fetch_all("SELECT * FROM fees")
    totals = fee_utils.totals(fees, date.today())
    totals["students"] = len({f["student_id"] for f in fees})
    totals["records"] = len(fees)
    return ok(totals)


def outstanding_by_student():
    fees = with_status(db.fetch_all(
        FEE_SELECT + " WHERE f.status IN ('pending','partial','overdue') ORDER BY student_name"
    ))
    dues = {}
    for fee in fees:
        row = dues.setdefault(fee["student_id"], {
            "student_id": fee["student_id"],
            "student_code": fee["student_code"],
            "student_name": fee["student_name"],
            "email": fee["email"],
            "total_due": 0.0,
            "invoices": 0,
            "overdue": 0,
        })
        row["total_due"] += fee["outstanding"]
        row["invoices"] += 1
        if fee["status"] == "overdue":
            row["overdue"] += 1
    return [d for d in dues.values() if d["total_due"] > 0]


@bp.route("/dues")
@role_required(*FINANCE)
def fees_dues():
    return ok(outstanding_by_student())


@bp.route("/send-reminders", methods=["POST"])
@role_required(*FINANCE)
def send_reminders():
    currency = current_app.config["CURRENCY"]
    sent, failed = mailer.send_bulk(
        (d["email"],
         "Fee reminder - outstanding payment",
         mailer.fee_reminder_body(d["student_name"], d["total_due"], currency),
         d["student_id"])
        for d in outstanding_by_student()
    )
    return ok({"sent": sent, "failed": failed}, f"Reminders sent: {sent}. Failed: {len(failed)}.")


@bp.route("/export")
@role_required(*FINANCE)
def fees_export():
    fees = with_status(db.fetch_all(FEE_SELECT + " ORDER BY f.due_date"))
    status = request.args.get("status")
    if status:
        fees = [f for f in fees if f["status"] == status]
    return exports.csv_response("fees_export.csv", exports.FEES_HEADER, exports.fee_rows(fees))
