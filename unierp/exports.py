import csv
import io
from datetime import date, datetime

from flask import Response
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

GRADES_HEADER = ["Course Code", "Course Name", "Assessment", "Score", "Max Score",
                 "Grade", "Date", "Instructor", "Weight", "Comments"]
ATTENDANCE_HEADER = ["Course Code", "Course Name", "Date", "Status", "Instructor",
                     "Location", "Notes", "Semester"]
FEES_HEADER = ["Student", "Fee Type", "Amount", "Paid", "Status", "Due Date",
               "Paid Date", "Receipt"]
MESSAGES_HEADER = ["From", "To", "Subject", "Type", "Priority", "Status", "Date"]


def _fmt(value):
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def csv_text(header, rows):
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(header)
    for row in rows:
        writer.writerow([_fmt(v) for v in row])
    return output.getvalue()


def csv_response(filename, header, rows):
    return Response(
        csv_text(header, rows),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


def pdf_response(filename, data):
    return Response(
        data,
        mimetype="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


def grade_rows(grades):
    for g in grades:
        yield [g.get("course_code"), g.get("course_name"), g.get("assessment"),
               g.get("score"), g.get("max_score"), g.get("letter"), g.get("graded_on"),
               g.get("instructor"), g.get("weight"), g.get("comments")]


def attendance_rows(records):
    for r in records:
        yield [r.get("course_code"), r.get("course_name"), r.get("date"), r.get("status"),
               r.get("instructor"), r.get("room"), r.get("notes"), r.get("semester")]


def fee_rows(fees):
    for f in fees:
        yield [f.get("student_name"), f.get("fee_type"), f.get("amount"), f.get("paid_amount"),
               f.get("status"), f.get("due_date"), f.get("paid_date"), f.get("receipt_number")]


def message_rows(messages):
    for m in messages:
        yield [m.get("sender_name"), m.get("recipient_name"), m.get("subject"), m.get("type"),
               m.get("priority"), "read" if m.get("is_read") else "unread", m.get("created_at")]


# ---------- PDF ----------
def report_card_pdf(student, grades, summary, term):
    buffer = io.BytesIO()
    p = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4

    margin = 20 * mm
    x = margin
    y = height - margin

    p.setFont("Helvetica-Bold", 18)
    p.drawCentredString(width / 2, y, "Academic Report Card")
    y -= 20
    p.setFont("Helvetica", 12)
    p.drawCentredString(width / 2, y, term)
    p.line(margin, y - 10, width - margin, y - 10)

    # Student info
    y -= 40
    p.setFont("Helvetica", 11)
    p.drawString(x, y, f"Name: {student.get('name') or '-'}")
    y -= 15
    p.drawString(x, y, f"Student ID: {student.get('student_code') or '-'}")
    y -= 15
    p.drawString(x, y, f"Program: {student.get('program') or '-'}")

    # Grades
    y -= 30
    p.setFont("Helvetica-Bold", 12)
    p.drawString(x, y, "Academic Performance")
    y -= 18

    p.setFont("Helvetica", 10)
    for g in grades:
        p.drawString(x + 10, y, f"{g.get('course_code')}  {g.get('assessment')}")
        p.drawRightString(
            width - margin,
            y,
            f"{g.get('score')} / {g.get('max_score')}   {g.get('letter')}"
        )
        y -= 14

        if y < 120:
            p.showPage()
            p.setFont("Helvetica", 10)
            y = height - margin

    # Summary
    y -= 20
    p.setFont("Helvetica-Bold", 12)
    p.drawString(x, y, "Result Summary")
    y -= 16
    p.setFont("Helvetica", 10)
    p.drawString(x + 10, y, f"GPA: {summary['gpa']:.2f}")
    y -= 14
    p.drawString(x + 10, y, f"Weighted GPA: {summary['weighted_gpa']:.2f}")
    y -= 14
    p.drawString(x + 10, y, f"Average Score: {summary['average_score']:.2f}%")

    p.showPage()
    p.save()
    buffer.seek(0)
    return buffer.getvalue()


def fee_receipt_pdf(fee, institution, balance):
    buffer = io.BytesIO()
    p = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4

    margin = 20 * mm
    x = margin
    y = height - margin

    # header: institution info
    p.setFont("Helvetica-Bold", 18)
    p.drawString(x, y, institution["name"])
    p.setFont("Helvetica", 10)
    if institution.get("address"):
        p.drawString(x, y - 16, "Address: " + institution["address"])
    if institution.get("phone"):
        p.drawString(x, y - 30, "Phone: " + institution["phone"])

    # receipt title + date
    p.setFont("Helvetica-Bold", 14)
    p.drawString(width - margin - 160, y, "FEE RECEIPT")
    p.setFont("Helvetica", 10)
    p.drawString(width - margin - 160, y - 16, f"Receipt No: {fee.get('receipt_number') or '-'}")
    p.drawString(width - margin - 160, y - 30, "Date: " + str(_fmt(fee.get("paid_date")) or date.today().isoformat()))

    # student details
    y -= 70
    p.setFont("Helvetica-Bold", 12)
    p.drawString(x, y, "Student Details")
    p.setFont("Helvetica", 10)
    y -= 16
    p.drawString(x, y, f"Student: {fee.get('student_name') or '-'} (ID: {fee.get('student_code') or '-'})")
    y -= 14
    p.drawString(x, y, f"Transaction ID: {fee.get('transaction_id') or '-'}")
    y -= 14
    p.drawString(x, y, f"Payment Method: {fee.get('payment_method') or '-'}")

    # payment table
    y -= 28
    p.setFont("Helvetica-Bold", 12)
    p.drawString(x, y, "Payment Details")
    y -= 16

    table_w = width - 2 * margin
    row_h = 16
    currency = institution.get("currency", "")

    p.setFont("Helvetica-Bold", 10)
    p.drawString(x + 4, y, "Particulars")
    p.drawString(x + table_w / 2, y, f"Amount ({currency})")
    y -= row_h

    p.setFont("Helvetica", 10)
    lines = [
        (f"{(fee.get('fee_type') or '').title()} - {fee.get('description') or ''}", fee.get("amount")),
        ("Paid against this fee", fee.get("paid_amount")),
        ("Total paid (all fees)", balance["total_paid"]),
    ]
    for label, amount in lines:
        p.drawString(x + 4, y, label)
        p.drawString(x + table_w / 2, y, f"{float(amount or 0):.2f}")
        y -= row_h

    # remaining box
    y -= 10
    box_h = 30 * mm
    p.setStrokeColor(colors.gray)
    p.rect(x, y - box_h + 8, 120 * mm, box_h, stroke=1, fill=0)
    p.setFont("Helvetica-Bold", 10)
    p.drawString(x + 6, y - 12, f"Remaining balance: {balance['total_pending']:.2f}")
    p.setFont("Helvetica", 9)
    p.drawString(x + 6, y - 26, "Please clear dues at the accounts office.")

    # footer
    p.setFont("Helvetica-Oblique", 9)
    p.drawString(margin, 30, "This is a computer generated receipt and does not require a physical stamp.")
    p.drawString(margin, 16, f"Issued on: {date.today().isoformat()}")

    p.showPage()
    p.save()
    buffer.seek(0)
    return buffer.getvalue()
