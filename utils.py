# utils.py
import os
import datetime

import pandas as pd
from reportlab.lib.pagesizes import letter
from reportlab.lib import colors
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch

from models import Invoice, PaymentMethod

PAYMENT_LABELS = {
    PaymentMethod.COD: "Cash",
    PaymentMethod.BANK_TRANSFER: "Bank transfer",
}


def format_currency(amount, symbol="₫"):
    """Whole dong with dot thousands separators, e.g. 150.000 ₫"""
    text = f"{round(amount or 0):,}".replace(",", ".")
    return f"{text} {symbol}" if symbol else text


def receipt_basename(invoice: Invoice):
    return f"order_{invoice.order_id}"


def _date_str(timestamp):
    if isinstance(timestamp, str):
        try:
            return datetime.datetime.fromisoformat(timestamp).strftime("%Y-%m-%d %H:%M:%S")
        except ValueError:
            return timestamp
    return timestamp.strftime("%Y-%m-%d %H:%M:%S")


def invoice_to_dataframe(invoice: Invoice) -> pd.DataFrame:
    """One row per invoice line."""
    return pd.DataFrame(
        [
            {
                'order_id': invoice.order_id,
                'product': line.name,
                'unit': line.unit_label,
                'quantity': line.quantity,
                'unit_price': line.unit_price,
                'subtotal': line.subtotal,
            }
            for line in invoice.lines
        ],
        columns=['order_id', 'product', 'unit', 'quantity', 'unit_price', 'subtotal'],
    )


def export_invoice_csv(invoice: Invoice, file_path: str):
    """Dump invoice lines to CSV."""
    invoice_to_dataframe(invoice).to_csv(file_path, index=False)
    return file_path


def generate_txt_receipt(invoice: Invoice, file_path: str):
    """Write a simple text receipt."""
    width = 48
    with open(file_path, 'w', encoding='utf-8') as f:
        f.write(f"Order #{invoice.order_id}\n")
        f.write(f"Date: {_date_str(invoice.timestamp)}\n")
        f.write("-" * width + "\n")
        f.write(f"{'Item':20} {'QTY':>4} {'Price':>10} {'Total':>11}\n")
        for line in invoice.lines:
            label = f"{line.name} ({line.unit_label})"
            f.write(f"{label[:20]:20} {line.quantity:4} "
                    f"{format_currency(line.unit_price, ''):>10} "
                    f"{format_currency(line.subtotal, ''):>11}\n")
        f.write("-" * width + "\n")
        f.write(f"Subtotal:  {format_currency(invoice.subtotal):>20}\n")
        f.write(f"Discount:  {format_currency(invoice.discount):>20}\n")
        f.write(f"Total:     {format_currency(invoice.total):>20}\n")
        f.write(f"Payment:   {PAYMENT_LABELS.get(invoice.payment_method, invoice.payment_method)}"
                f" ({invoice.payment_status.value})\n")
        f.write("-" * width + "\n")
        f.write("Thank you for your purchase!\n")
    return file_path


def generate_pdf_receipt(invoice: Invoice, file_path: str):
    """Generate a PDF receipt using ReportLab."""
    doc = SimpleDocTemplate(file_path, pagesize=letter)
    elements = []

    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(
        name='RightAlign',
        parent=styles['Normal'],
        alignment=2,  # right
    ))

    elements.append(Paragraph(f"Receipt - Order #{invoice.order_id}", styles['Heading1']))
    elements.append(Paragraph(f"Date: {_date_str(invoice.timestamp)}", styles['Normal']))
    elements.append(Spacer(1, 0.2 * inch))

    # Helvetica has no dong sign
    money = lambda value: format_currency(value, "VND")
    data = [["Item", "Unit", "Quantity", "Price", "Total"]]
    for line in invoice.lines:
        data.append([line.name, line.unit_label, str(line.quantity),
                     money(line.unit_price), money(line.subtotal)])

    data.append(["" for _ in range(5)])
    data.append(["Subtotal:", "", "", "", money(invoice.subtotal)])
    data.append(["Discount:", "", "", "", money(invoice.discount)])
    data.append(["Total:", "", "", "", money(invoice.total)])
    data.append(["Payment Method:",
                 PAYMENT_LABELS.get(invoice.payment_method, str(invoice.payment_method)),
                 invoice.payment_status.value, "", ""])

    table = Table(data, colWidths=[2.2 * inch, 0.8 * inch, 0.8 * inch, 1.2 * inch, 1.3 * inch])
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (4, 0), colors.grey),
        ('TEXTCOLOR', (0, 0), (4, 0), colors.whitesmoke),
        ('ALIGN', (0, 0), (4, 0), 'CENTER'),
        ('FONTNAME', (0, 0), (4, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (4, 0), 12),
        ('BOTTOMPADDING', (0, 0), (4, 0), 12),
        ('BACKGROUND', (0, 1), (4, -1), colors.white),
        ('GRID', (0, 0), (-1, -5), 1, colors.black),
        ('ALIGN', (2, 1), (4, -1), 'RIGHT'),
        ('FONTNAME', (0, -4), (4, -1), 'Helvetica-Bold'),
    ]))
    elements.append(table)
    elements.append(Spacer(1, 0.5 * inch))
    elements.append(Paragraph("Thank you for your purchase!", styles['RightAlign']))

    doc.build(elements)
    return file_path


def write_receipts(invoice: Invoice, receipt_dir: str, pdf=True):
    """Write the text receipt (and optionally the PDF) into receipt_dir."""
    os.makedirs(receipt_dir, exist_ok=True)
    base = os.path.join(receipt_dir, receipt_basename(invoice))
    paths = [generate_txt_receipt(invoice, base + ".txt")]
    if pdf:
        paths.append(generate_pdf_receipt(invoice, base + ".pdf"))
    return paths
