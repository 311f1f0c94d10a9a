"""
Reports Module - Import Pro
Excel exports (ledger, stock, clients) and the finance statement PDF
"""

from datetime import datetime
from typing import List, Dict, Any

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, PatternFill
from openpyxl.utils import get_column_letter
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from utils import format_currency, format_number


TYPE_LABELS = {'INCOME': 'Entrée', 'EXPENSE': 'Sortie'}


def _default_path(prefix: str, extension: str) -> str:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"{prefix}_{timestamp}.{extension}"


def _style_header(ws, color: str):
    header_fill = PatternFill(start_color=color, end_color=color, fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF", size=12)
    center_align = Alignment(horizontal="center", vertical="center")
    for cell in ws[1]:
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = center_align


def _auto_width(ws):
    for column in ws.columns:
        max_length = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column)
        ws.column_dimensions[column[0].column_letter].width = min(max_length + 2, 50)


# ==================== EXCEL EXPORTS ====================

def export_transactions_to_excel(transactions: List[Dict[str, Any]], output_path: str = None) -> str:
    "Export the cash ledger to Excel"
    output_path = output_path or _default_path("Caisse", "xlsx")

    wb = Workbook()
    ws = wb.active
    ws.title = "Caisse"

    ws.append(['Date', 'Type', 'Catégorie', 'Description', 'Montant (FCFA)'])
    _style_header(ws, "1a237e")

    for t in transactions:
        signed = t['amount'] if t['type'] == 'INCOME' else -t['amount']
        ws.append([
            t['date'][:10],
            TYPE_LABELS.get(t['type'], t['type']),
            t['category'],
            t.get('description') or '',
            signed,
        ])

    total_row = ws.max_row + 1
    ws.cell(row=total_row, column=4, value="SOLDE").font = Font(bold=True)
    ws.cell(row=total_row, column=5,
            value=sum(t['amount'] if t['type'] == 'INCOME' else -t['amount'] for t in transactions)
            ).font = Font(bold=True)

    _auto_width(ws)
    wb.save(output_path)
    return output_path


def export_inventory_to_excel(products: List[Dict[str, Any]], output_path: str = None) -> str:
    "Export stock per product to Excel"
    output_path = output_path or _default_path("Stock", "xlsx")

    wb = Workbook()
    ws = wb.active
    ws.title = "Stock"

    ws.append(['Produit', 'Groupage', 'Fournisseur', 'Unité', 'Qté Totale', 'Qté Vendue',
               'Restant', "Prix d'Achat", 'Prix de Revient', 'Prix de Vente', 'Valeur Stock'])
    _style_header(ws, "2e7d32")

    for p in products:
        remaining = p['quantity_total'] - p['quantity_sold']
        ws.append([
            p['name'],
            p.get('groupage_name') or '',
            p.get('supplier') or '',
            p['buying_unit'],
            p['quantity_total'],
            p['quantity_sold'],
            remaining,
            p['buying_price'],
            p['cost_price'],
            p['selling_price'],
            remaining * p['selling_price'],
        ])

    _auto_width(ws)
    wb.save(output_path)
    return output_path


def export_clients_to_excel(clients: List[Dict[str, Any]], output_path: str = None) -> str:
    "Export clients list to Excel"
    output_path = output_path or _default_path("Clients", "xlsx")

    wb = Workbook()
    ws = wb.active
    ws.title = "Clients"

    ws.append(['Nom', 'Téléphone', 'WhatsApp', 'Ville', 'Adresse', 'Total Achats (FCFA)'])
    _style_header(ws, "1a237e")

    for c in clients:
        ws.append([
            c['name'],
            c['phone'],
            c.get('whatsapp') or '',
            c.get('city') or '',
            c.get('address') or '',
            c['total_spent'],
        ])

    _auto_width(ws)
    wb.save(output_path)
    return output_path


def export_audit_log_to_excel(db, output_path: str = None, action: str = None) -> str:
    """
    Audit trail of business commands (who did what, when), oldest first.
    Optionally restricted to one action (e.g. 'CREATE_ORDER').
    """
    output_path = output_path or _default_path("Journal_Audit", "xlsx")

    query = """
        SELECT
            a.timestamp as "Date et Heure",
            COALESCE(u.full_name, a.username) as "Utilisateur",
            a.action as "Action",
            a.details as "Détails"
        FROM audit_logs a
        LEFT JOIN users u ON a.user_id = u.id
    """
    params = []
    if action:
        query += " WHERE a.action = ?"
        params.append(action)
    query += " ORDER BY a.id ASC"

    df = pd.read_sql_query(query, db._get_connection(), params=params)

    with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
        df.to_excel(writer, index=False, sheet_name='Journal')

        worksheet = writer.sheets['Journal']
        for idx, col in enumerate(df.columns):
            max_len = max([len(col)] + [len(str(v)) for v in df[col]]) + 2
            worksheet.column_dimensions[get_column_letter(idx + 1)].width = min(max_len, 60)

    return output_path


# ==================== PDF ====================

def generate_finance_pdf(summary: Dict[str, Any], transactions: List[Dict[str, Any]],
                         output_path: str = None) -> str:
    """
    Finance statement: cash position, breakdowns and the ledger lines.
    `summary` is the dict returned by BusinessLogic.get_finance_summary().
    """
    output_path = output_path or _default_path("Etat_Caisse", "pdf")

    doc = SimpleDocTemplate(output_path, pagesize=A4,
                            rightMargin=1*cm, leftMargin=1*cm,
                            topMargin=1*cm, bottomMargin=1*cm)

    elements = []
    styles = getSampleStyleSheet()
    title_style = styles['Heading1']
    title_style.alignment = 1  # Center

    elements.append(Paragraph("ÉTAT DE CAISSE & PROFIT", title_style))
    elements.append(Paragraph(f"Édité le : {datetime.now().strftime('%d/%m/%Y %H:%M')}", styles['Normal']))
    elements.append(Spacer(1, 0.8*cm))

    income = summary['income_by_category']
    expense = summary['expense_by_category']
    stock = summary['stock']

    summary_data = [
        ["Rubrique", "Montant"],
        ["Total Entrées", format_currency(summary['total_income'])],
        ["   dont Ventes", format_currency(income['VENTE'])],
        ["   dont Livraisons", format_currency(income['TRANSPORT'])],
        ["   dont Autres", format_currency(income['AUTRE'])],
        ["Total Sorties", format_currency(summary['total_expense'])],
        ["   dont Achats Stock", format_currency(expense['ACHAT_STOCK'])],
        ["   dont Transport & Douane", format_currency(expense['TRANSPORT_DOUANE'])],
        ["   dont Autres", format_currency(expense['AUTRE'])],
        ["SOLDE DE CAISSE", format_currency(summary['balance'])],
        ["Unités vendues", format_number(stock['units_sold'])],
        ["Unités en stock", format_number(stock['units_in_stock'])],
    ]

    t_summary = Table(summary_data, colWidths=[10*cm, 6*cm])
    t_summary.setStyle(TableStyle([
        ('GRID', (0,0), (-1,-1), 0.5, colors.black),
        ('FONTNAME', (0,0), (-1,0), 'Helvetica-Bold'),
        ('BACKGROUND', (0,0), (-1,0), colors.lightgrey),
        ('ALIGN', (1,0), (1,-1), 'RIGHT'),
        ('VALIGN', (0,0), (-1,-1), 'MIDDLE'),
        ('FONTSIZE', (0,0), (-1,-1), 9),
        ('FONTNAME', (0,9), (-1,9), 'Helvetica-Bold'),
        ('BACKGROUND', (0,9), (-1,9), colors.lightgrey),
    ]))
    elements.append(t_summary)
    elements.append(Spacer(1, 1*cm))

    ledger_data = [["Date", "Type", "Catégorie", "Description", "Montant"]]
    for t in transactions:
        ledger_data.append([
            t['date'][:10],
            TYPE_LABELS.get(t['type'], t['type']),
            t['category'],
            Paragraph(t.get('description') or '', styles['BodyText']),
            ("+ " if t['type'] == 'INCOME' else "- ") + format_currency(t['amount']),
        ])

    t_ledger = Table(ledger_data, colWidths=[2.4*cm, 2*cm, 3*cm, 8*cm, 3.6*cm], repeatRows=1)
    ledger_styles = [
        ('GRID', (0,0), (-1,-1), 0.5, colors.black),
        ('FONTNAME', (0,0), (-1,0), 'Helvetica-Bold'),
        ('BACKGROUND', (0,0), (-1,0), colors.lightgrey),
        ('ALIGN', (-1,0), (-1,-1), 'RIGHT'),
        ('VALIGN', (0,0), (-1,-1), 'MIDDLE'),
        ('FONTSIZE', (0,0), (-1,-1), 8),
    ]
    # Incomes in green, expenses in red
    for row, t in enumerate(transactions, start=1):
        color = colors.darkgreen if t['type'] == 'INCOME' else colors.red
        ledger_styles.append(('TEXTCOLOR', (-1,row), (-1,row), color))
    t_ledger.setStyle(TableStyle(ledger_styles))

    elements.append(t_ledger)

    doc.build(elements)
    return output_path
