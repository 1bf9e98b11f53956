"""
Exportação dos relatórios gerados para Excel (openpyxl) e PDF (reportlab)
"""
import io

import openpyxl
from openpyxl.styles import Font, PatternFill, Alignment
from openpyxl.utils import get_column_letter
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle

from utils import format_currency_brl

EXPORT_FORMATS = {
    'xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'pdf': 'application/pdf',
}

# tipo -> (chave da lista, [(coluna, título)])
REPORT_TABLES = {
    'vendas': ('detalhes', [
        ('data', 'Data'),
        ('total_vendas', 'Vendas'),
        ('total_valor', 'Valor (R$)'),
    ]),
    'estoque': ('produtos', [
        ('produto', 'Produto'),
        ('categoria', 'Categoria'),
        ('quantidade', 'Quantidade'),
        ('estoque_minimo', 'Mínimo'),
        ('preco', 'Preço (R$)'),
        ('status_estoque', 'Status'),
        ('valor_total_estoque', 'Valor em Estoque (R$)'),
    ]),
    'financeiro': ('fluxo_caixa', [
        ('dia', 'Dia'),
        ('receitas', 'Receitas (R$)'),
        ('despesas', 'Despesas (R$)'),
        ('saldo', 'Saldo (R$)'),
    ]),
}

SUMMARY_KEYS = {
    'vendas': 'estatisticas',
    'estoque': 'estatisticas',
    'financeiro': 'saldo_previsto',
}


def report_rows(report_type, data):
    """Cabeçalhos e linhas da tabela principal do relatório"""
    key, columns = REPORT_TABLES[report_type]
    headers = [title for _, title in columns]
    rows = [[row.get(column) for column, _ in columns] for row in data.get(key, [])]
    return headers, rows


def report_summary(report_type, data):
    summary = data.get(SUMMARY_KEYS[report_type]) or {}
    return [(label.replace('_', ' ').capitalize(), value) for label, value in summary.items()]


def export_xlsx(snapshot):
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = snapshot.report_type.capitalize()

    headers, rows = report_rows(snapshot.report_type, snapshot.data)
    last_column = get_column_letter(max(len(headers), 2))

    ws.merge_cells(f'A1:{last_column}1')
    title_cell = ws['A1']
    title_cell.value = snapshot.title
    title_cell.font = Font(color='FFFFFF', size=16, bold=True)
    title_cell.alignment = Alignment(horizontal='center')
    title_cell.fill = PatternFill(start_color='366092', end_color='366092', fill_type='solid')

    ws['A2'] = f"Gerado em: {snapshot.data.get('gerado_em', '')}"

    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=4, column=col, value=header)
        cell.font = Font(bold=True)
        cell.fill = PatternFill(start_color='D9E2F3', end_color='D9E2F3', fill_type='solid')

    row_num = 5
    for row in rows:
        for col, value in enumerate(row, 1):
            ws.cell(row=row_num, column=col, value=value)
        row_num += 1

    summary = report_summary(snapshot.report_type, snapshot.data)
    if summary:
        row_num += 1
        ws.cell(row=row_num, column=1, value='Resumo').font = Font(bold=True)
        for label, value in summary:
            row_num += 1
            ws.cell(row=row_num, column=1, value=label)
            ws.cell(row=row_num, column=2, value=value)

    for col in range(1, len(headers) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 20

    buffer = io.BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer


def _pdf_value(value):
    if isinstance(value, float):
        return format_currency_brl(value)
    return '' if value is None else str(value)


def export_pdf(snapshot):
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4)
    styles = getSampleStyleSheet()

    title_style = ParagraphStyle(
        'ReportTitle',
        parent=styles['Heading1'],
        fontSize=18,
        textColor=colors.darkblue,
        alignment=1,
        spaceAfter=20
    )

    story = [
        Paragraph(snapshot.title, title_style),
        Paragraph(f"Gerado em: {snapshot.data.get('gerado_em', '')}", styles['Normal']),
        Spacer(1, 12),
    ]

    headers, rows = report_rows(snapshot.report_type, snapshot.data)
    table_data = [headers] + [[_pdf_value(value) for value in row] for row in rows]
    table = Table(table_data, repeatRows=1)
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#366092')),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 8),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#D9E2F3')]),
    ]))
    story.append(table)

    summary = report_summary(snapshot.report_type, snapshot.data)
    if summary:
        story.append(Spacer(1, 16))
        story.append(Paragraph('Resumo', styles['Heading2']))
        for label, value in summary:
            story.append(Paragraph(f"<b>{label}:</b> {_pdf_value(value)}", styles['Normal']))

    doc.build(story)
    buffer.seek(0)
    return buffer


def export_report(snapshot, formato):
    """BytesIO com o relatório no formato pedido ('xlsx' ou 'pdf')"""
    if formato == 'xlsx':
        return export_xlsx(snapshot)
    if formato == 'pdf':
        return export_pdf(snapshot)
    raise ValueError(f"Formato de exportação inválido: {formato}")
