"""
Relatórios gerenciais (vendas, estoque, financeiro)

Os agregados são calculados em Python sobre as linhas do tenant, para rodar
igual em PostgreSQL e SQLite. Cada relatório gerado é gravado em `reports`.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta

import models
from models import db, utcnow

logger = logging.getLogger(__name__)

REPORT_TYPES = ('vendas', 'estoque', 'financeiro')

REPORT_TITLES = {
    'vendas': 'Relatório de Vendas',
    'estoque': 'Relatório de Estoque',
    'financeiro': 'Relatório Financeiro',
}


class ReportError(ValueError):
    """Parâmetros inválidos para gerar um relatório"""


def _round2(value):
    return round(value or 0, 2)


def stock_status(quantity, min_stock):
    quantity = quantity or 0
    min_stock = min_stock or 0
    if quantity == 0:
        return 'SEM ESTOQUE'
    if quantity <= min_stock:
        return 'CRÍTICO'
    if quantity <= min_stock * 2:
        return 'ALERTA'
    return 'NORMAL'


STOCK_STATUS_RANK = {'SEM ESTOQUE': 1, 'CRÍTICO': 2, 'ALERTA': 3, 'NORMAL': 4}


def analyze_sales_trend(daily_totals):
    """
    Tendência a partir dos totais diários, do mais recente para o mais antigo

    Variação acima de 10% em qualquer direção muda a tendência.
    """
    if not daily_totals:
        return {'tendencia': 'estavel', 'variacao': 0, 'media_diaria': 0}

    recent = daily_totals[:7]
    average = sum(recent) / len(recent)
    first_day = recent[-1]
    last_day = recent[0]
    variation = ((last_day - first_day) / first_day) * 100 if first_day > 0 else 0

    trend = 'estavel'
    if variation > 10:
        trend = 'crescendo'
    elif variation < -10:
        trend = 'decrescendo'

    return {'tendencia': trend, 'variacao': _round2(variation), 'media_diaria': _round2(average)}


def projected_balance(accounts):
    receitas = despesas = receitas_pendentes = despesas_pendentes = 0.0
    for account in accounts:
        if account.type == 'receita':
            if account.status == 'recebido':
                receitas += account.amount
            else:
                receitas_pendentes += account.amount
        elif account.type == 'despesa':
            if account.status == 'pago':
                despesas += account.amount
            else:
                despesas_pendentes += account.amount

    return {
        'receitas': _round2(receitas),
        'despesas': _round2(despesas),
        'receitas_pendentes': _round2(receitas_pendentes),
        'despesas_pendentes': _round2(despesas_pendentes),
        'saldo_atual': _round2(receitas - despesas),
        'saldo_previsto': _round2((receitas + receitas_pendentes) - (despesas + despesas_pendentes)),
    }


def financial_indicators(balance):
    total_in = balance['receitas'] + balance['receitas_pendentes']
    total_out = balance['despesas'] + balance['despesas_pendentes']
    gross_profit = total_in - total_out

    return {
        'lucro_bruto': _round2(gross_profit),
        'margem_lucro': _round2((gross_profit / total_in) * 100) if total_in > 0 else 0,
        'eficiencia': _round2(total_in / total_out) if total_out > 0 else 0,
        'liquidez': 'positiva' if balance['saldo_atual'] > 0 else 'negativa',
    }


def sales_report(empresa_id, dias=7, now=None):
    now = now or utcnow()
    start = (now - timedelta(days=dias)).replace(hour=0, minute=0, second=0, microsecond=0)

    sales = (models.Sale.query
             .filter(models.Sale.empresa_id == empresa_id, models.Sale.sale_date >= start)
             .order_by(models.Sale.sale_date.desc())
             .all())

    by_day = defaultdict(lambda: {'total_vendas': 0, 'total_valor': 0.0})
    by_method = defaultdict(lambda: {'quantidade': 0, 'total': 0.0})
    by_category = defaultdict(lambda: {'total_itens': 0, 'total_valor': 0.0, 'vendas': set()})

    for sale in sales:
        day = by_day[sale.sale_date.date().isoformat()]
        day['total_vendas'] += 1
        day['total_valor'] += sale.total_amount

        method = by_method[sale.payment_method]
        method['quantidade'] += 1
        method['total'] += sale.total_amount

        for item in sale.items:
            category = item.product.category if item.product else None
            bucket = by_category[category or 'Geral']
            bucket['total_itens'] += item.quantity
            bucket['total_valor'] += item.total_price
            bucket['vendas'].add(sale.id)

    amounts = [sale.total_amount for sale in sales]
    total = sum(amounts)

    daily = [
        {'data': key, 'total_vendas': value['total_vendas'], 'total_valor': _round2(value['total_valor'])}
        for key, value in sorted(by_day.items(), reverse=True)
    ]

    return {
        'periodo': f'{dias} dias',
        'data_inicio': start.date().isoformat(),
        'data_fim': now.date().isoformat(),
        'detalhes': daily,
        'estatisticas': {
            'total_vendas_periodo': len(sales),
            'total_faturado': _round2(total),
            'ticket_medio': _round2(total / len(sales)) if sales else 0,
            'maior_venda': max(amounts) if amounts else 0,
            'menor_venda': min(amounts) if amounts else 0,
            'dias_com_venda': len(by_day),
        },
        'metodos_pagamento': sorted(
            [
                {
                    'payment_method': key,
                    'quantidade': value['quantidade'],
                    'total': _round2(value['total']),
                    'percentual': _round2(value['quantidade'] * 100.0 / len(sales)),
                }
                for key, value in by_method.items()
            ],
            key=lambda row: row['total'], reverse=True,
        ),
        'vendas_por_categoria': sorted(
            [
                {
                    'categoria': key,
                    'total_itens': value['total_itens'],
                    'total_valor': _round2(value['total_valor']),
                    'total_vendas': len(value['vendas']),
                }
                for key, value in by_category.items()
            ],
            key=lambda row: row['total_valor'], reverse=True,
        ),
        'tendencias': analyze_sales_trend([row['total_vendas'] for row in daily]),
        'gerado_em': now.isoformat(),
    }


def stock_report(empresa_id, now=None):
    now = now or utcnow()
    products = (models.Product.query
                .filter(models.Product.empresa_id == empresa_id, models.Product.is_active.is_(True))
                .all())

    rows = []
    for product in products:
        status = stock_status(product.stock_quantity, product.min_stock)
        rows.append({
            'id': product.id,
            'produto': product.name,
            'quantidade': product.stock_quantity or 0,
            'estoque_minimo': product.min_stock or 0,
            'preco': product.price,
            'categoria': product.category,
            'status_estoque': status,
            'valor_total_estoque': _round2((product.stock_quantity or 0) * product.price),
        })
    rows.sort(key=lambda row: (STOCK_STATUS_RANK[row['status_estoque']], row['quantidade']))

    quantities = [row['quantidade'] for row in rows]
    restock = sorted(
        [row for row in rows if row['quantidade'] <= row['estoque_minimo']],
        key=lambda row: row['estoque_minimo'] - row['quantidade'], reverse=True,
    )[:20]

    alerts = []
    for row in rows:
        if row['status_estoque'] == 'SEM ESTOQUE':
            alerts.append({'nivel': 'critico', 'mensagem': f"{row['produto']} está sem estoque",
                           'produto': row['produto'], 'acao': 'repor_urgente'})
        elif row['status_estoque'] == 'CRÍTICO':
            alerts.append({'nivel': 'alto',
                           'mensagem': f"{row['produto']} está com estoque crítico ({row['quantidade']} unidades)",
                           'produto': row['produto'], 'acao': 'repor_breve'})

    return {
        'produtos': rows,
        'estatisticas': {
            'total_produtos': len(rows),
            'total_itens_estoque': sum(quantities),
            'valor_total_estoque': _round2(sum(row['valor_total_estoque'] for row in rows)),
            'preco_medio': _round2(sum(row['preco'] for row in rows) / len(rows)) if rows else 0,
            'produtos_sem_estoque': sum(1 for q in quantities if q == 0),
            'produtos_estoque_baixo': sum(1 for row in rows if 0 < row['quantidade'] <= row['estoque_minimo']),
            'produtos_estoque_adequado': sum(1 for row in rows if row['quantidade'] > row['estoque_minimo'] * 2),
            'maior_estoque': max(quantities) if quantities else 0,
            'menor_estoque': min(quantities) if quantities else 0,
        },
        'reposicao_necessaria': [
            {
                'produto': row['produto'],
                'quantidade_atual': row['quantidade'],
                'estoque_minimo': row['estoque_minimo'],
                'quantidade_repor': row['estoque_minimo'] - row['quantidade'],
                'preco': row['preco'],
                'categoria': row['categoria'],
            }
            for row in restock
        ],
        'alertas': alerts,
        'gerado_em': now.isoformat(),
    }


def financial_report(empresa_id, mes=None, ano=None, now=None):
    now = now or utcnow()
    mes = mes or now.month
    ano = ano or now.year
    if not 1 <= mes <= 12:
        raise ReportError('Mês deve estar entre 1 e 12')

    month_start = datetime(ano, mes, 1)
    month_end = datetime(ano + 1, 1, 1) if mes == 12 else datetime(ano, mes + 1, 1)

    accounts = (models.FinancialAccount.query
                .filter(models.FinancialAccount.empresa_id == empresa_id,
                        models.FinancialAccount.due_date >= month_start.date(),
                        models.FinancialAccount.due_date < month_end.date())
                .all())
    sales = (models.Sale.query
             .filter(models.Sale.empresa_id == empresa_id,
                     models.Sale.sale_date >= month_start,
                     models.Sale.sale_date < month_end)
             .all())

    grouped = defaultdict(lambda: {'total_contas': 0, 'total_valor': 0.0})
    cash_flow = defaultdict(lambda: {'receitas': 0.0, 'despesas': 0.0})
    for account in accounts:
        group = grouped[(account.type, account.status)]
        group['total_contas'] += 1
        group['total_valor'] += account.amount

        day = cash_flow[account.due_date.day]
        if account.type == 'receita':
            day['receitas'] += account.amount
        else:
            day['despesas'] += account.amount

    amounts = [sale.total_amount for sale in sales]
    balance = projected_balance(accounts)

    return {
        'periodo': f'{mes}/{ano}',
        'financeiro': [
            {
                'tipo': tipo,
                'status': status,
                'total_contas': value['total_contas'],
                'total_valor': _round2(value['total_valor']),
                'valor_medio': _round2(value['total_valor'] / value['total_contas']),
            }
            for (tipo, status), value in sorted(grouped.items(), key=lambda kv: (kv[0][0] or '', kv[0][1] or ''))
        ],
        'vendas': {
            'total_vendas': _round2(sum(amounts)),
            'total_vendas_quantidade': len(sales),
            'ticket_medio': _round2(sum(amounts) / len(sales)) if sales else 0,
            'dias_com_venda': len({sale.sale_date.date() for sale in sales}),
            'maior_venda': max(amounts) if amounts else 0,
            'menor_venda': min(amounts) if amounts else 0,
        },
        'fluxo_caixa': [
            {
                'dia': day,
                'receitas': _round2(value['receitas']),
                'despesas': _round2(value['despesas']),
                'saldo': _round2(value['receitas'] - value['despesas']),
            }
            for day, value in sorted(cash_flow.items())
        ],
        'saldo_previsto': balance,
        'indicadores': financial_indicators(balance),
        'gerado_em': now.isoformat(),
    }


def generate_report(report_type, empresa_id, **params):
    """Gera o relatório pedido e grava um snapshot em `reports`"""
    if report_type == 'vendas':
        data = sales_report(empresa_id, **params)
    elif report_type == 'estoque':
        data = stock_report(empresa_id)
    elif report_type == 'financeiro':
        data = financial_report(empresa_id, **params)
    else:
        raise ReportError(f'Tipo de relatório inválido: {report_type}')

    snapshot = models.Report(
        empresa_id=empresa_id,
        report_type=report_type,
        title=REPORT_TITLES[report_type],
        data=data,
    )
    db.session.add(snapshot)
    db.session.commit()

    logger.info(f"{REPORT_TITLES[report_type]} gerado para empresa {empresa_id} (snapshot {snapshot.id})")
    return snapshot
