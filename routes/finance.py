from flask import Blueprint, request, send_file
import models
from models import db
from datetime import date
import logging

import report_export
import report_service
from routes.auth import require_auth
from utils import (error_response, success_response, log_success, get_current_tenant_id,
                   sanitize_input, validate_json_structure, validate_numeric_range, validate_integer_range)

# Configure logging
logger = logging.getLogger(__name__)

bp = Blueprint('finance', __name__, url_prefix='/api')

ACCOUNT_TYPES = [t.value for t in models.FinancialType]
ACCOUNT_STATUSES = ['pendente', 'pago', 'recebido', 'vencido', 'cancelado']


@bp.route('/financeiro')
def list_accounts():
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    query = models.FinancialAccount.query.filter_by(empresa_id=get_current_tenant_id())

    account_type = request.args.get('type')
    if account_type:
        query = query.filter_by(type=account_type)
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)

    accounts = query.order_by(models.FinancialAccount.due_date.asc(), models.FinancialAccount.id.asc()).all()
    balance = report_service.projected_balance(accounts)

    return success_response(data=[a.to_dict() for a in accounts], total=len(accounts), resumo=balance)


@bp.route('/financeiro', methods=['POST'])
def create_account():
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    data = request.get_json(silent=True)
    validation = validate_json_structure(data, ['description', 'amount', 'type'])
    if not validation['valid']:
        return error_response(error_type='validation', message=validation['message'])

    amount = validate_numeric_range(data['amount'], min_val=0.01, field_name='Valor')
    if not amount['valid']:
        return error_response(error_type='validation', message=amount['message'], field='amount')

    if data['type'] not in ACCOUNT_TYPES:
        return error_response(
            error_type='validation',
            message='Tipo deve ser receita ou despesa',
            field='type'
        )

    status = data.get('status') or 'pendente'
    if status not in ACCOUNT_STATUSES:
        return error_response(error_type='validation', message='Status inválido', field='status')

    due_date = None
    if data.get('due_date'):
        try:
            due_date = date.fromisoformat(str(data['due_date'])[:10])
        except ValueError:
            return error_response(
                error_type='validation',
                message='Data de vencimento inválida (use AAAA-MM-DD)',
                field='due_date'
            )

    account = models.FinancialAccount(
        empresa_id=get_current_tenant_id(),
        description=sanitize_input(data['description'], 200),
        amount=round(amount['value'], 2),
        type=data['type'],
        due_date=due_date,
        status=status,
    )
    db.session.add(account)
    db.session.commit()

    log_success('financial_account_created', f'Conta criada: {account.description}',
                {'account_id': account.id, 'amount': account.amount})

    return success_response(data=account.to_dict(), message='Conta registrada com sucesso!', status_code=201)


def _report_params(tipo):
    """Parâmetros do relatório a partir da query string; (params, error_response)"""
    params = {}
    if tipo == 'vendas':
        dias = validate_integer_range(request.args.get('periodo', 7), min_val=1, max_val=365, field_name='Período')
        if not dias['valid']:
            return None, error_response(error_type='validation', message=dias['message'], field='periodo')
        params['dias'] = dias['value']
    elif tipo == 'financeiro':
        for arg, label, low, high in (('mes', 'Mês', 1, 12), ('ano', 'Ano', 2000, 2100)):
            if request.args.get(arg) is None:
                continue
            check = validate_integer_range(request.args.get(arg), min_val=low, max_val=high, field_name=label)
            if not check['valid']:
                return None, error_response(error_type='validation', message=check['message'], field=arg)
            params[arg] = check['value']
    return params, None


def _report_not_found():
    return error_response(
        error_type='not_found',
        message='Relatório não encontrado',
        details=f'Tipos disponíveis: {", ".join(report_service.REPORT_TYPES)}',
        status_code=404
    )


def _generate_snapshot(tipo):
    """Snapshot gravado do relatório; (snapshot, error_response)"""
    params, error = _report_params(tipo)
    if error:
        return None, error

    try:
        return report_service.generate_report(tipo, get_current_tenant_id(), **params), None
    except report_service.ReportError as e:
        db.session.rollback()
        return None, error_response(error_type='validation', message=str(e))


@bp.route('/relatorios/<tipo>')
def get_report(tipo):
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    if tipo not in report_service.REPORT_TYPES:
        return _report_not_found()

    snapshot, error = _generate_snapshot(tipo)
    if error:
        return error

    return success_response(data=snapshot.data, report_id=snapshot.id, title=snapshot.title)


@bp.route('/relatorios/<tipo>/export')
def export_report(tipo):
    """Relatório como arquivo para download (formato=xlsx ou pdf)"""
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    if tipo not in report_service.REPORT_TYPES:
        return _report_not_found()

    formato = request.args.get('formato', 'xlsx').lower()
    if formato not in report_export.EXPORT_FORMATS:
        return error_response(
            error_type='validation',
            message=f'Formato inválido. Use: {", ".join(report_export.EXPORT_FORMATS)}',
            field='formato'
        )

    snapshot, error = _generate_snapshot(tipo)
    if error:
        return error

    try:
        buffer = report_export.export_report(snapshot, formato)
    except Exception:
        return error_response(
            error_type='server',
            message='Erro ao exportar relatório',
            status_code=500,
            exc_info=True
        )

    filename = f"relatorio_{tipo}_{snapshot.id}.{formato}"
    log_success('report_exported', f'Relatório exportado: {filename}', {'report_id': snapshot.id})
    return send_file(buffer, as_attachment=True, download_name=filename,
                     mimetype=report_export.EXPORT_FORMATS[formato])
