"""
Funções utilitárias do BizFlow
Respostas padronizadas da API, logging com contexto, validações e regras de catálogo
"""
import re
import uuid
import logging
from typing import Optional, Dict, Any, List, Tuple
from datetime import datetime, timezone
from flask import jsonify, g, has_request_context

# Configure logging
logger = logging.getLogger(__name__)


DEFAULT_CATEGORY = 'Geral'

# Ordem importa: a primeira regra que casar define a categoria
CATEGORY_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (('smartphone', 'notebook'), 'Eletrônicos'),
    (('café', 'alimento'), 'Alimentação'),
    (('detergente', 'limpeza'), 'Limpeza'),
    (('água', 'bebida'), 'Bebidas'),
]


def generate_error_id() -> str:
    """
    Gera um ID único para rastreio de erros

    Returns:
        str: ID único em formato UUID curto (primeiros 8 caracteres)
    """
    return str(uuid.uuid4())[:8].upper()


def get_user_context() -> Dict[str, Any]:
    """
    Contexto do usuário autenticado na requisição atual, para logging

    Returns:
        Dict com user_id, username, role e tenant_id
    """
    if has_request_context():
        user = g.get('current_user')
        if user is not None:
            return {
                'user_id': user.id,
                'username': user.username,
                'role': user.role,
                'tenant_id': g.get('tenant_id'),
            }

    return {'user_id': None, 'username': 'anonymous', 'role': 'unknown', 'tenant_id': None}


def log_error(error_type: str, message: str, error_id: str = None,
              context: Dict[str, Any] = None, exc_info: bool = False):
    """
    Logging centralizado de erros com contexto completo

    Args:
        error_type: Tipo do erro ('validation', 'permission', 'not_found', 'server', 'business')
        message: Mensagem descritiva do erro
        error_id: ID único do erro (gerado automaticamente se omitido)
        context: Contexto adicional (sale_id, product_id, etc.)
        exc_info: Se deve incluir a exceção corrente
    """
    if error_id is None:
        error_id = generate_error_id()

    user_ctx = get_user_context()

    log_data = {
        'error_id': error_id,
        'error_type': error_type,
        'msg_detail': message,
        'user_id': user_ctx.get('user_id'),
        'username': user_ctx.get('username'),
        'role': user_ctx.get('role'),
        'tenant_id': user_ctx.get('tenant_id'),
    }

    if context:
        log_data.update(context)

    if error_type in ['validation', 'business', 'permission', 'not_found']:
        logger.warning(f"[{error_id}] {message}", extra=log_data, exc_info=exc_info)
    else:  # server errors
        logger.error(f"[{error_id}] {message}", extra=log_data, exc_info=exc_info)


def log_success(operation: str, message: str, context: Dict[str, Any] = None):
    """
    Logging de operações de negócio concluídas

    Args:
        operation: Nome da operação (ex: 'sale_registered', 'login')
        message: Mensagem descritiva
        context: Contexto adicional (sale_id, product_id, amount, etc.)
    """
    user_ctx = get_user_context()

    log_data = {
        'operation': operation,
        'msg_detail': message,
        'user_id': user_ctx.get('user_id'),
        'username': user_ctx.get('username'),
        'tenant_id': user_ctx.get('tenant_id'),
    }

    if context:
        log_data.update(context)

    logger.info(f"[SUCCESS] {operation}: {message}", extra=log_data)


def error_response(error_type: str, message: str, details: Optional[str] = None,
                   field: Optional[str] = None, status_code: int = 400,
                   log_context: Dict[str, Any] = None, exc_info: bool = False, **kwargs):
    """
    Resposta de erro padronizada da API com logging automático

    O corpo sempre segue o envelope {success: false, error, ...}

    Args:
        error_type: Tipo do erro ('validation', 'permission', 'not_found', 'server', 'business')
        message: Mensagem principal (curta e clara)
        details: Detalhes adicionais (opcional)
        field: Campo que causou o erro (opcional)
        status_code: Código HTTP (default: 400)
        log_context: Contexto extra apenas para o log
        **kwargs: Dados adicionais incluídos na resposta

    Returns:
        tuple: (jsonify response, status_code)

    Examples:
        >>> return error_response(
        ...     error_type='validation',
        ...     message='Estoque insuficiente',
        ...     details=f'Apenas {product.stock_quantity} unidades de {product.name}',
        ...     field='quantity',
        ...     log_context={'product_id': product.id}
        ... )
    """
    error_id = generate_error_id()

    log_error(
        error_type=error_type,
        message=message,
        error_id=error_id,
        context=log_context or {},
        exc_info=exc_info
    )

    response_data = {
        'success': False,
        'error': message,
        'type': error_type,
        'error_id': error_id,
        'timestamp': datetime.now(timezone.utc).isoformat()
    }

    if details:
        response_data['details'] = details

    if field:
        response_data['field'] = field

    response_data.update(kwargs)

    return jsonify(response_data), status_code


def success_response(data: Any = None, message: Optional[str] = None, status_code: int = 200, **kwargs):
    """Envelope de sucesso: {success: true, data?, message?}"""
    response_data = {'success': True}
    if data is not None:
        response_data['data'] = data
    if message:
        response_data['message'] = message
    response_data.update(kwargs)
    return jsonify(response_data), status_code


def get_current_tenant_id() -> int:
    """Tenant resolvido pelo guard de autenticação para esta requisição"""
    tenant_id = g.get('tenant_id')
    if tenant_id is None:
        raise RuntimeError('tenant não resolvido: rota sem require_auth')
    return tenant_id


def categorize_product_name(name: Optional[str]) -> Optional[str]:
    """
    Categoria sugerida pelo nome do produto, ou None se nenhuma regra casar

    >>> categorize_product_name('Smartphone Android')
    'Eletrônicos'
    >>> categorize_product_name('ÁGUA MINERAL 500ml')
    'Bebidas'
    """
    if not name:
        return None
    lowered = name.casefold()
    for keywords, category in CATEGORY_RULES:
        if any(keyword in lowered for keyword in keywords):
            return category
    return None


def format_sale_code(sale_id: int) -> str:
    """Código estável da venda: 'V' + id com pelo menos 4 dígitos"""
    return f"V{sale_id:04d}"


def format_currency_brl(amount: float) -> str:
    """
    Formata valores em reais (R$ 1.234,56)

    Args:
        amount: Valor a formatar

    Returns:
        String formatada
    """
    if amount is None:
        return 'R$ 0,00'
    formatted = f"{amount:,.2f}"
    return "R$ " + formatted.replace(',', '_').replace('.', ',').replace('_', '.')


def sanitize_input(value: str, max_length: int = 255) -> str:
    """
    Sanitiza texto antes de gravar no banco

    Args:
        value: Texto de entrada
        max_length: Tamanho máximo permitido

    Returns:
        Texto sanitizado
    """
    if not value:
        return ''

    sanitized = re.sub(r'[<>"\']', '', str(value))

    sanitized = sanitized.strip()[:max_length]

    return sanitized


def validate_email(email: str) -> Dict[str, Any]:
    """
    Valida endereço de e-mail

    Args:
        email: E-mail a validar

    Returns:
        Dict com o resultado da validação
    """
    if not email:
        return {
            'valid': False,
            'formatted': '',
            'message': 'E-mail não informado'
        }

    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'

    if re.match(pattern, email.lower()):
        return {
            'valid': True,
            'formatted': email.lower(),
            'message': 'E-mail válido'
        }
    else:
        return {
            'valid': False,
            'formatted': email,
            'message': 'Formato de e-mail inválido'
        }


def validate_numeric_range(value: Any, min_val: float = None, max_val: float = None, field_name: str = "Campo") -> Dict[str, Any]:
    """
    Valida valores numéricos dentro de um intervalo

    Args:
        value: Valor a validar
        min_val: Mínimo permitido
        max_val: Máximo permitido
        field_name: Nome do campo nas mensagens

    Returns:
        Dict com o resultado da validação
    """
    try:
        if isinstance(value, bool):
            raise TypeError(value)
        num_value = float(value)

        if min_val is not None and num_value < min_val:
            return {
                'valid': False,
                'value': num_value,
                'message': f'{field_name} deve ser maior ou igual a {min_val}'
            }

        if max_val is not None and num_value > max_val:
            return {
                'valid': False,
                'value': num_value,
                'message': f'{field_name} deve ser menor ou igual a {max_val}'
            }

        return {
            'valid': True,
            'value': num_value,
            'message': f'{field_name} válido'
        }

    except (ValueError, TypeError):
        return {
            'valid': False,
            'value': value,
            'message': f'{field_name} deve ser um número válido'
        }


def validate_integer_range(value: Any, min_val: int = None, max_val: int = None, field_name: str = "Campo") -> Dict[str, Any]:
    """
    Valida inteiros dentro de um intervalo

    Args:
        value: Valor a validar
        min_val: Mínimo permitido
        max_val: Máximo permitido
        field_name: Nome do campo nas mensagens

    Returns:
        Dict com o resultado da validação
    """
    try:
        if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
            raise ValueError(value)
        int_value = int(value)

        if min_val is not None and int_value < min_val:
            return {
                'valid': False,
                'value': int_value,
                'message': f'{field_name} deve ser maior ou igual a {min_val}'
            }

        if max_val is not None and int_value > max_val:
            return {
                'valid': False,
                'value': int_value,
                'message': f'{field_name} deve ser menor ou igual a {max_val}'
            }

        return {
            'valid': True,
            'value': int_value,
            'message': f'{field_name} válido'
        }

    except (ValueError, TypeError):
        return {
            'valid': False,
            'value': value,
            'message': f'{field_name} deve ser um número inteiro válido'
        }


def validate_json_structure(data: dict, required_fields: list, optional_fields: list = None) -> Dict[str, Any]:
    """
    Valida a estrutura do JSON recebido pelos endpoints

    Args:
        data: JSON recebido
        required_fields: Campos obrigatórios
        optional_fields: Campos opcionais; se None, campos extras são aceitos

    Returns:
        Dict com o resultado da validação
    """
    if not isinstance(data, dict):
        return {
            'valid': False,
            'message': 'Os dados devem ser um objeto JSON válido'
        }

    missing_fields = []
    for field in required_fields:
        if field not in data or data[field] is None or data[field] == '':
            missing_fields.append(field)

    if missing_fields:
        return {
            'valid': False,
            'missing': missing_fields,
            'message': f'Campos obrigatórios ausentes: {", ".join(missing_fields)}'
        }

    if optional_fields is not None:
        allowed_fields = set(required_fields) | set(optional_fields)
        unexpected_fields = [field for field in data.keys() if field not in allowed_fields]

        if unexpected_fields:
            return {
                'valid': False,
                'message': f'Campos não permitidos: {", ".join(unexpected_fields)}'
            }

    return {
        'valid': True,
        'message': 'Estrutura JSON válida'
    }
