import os
import logging
from logging.handlers import RotatingFileHandler
import sys

from flask import Flask, request
from datetime import datetime, timezone
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from sqlalchemy import text
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from config import Config, is_production


# Configure logging with rotation
def setup_logging():
    """
    Configura o logging centralizado com rotação de arquivos

    Níveis de log:
    - DEBUG: Informação detalhada para depuração
    - INFO: Operações concluídas e fluxo normal
    - WARNING: Validações que falharam, erros esperados
    - ERROR: Erros inesperados do servidor
    - CRITICAL: Erros críticos do sistema
    """
    log_dir = 'logs'
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    log_format = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s:%(lineno)d] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # 10 MB por arquivo, mantendo 10 arquivos
    file_handler = RotatingFileHandler(
        filename=os.path.join(log_dir, 'bizflow.log'),
        maxBytes=10 * 1024 * 1024,
        backupCount=10,
        encoding='utf-8'
    )
    file_handler.setFormatter(log_format)
    file_handler.setLevel(logging.INFO)

    error_handler = RotatingFileHandler(
        filename=os.path.join(log_dir, 'bizflow_errors.log'),
        maxBytes=10 * 1024 * 1024,
        backupCount=10,
        encoding='utf-8'
    )
    error_handler.setFormatter(log_format)
    error_handler.setLevel(logging.ERROR)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(log_format)
    console_handler.setLevel(logging.INFO if is_production() else logging.DEBUG)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    root_logger.addHandler(file_handler)
    root_logger.addHandler(error_handler)
    root_logger.addHandler(console_handler)

    # Menos ruído das bibliotecas externas
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    logging.info("Sistema de logging configurado corretamente")


# Inicializar logging ao subir a aplicação
setup_logging()

# create the app
app = Flask(__name__)
app.config.from_object(Config)
app.json.ensure_ascii = False

# ProxyFix para o proxy reverso do Render (HTTPS em url_for)
app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)

# secret key obrigatória em produção
if not app.secret_key:
    if is_production():
        raise RuntimeError("SESSION_SECRET environment variable must be set in production")
    else:
        app.secret_key = "dev-secret-key-change-in-production"

# Rate limiting; RATELIMIT_ENABLED vem da configuração
limiter = Limiter(
    app=app,
    key_func=get_remote_address,
    default_limits=["1000 per hour"],
    storage_uri=app.config['RATELIMIT_STORAGE_URI']
)

# Import models and get db instance
import models  # noqa: F401,E402
from models import db  # noqa: E402

# initialize the app with the extension, flask-sqlalchemy >= 3.0.x
db.init_app(app)

# Schema criado por init_db.py / migrate_schema.py, nunca no boot da API

# Import routes after app initialization
from routes import auth, api, notifications, finance, admin  # noqa: E402
from utils import error_response, success_response  # noqa: E402

limiter.limit(lambda: app.config['LOGIN_RATE_LIMIT'])(auth.login)

# Register blueprints
app.register_blueprint(auth.bp)
app.register_blueprint(api.bp)
app.register_blueprint(notifications.bp)
app.register_blueprint(finance.bp)
app.register_blueprint(admin.bp)

if app.config['DEBUG_ENDPOINTS_ENABLED']:
    from routes import debug  # noqa: E402
    app.register_blueprint(debug.bp)
    logging.warning("Rotas de debug habilitadas em /api/debug")


@app.route('/health')
@limiter.exempt
def health():
    """Health check usado pelo Render; falha com 500 se o banco não responder"""
    payload = {
        'service': 'BizFlow API',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'version': app.config['APP_VERSION'],
        'environment': app.config['ENVIRONMENT'],
    }
    try:
        db.session.execute(text('SELECT 1'))
    except Exception as e:
        db.session.rollback()
        logging.error(f"Health check - erro no banco: {e}")
        payload.update(status='ERROR', database='disconnected')
        return payload, 500

    payload.update(status='OK', database='connected')
    return payload, 200


@app.route('/api/test')
def api_test():
    return success_response(
        data={'online': True, 'database': db.engine.dialect.name, 'authentication': 'enabled'},
        message='🚀 BizFlow API funcionando perfeitamente!'
    )


@app.errorhandler(404)
def not_found(error):
    return error_response(
        error_type='not_found',
        message='Rota não encontrada',
        status_code=404,
        path=request.path
    )


@app.errorhandler(405)
def method_not_allowed(error):
    return error_response(error_type='validation', message='Método não permitido', status_code=405)


@app.errorhandler(429)
def rate_limited(error):
    return error_response(
        error_type='permission',
        message='Muitas tentativas. Aguarde e tente novamente.',
        status_code=429
    )


@app.errorhandler(Exception)
def unhandled_error(error):
    if isinstance(error, HTTPException):
        return error_response(error_type='validation', message=error.description, status_code=error.code)

    db.session.rollback()
    return error_response(
        error_type='server',
        message='Erro interno do servidor',
        status_code=500,
        exc_info=True
    )


@app.after_request
def add_security_headers(response):
    """Cabeçalhos de segurança em produção; API nunca é cacheada"""
    if is_production():
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['X-XSS-Protection'] = '1; mode=block'
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'

    response.headers['Cache-Control'] = 'no-cache, no-store, must-revalidate'
    response.headers['Pragma'] = 'no-cache'
    response.headers['Expires'] = '0'
    return response


# Run the application in development mode
if __name__ == '__main__':
    app.run(host='0.0.0.0', port=app.config['PORT'], debug=not is_production())
