"""
Cliente HTTP da API BizFlow com cache de GET e modo local

Modos:
- backend:  sempre a API; indisponibilidade gera ApiUnavailableError
- frontend: nunca a rede; respostas vêm do LocalStateProvider e do registro de demonstração
- auto:     decide uma vez no início consultando /health; uma falha de conexão
            passa o cliente para frontend até alguém chamar set_mode()
"""
import copy
import json
import logging
import os
import time

import requests

from demo_data import Endpoint, list_envelope, registry as demo_registry

logger = logging.getLogger(__name__)

MODES = ('frontend', 'backend', 'auto')
CACHE_TTL_SECONDS = 30
REQUEST_TIMEOUT = 10
HEALTH_TIMEOUT = 5

TOKEN_KEY = 'bizflow_token'
USER_KEY = 'bizflow_user'
DEMO_KEY_PREFIX = 'bizflow_demo_'


class ApiUnavailableError(Exception):
    """API inacessível em um modo que não permite resposta local"""


class LocalStore:
    """
    Chave/valor persistido em um arquivo JSON (ou só em memória quando path é None)
    """

    def __init__(self, path=None):
        self.path = path
        self._data = {}
        if path and os.path.exists(path):
            with open(path, 'r', encoding='utf-8') as f:
                self._data = json.load(f)

    def get(self, key, default=None):
        return self._data.get(key, default)

    def set(self, key, value):
        self._data[key] = value
        self._save()

    def remove(self, key):
        if self._data.pop(key, None) is not None:
            self._save()

    def keys(self, prefix=''):
        return [key for key in self._data if key.startswith(prefix)]

    def clear_demo(self):
        for key in self.keys(DEMO_KEY_PREFIX):
            del self._data[key]
        self._save()

    def _save(self):
        if not self.path:
            return
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(self._data, f, ensure_ascii=False, indent=2)


class LocalStateProvider:
    """
    Estado local do modo demonstração, gravado em chaves bizflow_demo_<endpoint>

    Devolve None quando não tem nada para o endpoint, e o cliente cai no registro
    de demonstração.
    """

    WRITABLE = (Endpoint.PRODUTOS, Endpoint.VENDAS, Endpoint.FINANCEIRO)

    def __init__(self, store):
        self.store = store

    def _key(self, endpoint):
        return DEMO_KEY_PREFIX + endpoint.name.lower()

    def provide(self, endpoint, method='GET', params=None, payload=None):
        if endpoint is Endpoint.AUTH_ME:
            user = self.store.get(USER_KEY)
            return {'success': True, 'demo': True, 'data': user} if user else None

        if method == 'GET':
            records = self.store.get(self._key(endpoint))
            if records is None:
                return None
            response = {'success': True, 'demo': True}
            response.update(list_envelope(endpoint, records))
            return response

        if method == 'POST' and endpoint in self.WRITABLE:
            records = self.store.get(self._key(endpoint))
            if records is None:
                records = demo_registry.respond(endpoint).get('data', []) if endpoint in demo_registry else []
            record = dict(payload or {})
            record['id'] = max((r.get('id') or 0 for r in records), default=0) + 1
            if endpoint is Endpoint.VENDAS:
                record.setdefault('sale_code', f"V{record['id']:04d}")
            records.append(record)
            self.store.set(self._key(endpoint), records)
            return {'success': True, 'demo': True, 'data': record, 'message': 'Registro salvo localmente'}

        return None


class ResponseCache:
    """Cache em memória com validade fixa; o relógio é injetável para testes"""

    def __init__(self, ttl=CACHE_TTL_SECONDS, clock=time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entries = {}
        self.hits = 0
        self.misses = 0

    def get(self, key):
        entry = self._entries.get(key)
        if entry is not None:
            stored_at, value = entry
            if self.clock() - stored_at < self.ttl:
                self.hits += 1
                return copy.deepcopy(value)
            del self._entries[key]
        self.misses += 1
        return None

    def set(self, key, value):
        now = self.clock()
        self.prune(now)
        self._entries[key] = (now, copy.deepcopy(value))

    def prune(self, now=None):
        """Remove entradas vencidas que ninguém voltou a ler"""
        now = self.clock() if now is None else now
        for key in [k for k, (stored_at, _) in self._entries.items() if now - stored_at >= self.ttl]:
            del self._entries[key]

    def clear(self):
        self._entries.clear()

    def __len__(self):
        return len(self._entries)

    def stats(self):
        total = self.hits + self.misses
        return {
            'hits': self.hits,
            'misses': self.misses,
            'hit_rate': round(self.hits / total * 100, 2) if total else 0.0,
            'entries': len(self._entries),
        }


class ApiClient:
    def __init__(self, base_url, mode='auto', store=None, provider=None,
                 session=None, cache=None, clock=time.monotonic):
        if mode not in MODES:
            raise ValueError(f"Modo inválido: {mode}. Use um de {', '.join(MODES)}")

        self.base_url = base_url.rstrip('/')
        self.store = store if store is not None else LocalStore()
        self.provider = provider if provider is not None else LocalStateProvider(self.store)
        self.session = session if session is not None else requests.Session()
        self.cache = cache if cache is not None else ResponseCache(clock=clock)
        self.configured_mode = mode
        self.mode = self._resolve_mode(mode)

    def _resolve_mode(self, mode):
        if mode != 'auto':
            return mode
        return 'auto' if self.check_health() else 'frontend'

    def set_mode(self, mode):
        """Troca manual de modo; única forma de voltar ao backend depois de uma queda"""
        if mode not in MODES:
            raise ValueError(f"Modo inválido: {mode}. Use um de {', '.join(MODES)}")
        self.configured_mode = mode
        self.mode = self._resolve_mode(mode)
        self.cache.clear()
        logger.info(f"Modo do cliente alterado para {self.mode}")

    def check_health(self):
        try:
            response = self.session.get(f"{self.base_url}/health", timeout=HEALTH_TIMEOUT)
            return response.ok and response.json().get('status') == 'OK'
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Health check falhou: {e}")
            return False

    # ================= AUTENTICAÇÃO =================

    @property
    def token(self):
        return self.store.get(TOKEN_KEY)

    def login(self, username, password):
        result = self.fetch_with_cache('/api/auth/login', method='POST',
                                       payload={'username': username, 'password': password})
        if result.get('success'):
            self.store.set(TOKEN_KEY, result['data']['session_token'])
            self.store.set(USER_KEY, result['data']['user'])
        return result

    def logout(self):
        try:
            if self.mode != 'frontend' and self.token:
                self.fetch_with_cache('/api/auth/logout', method='POST')
        finally:
            self.store.remove(TOKEN_KEY)
            self.store.remove(USER_KEY)
            self.cache.clear()

    def _headers(self):
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"
        return headers

    # ================= REQUISIÇÕES =================

    @staticmethod
    def cache_key(endpoint, method='GET', params=None):
        options = json.dumps({'method': method, 'params': params or {}}, sort_keys=True)
        return f"{endpoint}:{options}"

    def fetch_with_cache(self, endpoint, method='GET', params=None, payload=None):
        """
        GET com cache de 30 s; escritas invalidam o cache.

        Returns:
            dict: envelope {success, data, ...} da API ou da resposta local
        """
        method = method.upper()
        key = self.cache_key(endpoint, method, params)

        if method == 'GET':
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        else:
            self.cache.clear()

        if self.mode == 'frontend':
            result = self.local_response(endpoint, method, params, payload)
        else:
            result = self._request(endpoint, method, params, payload)

        if method == 'GET' and result.get('success'):
            self.cache.set(key, result)
        return result

    def _request(self, endpoint, method, params, payload):
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{endpoint}",
                params=params,
                json=payload,
                headers=self._headers(),
                timeout=REQUEST_TIMEOUT,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            if self.mode == 'backend':
                raise ApiUnavailableError(f"API indisponível em {self.base_url}: {e}") from e
            logger.warning(f"API indisponível, cliente passa para o modo frontend: {e}")
            self.mode = 'frontend'
            return self.local_response(endpoint, method, params, payload)

        try:
            return response.json()
        except ValueError:
            return {'success': False, 'error': f"Resposta inválida da API (HTTP {response.status_code})"}

    def local_response(self, endpoint, method='GET', params=None, payload=None):
        target = Endpoint.from_path(endpoint)
        if target is None:
            return {'success': False, 'demo': True, 'error': f"Endpoint indisponível offline: {endpoint}"}

        result = self.provider.provide(target, method, params, payload)
        if result is not None:
            return result

        if method == 'GET' and target in demo_registry:
            return demo_registry.respond(target, params)

        return {'success': False, 'demo': True, 'error': f"Operação indisponível offline: {method} {endpoint}"}
