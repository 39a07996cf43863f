"""
Cifragem reversível das senhas guardadas nos Compute Resources.

Os valores são gravados como "enc:<tipo>:<ciphertext>". O tipo 'fernet'
usa a chave COMPUTE_ENCRYPTION_KEY; sem chave configurada cai no tipo
'identity' (texto puro), útil em desenvolvimento e testes.
"""
import logging

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.types import Text, TypeDecorator

from nubecompute.exceptions import EncryptionError

logger = logging.getLogger(__name__)


class IdentityKey:
    TYPE = 'identity'

    def encrypt(self, plaintext):
        return plaintext

    def decrypt(self, ciphertext):
        return ciphertext


class FernetKey:
    TYPE = 'fernet'

    def __init__(self, secret):
        self._fernet = Fernet(secret)

    def encrypt(self, plaintext):
        return self._fernet.encrypt(plaintext.encode('utf-8')).decode('utf-8')

    def decrypt(self, ciphertext):
        return self._fernet.decrypt(ciphertext.encode('utf-8')).decode('utf-8')


_keys = [IdentityKey()]


def init_encryption(app):
    """Configura as chaves a partir do app. A primeira é usada para cifrar."""
    global _keys
    secret = app.config.get('COMPUTE_ENCRYPTION_KEY')
    if secret:
        try:
            _keys = [FernetKey(secret), IdentityKey()]
        except ValueError as e:
            raise EncryptionError("COMPUTE_ENCRYPTION_KEY inválida: %s", e) from e
    else:
        logger.warning("COMPUTE_ENCRYPTION_KEY não definida. Senhas serão gravadas sem cifra.")
        _keys = [IdentityKey()]


def encrypt(plaintext):
    key = _keys[0]
    return f"enc:{key.TYPE}:{key.encrypt(plaintext)}"


def decrypt(packed):
    if not packed.startswith('enc:'):
        # Valor legado gravado antes da cifragem
        return packed
    _, key_type, ciphertext = packed.split(':', 2)
    for key in _keys:
        if key.TYPE != key_type:
            continue
        try:
            return key.decrypt(ciphertext)
        except InvalidToken:
            logger.debug(f"Chave {key.TYPE} não conseguiu decifrar o valor")
    raise EncryptionError("Nenhuma chave conseguiu decifrar o valor (%s)", key_type)


class EncryptedString(TypeDecorator):
    """Coluna de texto cifrada na gravação e decifrada na leitura."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return encrypt(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return decrypt(value)
