"""Encryption of secret channel config fields.

A connector's config model marks secrets by typing them ``SecretStr``. Those
fields are stored Fernet-encrypted in ``channels.config``, decrypted only
when the connector needs them and masked in every API response.
"""

from __future__ import annotations

from typing import Any, Dict, Type

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, SecretStr

from app.config import get_settings

MASK = "********"
_SEALED_PREFIX = "enc:"


def _get_fernet() -> Fernet:
    """Get a Fernet instance with the configured key."""
    key = get_settings().fernet_key
    if not key:
        raise ValueError("FERNET_KEY must be set for channel config encryption")
    return Fernet(key.encode() if isinstance(key, str) else key)


def _encrypt_value(value: str) -> str:
    return _SEALED_PREFIX + _get_fernet().encrypt(value.encode()).decode()


def _decrypt_value(value: str) -> str:
    token = value[len(_SEALED_PREFIX) :]
    try:
        return _get_fernet().decrypt(token.encode()).decode()
    except InvalidToken as e:
        raise ValueError("Stored channel secret could not be decrypted") from e


def is_sealed(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(_SEALED_PREFIX)


def secret_fields(model: Type[BaseModel]) -> list[str]:
    """Names of the fields a config model declares as secrets."""
    names = []
    for name, field in model.model_fields.items():
        annotation = field.annotation
        # Optional[SecretStr] arrives as a Union
        if annotation is SecretStr or SecretStr in getattr(annotation, "__args__", ()):
            names.append(name)
    return names


def seal_config(model: Type[BaseModel], config: Dict[str, Any]) -> Dict[str, Any]:
    """Encrypt secret fields of a plain config dict; already sealed values are kept."""
    sealed = dict(config)
    for name in secret_fields(model):
        value = sealed.get(name)
        if value is None or value == "" or is_sealed(value):
            continue
        if isinstance(value, SecretStr):
            value = value.get_secret_value()
        sealed[name] = _encrypt_value(str(value))
    return sealed


def open_config(model: Type[BaseModel], config: Dict[str, Any]) -> Dict[str, Any]:
    """Inverse of seal_config."""
    opened = dict(config)
    for name in secret_fields(model):
        value = opened.get(name)
        if is_sealed(value):
            opened[name] = _decrypt_value(value)
    return opened


def mask_config(model: Type[BaseModel], config: Dict[str, Any]) -> Dict[str, Any]:
    masked = dict(config)
    for name in secret_fields(model):
        if masked.get(name):
            masked[name] = MASK
    return masked
