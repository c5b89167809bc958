"""
Key-case conversion shared by the metadata normalizer (camelCase in, snake_case
internally) and the API layer (snake_case out as camelCase).
"""
from typing import Any

from pydantic.alias_generators import to_camel, to_snake


def to_camel_key(s: str) -> str:
    """snake_case -> camelCase (first letter lower)."""
    return to_camel(s)


def to_snake_key(s: str) -> str:
    """
    camelCase, snake_case or kebab-case -> snake_case.
    Client metadata keys arrive in all three spellings, sometimes padded.
    """
    return to_snake(s.strip().replace("-", "_"))


def dict_keys_to_camel(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {to_camel_key(k): dict_keys_to_camel(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [dict_keys_to_camel(x) for x in obj]
    return obj


def dict_keys_to_snake(obj: Any) -> Any:
    """Recursively snake_case dict keys; non-string keys are left as they are."""
    if isinstance(obj, dict):
        return {
            (to_snake_key(k) if isinstance(k, str) else k): dict_keys_to_snake(v)
            for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [dict_keys_to_snake(x) for x in obj]
    return obj
