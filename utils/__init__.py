from utils.case import dict_keys_to_camel, dict_keys_to_snake, to_camel_key, to_snake_key

__all__ = [
    "dict_keys_to_camel",
    "dict_keys_to_snake",
    "to_camel_key",
    "to_snake_key",
]
