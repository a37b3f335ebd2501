"""Lookups of strings in a collection of strings."""


def find_string(target: str, *args: str) -> bool:
    """Return True if ``target`` equals one of ``args``."""
    return target in args


def find_string_vague(target: str, *args: str) -> bool:
    """Return True if ``target`` is a substring of one of ``args``."""
    return any(target in candidate for candidate in args)