"""Failure values returned alongside results by the localui core."""

from __future__ import annotations

from dataclasses import dataclass


# Tokenizer
EMPTY_TEMPLATE = "empty_template"
UNTERMINATED_QUOTE = "unterminated_quote"
# Argument sanitizer / substitutor
CONTROL_CHARACTER = "control_character"
FORBIDDEN_CHARACTER = "forbidden_character"
MISSING_ARGUMENT = "missing_argument"
# Binary resolver / executor
EMPTY_BINARY = "empty_binary"
PATH_NOT_ALLOWED = "path_not_allowed"
NOT_WHITELISTED = "not_whitelisted"
BINARY_NOT_FOUND = "binary_not_found"
SPAWN_FAILED = "spawn_failed"
# Schema normalizer
INVALID_ELEMENT = "invalid_element"
MISSING_FIELD = "missing_field"
INVALID_FIELD = "invalid_field"
DUPLICATE_ID = "duplicate_id"
UNSUPPORTED_TYPE = "unsupported_type"
INVALID_COMMAND = "invalid_command"
INVALID_GROUP = "invalid_group"
# Configuration and profiles
CONFIG_READ = "config_read"
CONFIG_PARSE = "config_parse"
INVALID_CONFIG = "invalid_config"
INVALID_PROFILE = "invalid_profile"
PROFILE_NOT_FOUND = "profile_not_found"

EXEC_KINDS = frozenset(
    {
        EMPTY_TEMPLATE,
        UNTERMINATED_QUOTE,
        CONTROL_CHARACTER,
        FORBIDDEN_CHARACTER,
        MISSING_ARGUMENT,
        EMPTY_BINARY,
        PATH_NOT_ALLOWED,
        NOT_WHITELISTED,
        BINARY_NOT_FOUND,
        SPAWN_FAILED,
    }
)


@dataclass(frozen=True)
class Failure:
    kind: str
    message: str
    subject: str = ""

    def __str__(self) -> str:
        return self.message

    def is_exec_failure(self) -> bool:
        return self.kind in EXEC_KINDS
