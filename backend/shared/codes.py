"""Access code generation for teams and managers."""

import secrets
import string
from collections.abc import Collection

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
MANAGER_CODE_PREFIX = "MGR"

# A 6-character code has 36**6 (~2.2 billion) combinations, so running out
# of attempts means the caller passed a pathological existing set.
_MAX_ATTEMPTS = 100


def generate_access_code(length: int = CODE_LENGTH, prefix: str = "") -> str:
    return prefix + "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_unique_code(
    existing: Collection[str],
    length: int = CODE_LENGTH,
    prefix: str = "",
    max_attempts: int = _MAX_ATTEMPTS,
) -> str:
    """Generate a code that does not collide with any code in existing.

    Retries against the full existing set on every collision. Raises
    RuntimeError when max_attempts candidates all collide.
    """
    taken = set(existing)
    for _ in range(max_attempts):
        code = generate_access_code(length, prefix)
        if code not in taken:
            return code
    raise RuntimeError(f"Could not generate a unique access code after {max_attempts} attempts")
