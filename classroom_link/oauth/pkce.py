"""PKCE (Proof Key for Code Exchange) implementation per RFC 7636.

The verifier binds the authorization code to this client: only the party that
generated the verifier can redeem the code, so it must come from a
cryptographically secure random source.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass
from typing import Callable

from .errors import CryptoUnavailableError


# PKCE code verifier length constraints per RFC 7636
MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128
DEFAULT_VERIFIER_LENGTH = 128

# Allowed characters for code verifier (unreserved URI characters)
VERIFIER_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"

# Largest multiple of len(VERIFIER_CHARS) that fits in a byte; bytes at or
# above it are rejected so every character is equally likely.
_REJECTION_BOUND = 256 - (256 % len(VERIFIER_CHARS))

# State nonce carries the same 256 bits of entropy as a default verifier
STATE_BYTES = 32

RandomBytes = Callable[[int], bytes]


@dataclass
class PKCEPair:
    """PKCE code verifier and challenge pair.

    The verifier is a cryptographically random string sent in the token request.
    The challenge is a SHA256 hash of the verifier sent in the authorization request.

    A pair is good for one exchange: ``consume()`` returns the verifier once and
    wipes both values.
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @property
    def consumed(self) -> bool:
        return not self.verifier

    def consume(self) -> str:
        """Hand out the verifier for the token request and discard the pair.

        Raises:
            ValueError: If the verifier was already consumed
        """
        if self.consumed:
            raise ValueError("PKCE verifier has already been used")
        verifier = self.verifier
        self.verifier = ""
        self.challenge = ""
        return verifier

    def __repr__(self) -> str:
        state = "consumed" if self.consumed else "unused"
        return f"PKCEPair(method={self.method!r}, {state})"


def _secure_bytes(random_bytes: RandomBytes, count: int) -> bytes:
    """Read ``count`` bytes from the random source, failing closed."""
    try:
        data = random_bytes(count)
    except (NotImplementedError, OSError) as e:
        raise CryptoUnavailableError(f"Secure random source unavailable: {e}") from e

    if not isinstance(data, (bytes, bytearray)) or len(data) < count:
        raise CryptoUnavailableError("Secure random source returned too few bytes")
    return bytes(data)


def generate_code_verifier(
    length: int = DEFAULT_VERIFIER_LENGTH,
    random_bytes: RandomBytes = secrets.token_bytes,
) -> str:
    """Generate a cryptographically random code verifier.

    Per RFC 7636 Section 4.1, the code verifier must be:
    - Between 43 and 128 characters
    - Use only unreserved URI characters: [A-Z] / [a-z] / [0-9] / "-" / "." / "_" / "~"

    Characters are drawn by rejection sampling over raw random bytes, which
    keeps the distribution uniform across the 66-character alphabet.

    Args:
        length: Length of the verifier (default 128, must be 43-128)
        random_bytes: Secure byte source, ``secrets.token_bytes`` by default

    Returns:
        Cryptographically random code verifier string

    Raises:
        ValueError: If length is outside allowed range
        CryptoUnavailableError: If the random source fails
    """
    if length < MIN_VERIFIER_LENGTH or length > MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"Code verifier length must be between {MIN_VERIFIER_LENGTH} "
            f"and {MAX_VERIFIER_LENGTH}, got {length}"
        )

    chars: list[str] = []
    while len(chars) < length:
        # Over-read a little so one batch is almost always enough
        for byte in _secure_bytes(random_bytes, length * 2):
            if byte < _REJECTION_BOUND:
                chars.append(VERIFIER_CHARS[byte % len(VERIFIER_CHARS)])
                if len(chars) == length:
                    break

    return "".join(chars)


def generate_code_challenge(verifier: str) -> str:
    """Generate S256 code challenge from verifier.

    Per RFC 7636 Section 4.2:
    code_challenge = BASE64URL(SHA256(code_verifier))

    Args:
        verifier: The code verifier string

    Returns:
        Base64URL-encoded SHA256 hash of the verifier, without padding
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_pkce_pair(
    length: int = DEFAULT_VERIFIER_LENGTH,
    random_bytes: RandomBytes = secrets.token_bytes,
) -> PKCEPair:
    """Generate a complete PKCE pair (verifier + challenge).

    Args:
        length: Length of the code verifier (default 128)
        random_bytes: Secure byte source

    Returns:
        PKCEPair with verifier, challenge, and method (always "S256")
    """
    verifier = generate_code_verifier(length, random_bytes)
    challenge = generate_code_challenge(verifier)

    return PKCEPair(verifier=verifier, challenge=challenge, method="S256")


def generate_state(random_bytes: RandomBytes = secrets.token_bytes) -> str:
    """Generate a cryptographically random state parameter.

    The state parameter protects against CSRF attacks by ensuring
    the authorization response came from a request we initiated.

    Returns:
        43-character URL-safe random string (256 bits)
    """
    raw = _secure_bytes(random_bytes, STATE_BYTES)
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
