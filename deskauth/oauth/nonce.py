"""Random nonces for the interactive authorization flow.

Nonces serve two purposes in a flow: the secret path segment the
callback server listens on, and the state parameter that protects the
callback against CSRF. Both must come from a cryptographically secure
source.
"""

import secrets
from typing import Callable

# Bytes of entropy per nonce (hex-encoded to twice as many characters)
DEFAULT_NONCE_BYTES = 8

RandBytes = Callable[[int], bytes]


class EntropyError(BaseException):
    """The random source failed or returned short data.

    This indicates a broken execution environment rather than a
    retryable fault. Like KeyboardInterrupt it is not an Exception, so
    generic error handlers let it through.
    """

    pass


def random_hex(nbytes: int = DEFAULT_NONCE_BYTES, randbytes: RandBytes = secrets.token_bytes) -> str:
    """Generate a random hex string.

    Args:
        nbytes: Number of random bytes to draw
        randbytes: Source of cryptographically secure random bytes

    Returns:
        Lowercase hex string of 2 * nbytes characters

    Raises:
        EntropyError: If the random source fails
    """
    try:
        data = randbytes(nbytes)
    except Exception as e:
        raise EntropyError(f"Random source failed: {e}") from e

    if len(data) != nbytes:
        raise EntropyError(
            f"Random source returned {len(data)} bytes, expected {nbytes}"
        )

    return data.hex()
