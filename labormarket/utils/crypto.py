"""Ed25519 session token utilities using PyNaCl.

Tokens are minted by the auth service with its signing key; this service
only holds the public half and verifies them.

Token format: ``<principal_id>:<issued_at_unix>:<signature_hex>``.
"""

import time
import uuid

from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey


def generate_keypair(seed: bytes | None = None) -> tuple[str, str]:
    """Generate an Ed25519 keypair. Returns (private_key_hex, public_key_hex).

    A 32-byte ``seed`` makes the pair reproducible.
    """
    signing_key = SigningKey(seed) if seed is not None else SigningKey.generate()
    private_hex = signing_key.encode(encoder=HexEncoder).decode()
    public_hex = signing_key.verify_key.encode(encoder=HexEncoder).decode()
    return private_hex, public_hex


def build_token_message(principal_id: str, issued_at: int) -> bytes:
    return f"{principal_id}\n{issued_at}".encode()


def sign_session_token(
    private_key_hex: str, principal_id: uuid.UUID, issued_at: int | None = None
) -> str:
    """Mint a session token for a principal."""
    if issued_at is None:
        issued_at = int(time.time())
    signing_key = SigningKey(private_key_hex.encode(), encoder=HexEncoder)
    signed = signing_key.sign(
        build_token_message(str(principal_id), issued_at), encoder=HexEncoder
    )
    return f"{principal_id}:{issued_at}:{signed.signature.decode()}"


def verify_session_token(
    public_key_hex: str, token: str, max_age_seconds: int
) -> uuid.UUID | None:
    """Return the principal id carried by a valid token, otherwise None."""
    try:
        principal_str, issued_str, signature_hex = token.split(":", 2)
        principal_id = uuid.UUID(principal_str)
        issued_at = int(issued_str)
    except ValueError:
        return None

    if not is_issued_at_valid(issued_at, max_age_seconds):
        return None

    try:
        verify_key = VerifyKey(public_key_hex.encode(), encoder=HexEncoder)
        verify_key.verify(
            build_token_message(principal_str, issued_at),
            HexEncoder.decode(signature_hex.encode()),
        )
    except (BadSignatureError, ValueError, TypeError):
        return None
    return principal_id


def is_issued_at_valid(issued_at: int, max_age_seconds: int) -> bool:
    """Tokens from the future (beyond a small skew) or older than max age are rejected."""
    age = time.time() - issued_at
    return -30 <= age <= max_age_seconds
