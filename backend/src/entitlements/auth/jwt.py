"""JWT authentication with RS256 signing.

Callers are either staff (admin roles) or other backend services that gate
their own features through this API (the Service role). Both present an
RS256 bearer token; only the public key is needed to verify it.
"""
from datetime import datetime, timedelta
from typing import Dict, Optional

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from entitlements.config import settings


class JWTAuth:
    """JWT authentication handler with RS256 signing."""

    def __init__(self, private_key_pem: Optional[str] = None):
        """Initialize JWT auth with a configured RSA key, or an ephemeral one."""
        self.algorithm = "RS256"
        self.access_token_expire_minutes = settings.access_token_expire_minutes
        self.issuer = settings.jwt_issuer

        if private_key_pem:
            self._private_key = serialization.load_pem_private_key(private_key_pem.encode(), password=None)
        else:
            # Tokens signed with an ephemeral key do not survive a restart
            self._private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self._public_key = self._private_key.public_key()

        self._private_pem = self._private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def create_access_token(
        self,
        subject: str,
        role: str,
        expires_in: Optional[timedelta] = None,
        additional_claims: Optional[Dict] = None,
    ) -> str:
        """
        Create JWT access token.

        Args:
            subject: Staff user ID or calling service name
            role: Caller role (Super Admin, Billing Admin, Support Rep, Service)
            expires_in: Override of the configured lifetime
            additional_claims: Additional JWT claims

        Returns:
            Encoded JWT token
        """
        now = datetime.utcnow()
        expire = now + (expires_in or timedelta(minutes=self.access_token_expire_minutes))

        claims = {
            "sub": subject,
            "role": role,
            "iss": self.issuer,
            "iat": now,
            "exp": expire,
            "type": "access",
        }
        if additional_claims:
            claims.update(additional_claims)

        return jwt.encode(claims, self._private_pem, algorithm=self.algorithm)

    def verify_access_token(self, token: str) -> Dict:
        """
        Verify and decode an access token.

        Raises:
            jwt.ExpiredSignatureError: If token is expired
            jwt.InvalidTokenError: If token is invalid or not an access token
        """
        payload = jwt.decode(
            token,
            self.get_public_key_pem(),
            algorithms=[self.algorithm],
            issuer=self.issuer,
            options={"require": ["sub", "exp", "role"]},
        )

        if payload.get("type") != "access":
            raise jwt.InvalidTokenError("Not an access token")

        return payload

    def get_public_key_pem(self) -> bytes:
        """Public key in PEM format for external verification."""
        return self._public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )


# Global JWT auth instance
jwt_auth = JWTAuth(settings.jwt_private_key_pem)
