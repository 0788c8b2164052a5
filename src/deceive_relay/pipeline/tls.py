"""TLS contexts for both legs of the relay.

// [LAW:one-source-of-truth] Local CA lifecycle and chat-host leaf certs live here.
// [LAW:single-enforcer] Certificate trust boundary enforced at this single module.

The game client must trust ``ca.crt`` (or be pointed at it); the upstream leg
verifies the real chat server against the system trust store via truststore.
"""

from __future__ import annotations

import atexit
import datetime
import hashlib
import logging
import os
import re
import shutil
import ssl
import tempfile
import threading
from pathlib import Path

import truststore
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

logger = logging.getLogger(__name__)

_CA_KEY_SIZE = 2048
_LEAF_KEY_SIZE = 2048
_CA_VALIDITY_DAYS = 365 * 3
_LEAF_VALIDITY_DAYS = 365


def default_ca_dir() -> Path:
    return Path.home() / ".deceive-relay" / "ca"


def _pem_key(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


class ChatCertificateAuthority:
    """Local CA issuing the certificate the relay presents to the game client."""

    def __init__(self, ca_dir: Path | None = None) -> None:
        self._ca_dir = ca_dir or default_ca_dir()
        self._ca_dir.mkdir(parents=True, exist_ok=True)
        self._set_permissions(self._ca_dir, 0o700)
        self._ca_key, self._ca_cert = self._load_or_create_ca()
        self._contexts: dict[str, ssl.SSLContext] = {}
        self._lock = threading.Lock()
        self._tmp_dir = Path(tempfile.mkdtemp(prefix="deceive-relay-"))
        atexit.register(shutil.rmtree, str(self._tmp_dir), True)

    @property
    def ca_cert_path(self) -> Path:
        return self._ca_dir / "ca.crt"

    def server_context(self, hostname: str) -> ssl.SSLContext:
        """Server-side context presenting a leaf certificate for *hostname*."""
        with self._lock:
            ctx = self._contexts.get(hostname)
            if ctx is None:
                ctx = self._create_leaf_context(hostname)
                self._contexts[hostname] = ctx
            return ctx

    # -- private ----------------------------------------------------------

    def _load_or_create_ca(self) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
        key_path = self._ca_dir / "ca.key"
        cert_path = self.ca_cert_path
        if key_path.exists() and cert_path.exists():
            key = serialization.load_pem_private_key(key_path.read_bytes(), password=None)
            cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
            logger.info("Loaded existing relay CA from %s", self._ca_dir)
            return key, cert  # type: ignore[return-value]

        key = rsa.generate_private_key(public_exponent=65537, key_size=_CA_KEY_SIZE)
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "deceive-relay Local CA")])
        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=5))
            .not_valid_after(now + datetime.timedelta(days=_CA_VALIDITY_DAYS))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .sign(key, hashes.SHA256())
        )
        key_path.write_bytes(_pem_key(key))
        cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
        self._set_permissions(key_path, 0o600)
        self._set_permissions(cert_path, 0o644)
        logger.info("Generated new relay CA at %s", self._ca_dir)
        return key, cert

    def _create_leaf_context(self, hostname: str) -> ssl.SSLContext:
        key = rsa.generate_private_key(public_exponent=65537, key_size=_LEAF_KEY_SIZE)
        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)]))
            .issuer_name(self._ca_cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=5))
            .not_valid_after(now + datetime.timedelta(days=_LEAF_VALIDITY_DAYS))
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(hostname)]),
                critical=False,
            )
            .sign(self._ca_key, hashes.SHA256())
        )

        # ssl.SSLContext.load_cert_chain requires file paths.
        stem = _leaf_file_stem(hostname)
        cert_path = self._tmp_dir / f"{stem}.crt"
        key_path = self._tmp_dir / f"{stem}.key"
        cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
        key_path.write_bytes(_pem_key(key))
        self._set_permissions(key_path, 0o600)

        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ctx.load_cert_chain(str(cert_path), str(key_path))
        return ctx

    def _set_permissions(self, path: Path, mode: int) -> None:
        """Best-effort chmod for private key/cert artifacts."""
        try:
            os.chmod(path, mode)
        except OSError:
            logger.debug("Unable to set permissions for %s", path, exc_info=True)


def _leaf_file_stem(hostname: str) -> str:
    visible = re.sub(r"[^A-Za-z0-9_.-]", "_", hostname).strip("._-")[:48] or "host"
    digest = hashlib.sha256(hostname.encode("utf-8")).hexdigest()[:16]
    return f"{visible}-{digest}"


def upstream_context() -> ssl.SSLContext:
    """Client-side context for the real chat server, verified by the OS trust store."""
    return truststore.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
