"""Automatic certificate management over ACME HTTP-01.

The manager owns three pieces of state:

- the cache directory holding the account key and one PEM bundle (private
  key followed by the certificate chain) per domain;
- the key authorizations of HTTP-01 challenges currently being validated,
  served by the port 80 listener;
- one server SSLContext per domain, selected from the SNI name during the
  handshake on the port 443 listener.

Issuance is driven by `ensure_certificates`, which must only run once the
port 80 listener is accepting connections.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import ssl
import threading
from typing import Iterable, Optional

import josepy as jose
from acme import challenges, client, crypto_util, errors, messages
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .cache import DirCache

logger = logging.getLogger(__name__)

USER_AGENT = "lnurlp-server"
DEFAULT_RENEW_BEFORE = datetime.timedelta(days=30)
DEFAULT_RENEWAL_INTERVAL = 12 * 3600.0
MIN_RETRY_DELAY = 60.0
MAX_RETRY_DELAY = 600.0
ORDER_TIMEOUT = datetime.timedelta(seconds=180)


def _server_context() -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context


def certificate_not_after(bundle_pem: bytes) -> datetime.datetime:
    """Return the expiry of the first (leaf) certificate in a PEM bundle."""
    cert = x509.load_pem_x509_certificate(bundle_pem)
    return cert.not_valid_after_utc


def _private_key_pem(key: "ec.EllipticCurvePrivateKey | rsa.RSAPrivateKey") -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


class CertificateManager:
    """Obtains, caches and renews certificates for a fixed set of domains."""

    def __init__(
        self,
        domains: Iterable[str],
        cache: DirCache,
        directory_url: str,
        email: str = "",
        renew_before: datetime.timedelta = DEFAULT_RENEW_BEFORE,
        min_retry_delay: float = MIN_RETRY_DELAY,
        max_retry_delay: float = MAX_RETRY_DELAY,
    ) -> None:
        self.domains = tuple(d.lower().rstrip(".") for d in domains)
        self.cache = cache
        self.directory_url = directory_url
        self.email = email
        self.renew_before = renew_before
        self.min_retry_delay = min_retry_delay
        self.max_retry_delay = max_retry_delay

        self._contexts: dict[str, ssl.SSLContext] = {}
        self._expiry: dict[str, datetime.datetime] = {}
        self._tokens: dict[str, str] = {}
        self._tokens_lock = threading.Lock()
        self._issue_lock = asyncio.Lock()

    # Host policy

    def allows(self, domain: str) -> bool:
        return domain.lower().rstrip(".") in self.domains

    # Port 80: HTTP-01 challenge responses

    def http01_response(self, token: str) -> Optional[str]:
        """Return the key authorization for a pending challenge token."""
        with self._tokens_lock:
            return self._tokens.get(token)

    def _add_token(self, token: str, key_authorization: str) -> None:
        with self._tokens_lock:
            self._tokens[token] = key_authorization

    def _remove_token(self, token: str) -> None:
        with self._tokens_lock:
            self._tokens.pop(token, None)

    # Port 443: TLS configuration

    def ssl_context(self) -> ssl.SSLContext:
        """Return the listener context; per-domain contexts are picked by SNI."""
        context = _server_context()
        context.sni_callback = self._select_context
        return context

    def _select_context(
        self,
        ssl_object: "ssl.SSLObject | ssl.SSLSocket",
        server_name: Optional[str],
        context: ssl.SSLContext,
    ) -> Optional[int]:
        if not server_name:
            logger.debug("TLS handshake without server name rejected")
            return ssl.ALERT_DESCRIPTION_UNRECOGNIZED_NAME
        name = server_name.lower().rstrip(".")
        if name not in self.domains:
            logger.debug("TLS handshake for %s rejected by host policy", name)
            return ssl.ALERT_DESCRIPTION_UNRECOGNIZED_NAME
        domain_context = self._contexts.get(name)
        if domain_context is None:
            logger.warning("No certificate available yet for %s", name)
            return ssl.ALERT_DESCRIPTION_UNRECOGNIZED_NAME
        ssl_object.context = domain_context
        return None

    def _install(self, domain: str, bundle_pem: bytes) -> None:
        context = _server_context()
        context.load_cert_chain(self.cache.path(domain))
        self._expiry[domain] = certificate_not_after(bundle_pem)
        self._contexts[domain] = context

    def load_cached(self) -> list[str]:
        """Install certificates already present in the cache directory."""
        loaded = []
        for domain in self.domains:
            bundle = self.cache.get(domain)
            if bundle is None:
                continue
            try:
                self._install(domain, bundle)
            except (ValueError, ssl.SSLError) as e:
                logger.warning("Discarding unusable cached certificate for %s: %s", domain, e)
                self.cache.delete(domain)
                continue
            loaded.append(domain)
        return loaded

    def needs_renewal(self, domain: str, now: Optional[datetime.datetime] = None) -> bool:
        expiry = self._expiry.get(domain)
        if expiry is None:
            return True
        now = now or datetime.datetime.now(datetime.timezone.utc)
        return expiry - now <= self.renew_before

    async def ensure_certificates(self) -> list[str]:
        """Obtain or renew every domain's certificate when due.

        Issuance for all domains is serialized by a single lock. Failures for
        one domain are logged and do not stop the others.

        Returns:
            The domains still due for a certificate after this pass.
        """
        async with self._issue_lock:
            for domain in self.domains:
                if not self.needs_renewal(domain):
                    continue
                logger.info("Requesting certificate for %s", domain)
                try:
                    bundle = await asyncio.to_thread(self._obtain, domain)
                    self.cache.put(domain, bundle)
                    self._install(domain, bundle)
                except (errors.Error, jose.errors.Error, OSError, ValueError, ssl.SSLError) as e:
                    logger.error("Certificate request for %s failed: %s", domain, e)
                    continue
                logger.info(
                    "Certificate for %s valid until %s",
                    domain,
                    self._expiry[domain].isoformat(),
                )
            return [domain for domain in self.domains if self.needs_renewal(domain)]

    async def run_renewal_loop(self, interval: float = DEFAULT_RENEWAL_INTERVAL) -> None:
        """Keep every domain's certificate current until cancelled.

        Domains left without a usable certificate after a pass are retried
        with a doubling delay between `min_retry_delay` and `max_retry_delay`;
        once all are current the next pass runs after `interval`.
        """
        retry_delay = self.min_retry_delay
        while True:
            try:
                pending = await self.ensure_certificates()
            except Exception:
                logger.exception("Certificate renewal pass failed")
                pending = list(self.domains)
            if not pending:
                retry_delay = self.min_retry_delay
                await asyncio.sleep(interval)
                continue
            logger.info(
                "Retrying certificates for %s in %.0fs", ", ".join(pending), retry_delay
            )
            await asyncio.sleep(retry_delay)
            retry_delay = min(retry_delay * 2, self.max_retry_delay)

    # ACME flow, executed in a worker thread

    def _account_key(self) -> jose.JWKRSA:
        pem = self.cache.get(DirCache.ACCOUNT_KEY_NAME)
        if pem is None:
            key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
            self.cache.put(DirCache.ACCOUNT_KEY_NAME, _private_key_pem(key))
        else:
            key = serialization.load_pem_private_key(pem, password=None)
        return jose.JWKRSA(key=key)

    def _acme_client(self, account_key: jose.JWKRSA) -> client.ClientV2:
        net = client.ClientNetwork(account_key, user_agent=USER_AGENT)
        directory = client.ClientV2.get_directory(self.directory_url, net)
        acme_client = client.ClientV2(directory, net=net)
        registration = messages.NewRegistration.from_data(
            email=self.email or None, terms_of_service_agreed=True
        )
        try:
            acme_client.new_account(registration)
        except errors.ConflictError as e:
            # Key already registered; reuse the existing account.
            acme_client.net.account = messages.RegistrationResource(
                uri=e.location, body=messages.Registration()
            )
        return acme_client

    def _obtain(self, domain: str) -> bytes:
        account_key = self._account_key()
        acme_client = self._acme_client(account_key)

        cert_key = ec.generate_private_key(ec.SECP256R1())
        key_pem = _private_key_pem(cert_key)
        csr_pem = crypto_util.make_csr(key_pem, [domain])
        order = acme_client.new_order(csr_pem)

        tokens = []
        try:
            for authz in order.authorizations:
                if authz.body.status == messages.STATUS_VALID:
                    continue
                challenge = next(
                    (
                        c
                        for c in authz.body.challenges
                        if isinstance(c.chall, challenges.HTTP01)
                    ),
                    None,
                )
                if challenge is None:
                    raise errors.Error(f"no http-01 challenge offered for {domain}")
                response, validation = challenge.response_and_validation(account_key)
                token = challenge.chall.encode("token")
                self._add_token(token, validation)
                tokens.append(token)
                acme_client.answer_challenge(challenge, response)

            deadline = datetime.datetime.now() + ORDER_TIMEOUT
            finalized = acme_client.poll_and_finalize(order, deadline=deadline)
        finally:
            for token in tokens:
                self._remove_token(token)

        return key_pem + finalized.fullchain_pem.encode("ascii")
