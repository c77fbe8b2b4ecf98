"""
Certificate actions for hostmaint.

This module manages Let's Encrypt certificates issued by certbot:
- Inventory of live certificates with their expiry status (via openssl)
- Audit of expiring and expired certificates
- Renewal with reload of the web services that use them
- Config test and reload of those web services on demand
- Requests for new certificates (webroot or standalone challenge)

Certificates are read from <CERT_DIR>/<domain>/fullchain.pem.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence

from hostmaint.actions.base import Action, ActionError
from hostmaint.models import JobOutcome
from hostmaint.utils.process import run_command, CommandError, is_service_active

OPENSSL_DATE_FORMAT = '%b %d %H:%M:%S %Y %Z'

# Config test run before reloading a service, if it has one
CONFIG_TESTS = {
    'nginx': ['nginx', '-t'],
    'apache2': ['apache2ctl', 'configtest'],
}

class CertStatus(Enum):
    VALID = "valid"
    EXPIRING = "expiring"
    EXPIRED = "expired"
    MISSING = "missing"

@dataclass
class CertificateInfo:
    """Details of one live certificate."""

    domain: str
    path: Path
    issuer: str = ""
    subject: str = ""
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None
    alt_names: List[str] = field(default_factory=list)

    def days_until_expiry(self, now: Optional[datetime] = None) -> Optional[int]:
        if self.not_after is None:
            return None
        now = now or datetime.now(timezone.utc)
        return math.floor((self.not_after - now).total_seconds() / 86400)

    def status(self, threshold_days: int, now: Optional[datetime] = None) -> CertStatus:
        days = self.days_until_expiry(now)
        if days is None:
            return CertStatus.MISSING
        if days < 0:
            return CertStatus.EXPIRED
        if days < threshold_days:
            return CertStatus.EXPIRING
        return CertStatus.VALID

    def describe(self, threshold_days: int, now: Optional[datetime] = None) -> str:
        status = self.status(threshold_days, now)
        if status is CertStatus.MISSING:
            return f"{self.domain}: certificate not found"
        if status is CertStatus.EXPIRED:
            return f"{self.domain}: EXPIRED"
        days = self.days_until_expiry(now)
        if status is CertStatus.EXPIRING:
            return f"{self.domain}: expires in {days} days"
        return f"{self.domain}: valid ({days} days remaining)"

def parse_openssl_date(value: str) -> datetime:
    """Parse an openssl date such as 'Apr  1 12:00:00 2026 GMT' as UTC."""
    return datetime.strptime(value.strip(), OPENSSL_DATE_FORMAT).replace(tzinfo=timezone.utc)

def parse_x509_fields(output: str) -> Dict[str, str]:
    """Parse `openssl x509 -noout -issuer -subject -startdate -enddate` output."""
    fields = {}
    for line in output.splitlines():
        key, sep, value = line.partition('=')
        if sep:
            fields[key.strip()] = value.strip()
    return fields

def parse_alt_names(output: str) -> List[str]:
    """Parse `openssl x509 -noout -ext subjectAltName` output."""
    names = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith('X509v3'):
            continue
        for entry in line.split(','):
            entry = entry.strip()
            if entry.startswith('DNS:'):
                names.append(entry[4:])
    return names

class CertificateInventory:
    """
    Reads the live certificates managed by certbot.

    Attributes:
        cert_dir (Path): certbot live directory
        threshold_days (int): Days before expiry a certificate is due
    """

    def __init__(self, cert_dir: str, threshold_days: int = 30):
        self.cert_dir = Path(cert_dir)
        self.threshold_days = int(threshold_days)

    def domains(self) -> List[str]:
        if not self.cert_dir.is_dir():
            return []
        return sorted(p.name for p in self.cert_dir.iterdir() if p.is_dir())

    def read(self, domain: str) -> CertificateInfo:
        """
        Read one certificate.

        Returns:
            CertificateInfo; not_after is None when the file is missing

        Raises:
            CommandError: If openssl cannot parse the certificate
            ValueError: If openssl reports a date in an unexpected format
        """
        path = self.cert_dir / domain / 'fullchain.pem'
        info = CertificateInfo(domain=domain, path=path)
        if not path.is_file():
            return info

        result = run_command([
            'openssl', 'x509', '-noout', '-issuer', '-subject',
            '-startdate', '-enddate', '-in', str(path)
        ])
        fields = parse_x509_fields(result.stdout)
        info.issuer = fields.get('issuer', '')
        info.subject = fields.get('subject', '')
        if 'notBefore' in fields:
            info.not_before = parse_openssl_date(fields['notBefore'])
        if 'notAfter' in fields:
            info.not_after = parse_openssl_date(fields['notAfter'])

        san = run_command(
            ['openssl', 'x509', '-noout', '-ext', 'subjectAltName', '-in', str(path)],
            check=False
        )
        if san.returncode == 0:
            info.alt_names = parse_alt_names(san.stdout)
        return info

    def read_all(self) -> List[CertificateInfo]:
        return [self.read(domain) for domain in self.domains()]

    def due(self, certificates: Optional[List[CertificateInfo]] = None) -> List[CertificateInfo]:
        """Certificates that are expiring or expired."""
        if certificates is None:
            certificates = self.read_all()
        return [
            cert for cert in certificates
            if cert.status(self.threshold_days) in (CertStatus.EXPIRING, CertStatus.EXPIRED)
        ]

class CertificateAction(Action):
    """Shared setup for certificate actions."""

    def __init__(self, config: Dict[str, Any], threshold_days: Optional[int] = None):
        super().__init__(config)
        if threshold_days is None:
            threshold_days = config.get('RENEWAL_THRESHOLD_DAYS', 30)
        self.inventory = CertificateInventory(
            config.get('CERT_DIR', '/etc/letsencrypt/live'),
            threshold_days
        )
        self.reload_services = list(config.get('RELOAD_SERVICES', []))

    def _read_inventory(self) -> List[CertificateInfo]:
        try:
            return self.inventory.read_all()
        except (CommandError, ValueError) as e:
            raise ActionError(f"Cannot read certificates: {e}") from e

    def reload(self) -> List[str]:
        """
        Reload active web services after a config test.

        Returns:
            Names of reloaded services

        Raises:
            ActionError: If a config test or reload fails
        """
        self.logger.info("Reloading web services...")
        reloaded = []
        for service in self.reload_services:
            if not is_service_active(service):
                continue
            test = CONFIG_TESTS.get(service)
            if test:
                try:
                    run_command(test)
                except CommandError as e:
                    raise ActionError(
                        f"{service} config test failed, not reloading: {e}"
                    ) from e
            self.run(['systemctl', 'reload', service])
            self.logger.info(f"{service} reloaded")
            reloaded.append(service)
        return reloaded

class CertificateAuditAction(CertificateAction):
    """Reports expiring and expired certificates; changes nothing."""

    def simulate(self) -> str:
        return self._audit()[1]

    def execute(self) -> JobOutcome:
        certificates, summary, issues = self._audit()
        if not certificates:
            return JobOutcome.skipped(summary)

        details = {
            'certificates': len(certificates),
            'issues': [cert.domain for cert in issues],
            'expired': [
                cert.domain for cert in issues
                if cert.status(self.inventory.threshold_days) is CertStatus.EXPIRED
            ],
        }
        if issues:
            return JobOutcome.failed(summary, **details)
        return JobOutcome.success(summary, **details)

    def _audit(self):
        certificates = self._read_inventory()
        if not certificates:
            return certificates, f"No certificates found in {self.inventory.cert_dir}", []

        threshold = self.inventory.threshold_days
        issues = self.inventory.due(certificates)
        for cert in certificates:
            status = cert.status(threshold)
            if status is CertStatus.EXPIRED:
                self.logger.error(f"Certificate EXPIRED: {cert.domain}")
            elif status is CertStatus.EXPIRING:
                self.logger.warning(f"Certificate expiring soon: {cert.describe(threshold)}")
            else:
                self.logger.info(f"Certificate OK: {cert.describe(threshold)}")

        if issues:
            summary = "Certificate issues found: " + "; ".join(
                cert.describe(threshold) for cert in issues
            )
        else:
            summary = f"{len(certificates)} certificate(s) valid for at least {threshold} days"
        return certificates, summary, issues

class CertificateRenewalAction(CertificateAction):
    """
    Renews certificates with certbot and reloads dependent services.

    Attributes:
        force (bool): Renew every certificate regardless of expiry
    """

    def __init__(
        self,
        config: Dict[str, Any],
        force: bool = False,
        threshold_days: Optional[int] = None
    ):
        super().__init__(config, threshold_days)
        self.force = force

    def simulate(self) -> str:
        certificates = self._read_inventory()
        if self.force:
            return f"Would force renewal of {len(certificates)} certificate(s)"
        due = self.inventory.due(certificates)
        if not due:
            return (
                f"No certificates due for renewal "
                f"(threshold: {self.inventory.threshold_days} days)"
            )
        threshold = self.inventory.threshold_days
        return f"{len(due)} certificate(s) due for renewal: " + "; ".join(
            cert.describe(threshold) for cert in due
        )

    def execute(self) -> JobOutcome:
        certificates = self._read_inventory()
        due = certificates if self.force else self.inventory.due(certificates)
        if not due:
            return JobOutcome.skipped(
                f"No certificates due for renewal "
                f"(threshold: {self.inventory.threshold_days} days)"
            )

        self.logger.info(
            f"Starting certificate renewal for: {', '.join(c.domain for c in due)}"
        )
        cmd = ['certbot', 'renew', '--non-interactive']
        if self.force:
            cmd.append('--force-renewal')
        self.run(cmd)

        reloaded = self.reload()
        summary = f"Certificate renewal completed for {len(due)} certificate(s)"
        if reloaded:
            summary += f"; reloaded {', '.join(reloaded)}"
        return JobOutcome.success(
            summary,
            renewed=[cert.domain for cert in due],
            reloaded=reloaded,
            forced=self.force
        )

class CertificateReloadAction(CertificateAction):
    """Tests the configuration of active web services and reloads them."""

    def simulate(self) -> str:
        active = [service for service in self.reload_services if is_service_active(service)]
        if not active:
            return "No active web services to reload"
        return f"Would test configuration and reload {', '.join(active)}"

    def execute(self) -> JobOutcome:
        reloaded = self.reload()
        if not reloaded:
            return JobOutcome.skipped("No active web services to reload")
        return JobOutcome.success(f"Reloaded {', '.join(reloaded)}", reloaded=reloaded)

class CertificateRequestAction(CertificateAction):
    """
    Requests a new certificate with `certbot certonly`.

    Attributes:
        domain (str): Primary domain
        extra_domains (List[str]): Additional names on the certificate
        email (str): Registration email; empty registers without email
        webroot (Path): Webroot for the HTTP challenge; standalone if missing
    """

    def __init__(
        self,
        config: Dict[str, Any],
        domain: str,
        extra_domains: Sequence[str] = (),
        email: Optional[str] = None,
        webroot: Optional[str] = None
    ):
        super().__init__(config)
        if not domain:
            raise ValueError("A domain is required to request a certificate")
        self.domain = domain
        self.extra_domains = [d for d in extra_domains if d]
        self.email = config.get('CERT_EMAIL', '') if email is None else email
        self.webroot = Path(webroot or config.get('CERT_WEBROOT', '/var/www/html'))

    def simulate(self) -> str:
        names = ', '.join([self.domain] + self.extra_domains)
        return f"Would request certificate for {names} via {self._method()}"

    def execute(self) -> JobOutcome:
        self.logger.info(f"Requesting certificate for: {self.domain}")
        self.run(self.build_command())
        cert_path = self.inventory.cert_dir / self.domain / 'fullchain.pem'
        return JobOutcome.success(
            f"New certificate obtained: {self.domain}",
            artifacts=[cert_path],
            domains=[self.domain] + self.extra_domains
        )

    def build_command(self) -> List[str]:
        cmd = ['certbot', 'certonly']
        if self.webroot.is_dir():
            cmd += ['--webroot', '-w', str(self.webroot)]
        else:
            cmd.append('--standalone')
        for name in [self.domain] + self.extra_domains:
            cmd += ['-d', name]
        if self.email:
            cmd += ['--email', self.email]
        else:
            cmd.append('--register-unsafely-without-email')
        cmd += ['--agree-tos', '--non-interactive']
        return cmd

    def _method(self) -> str:
        if self.webroot.is_dir():
            return f"webroot {self.webroot}"
        return "standalone challenge"
