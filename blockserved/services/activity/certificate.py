"""Certificate of service acknowledgment."""

from __future__ import annotations

from datetime import datetime

from blockserved.models.domain import Notice, ServiceCertificate

TRONSCAN_TX_URL = "https://tronscan.org/#/transaction/"


def build_certificate(
    notice: Notice,
    *,
    recipient: str,
    transaction_hash: str,
    signed_at: datetime,
    contract_address: str,
) -> ServiceCertificate:
    """Summarize a signed notice with a link to the signing transaction."""
    return ServiceCertificate(
        recipient=recipient,
        document_type=notice.notice_type,
        case_number=notice.case_number,
        agency=notice.issuing_agency,
        notice_id=notice.key,
        date_served=notice.timestamp,
        date_signed=signed_at,
        transaction_hash=transaction_hash,
        contract_address=contract_address,
        verification_url=f"{TRONSCAN_TX_URL}{transaction_hash}",
    )
