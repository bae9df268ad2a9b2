"""
Watch handlers for Certificate and TLSCertificateDelegation children.

Only imported when Certificate management is enabled, so the operator does
not require the cert-manager CRDs otherwise.
"""

import kopf

from ..constants import CERTIFICATE_KIND, TLS_CERTIFICATE_DELEGATION_KIND


@kopf.on.event("cert-manager.io", "v1", "certificates")
async def certificate_event(event: kopf.RawEvent, memo: kopf.Memo, **_) -> None:
    memo.controller.handle_child_event(
        CERTIFICATE_KIND, event.get("type"), event["object"]
    )


@kopf.on.event("projectcontour.io", "v1", "tlscertificatedelegations")
async def tls_certificate_delegation_event(
    event: kopf.RawEvent, memo: kopf.Memo, **_
) -> None:
    memo.controller.handle_child_event(
        TLS_CERTIFICATE_DELEGATION_KIND, event.get("type"), event["object"]
    )
