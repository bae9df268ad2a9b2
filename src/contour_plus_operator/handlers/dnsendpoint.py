"""
Watch handler for DNSEndpoint children.

Only imported when DNSEndpoint management is enabled, so the operator does
not require the external-dns CRD otherwise.
"""

import kopf

from ..constants import DNS_ENDPOINT_KIND


@kopf.on.event("externaldns.k8s.io", "v1alpha1", "dnsendpoints")
async def dnsendpoint_event(event: kopf.RawEvent, memo: kopf.Memo, **_) -> None:
    memo.controller.handle_child_event(
        DNS_ENDPOINT_KIND, event.get("type"), event["object"]
    )
