"""
Watch handler for the load balancer Service.

When the Service fronting Contour changes (typically when it is assigned an
address), every HTTPProxy is reconciled again so DNS records follow.
"""

import kopf


@kopf.on.event("", "v1", "services")
async def service_event(event: kopf.RawEvent, memo: kopf.Memo, logger, **_) -> None:
    count = await memo.controller.handle_service_event(
        event.get("type"), event["object"]
    )
    if count:
        logger.info(f"Load balancer Service changed, enqueued {count} HTTPProxies")
