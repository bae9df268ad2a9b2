"""
Watch handler for HTTPProxy resources.

Events are routed through the controller's change filter; admitted ones
enqueue the HTTPProxy for reconciliation.
"""

import kopf


@kopf.on.event("projectcontour.io", "v1", "httpproxies")
async def httpproxy_event(event: kopf.RawEvent, memo: kopf.Memo, **_) -> None:
    memo.controller.handle_httpproxy_event(event.get("type"), event["object"])
