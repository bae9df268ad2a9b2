#!/usr/bin/env python3
"""
Contour Plus Operator - Main entry point for the kopf-based HTTPProxy controller.

The operator watches Contour HTTPProxy resources and derives:
- DNSEndpoint records for external-dns pointing at the Contour load balancer
- Delegation DNSEndpoints for ACME DNS-01 challenges
- cert-manager Certificates, optionally behind a rate-gated apply worker
- TLSCertificateDelegations for certificates issued in another namespace

Usage:
    python -m contour_plus_operator.operator
    # Or with kopf directly:
    kopf run -m contour_plus_operator.operator --all-namespaces

Environment Variables:
    CP_SERVICE_NAME: namespace/name of the Contour load balancer Service
    CP_CRDS: Comma-separated child kinds to manage (DNSEndpoint,Certificate)
    CP_NAMESPACES: Comma-separated list of namespaces to watch
    CP_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import logging
import random
import sys

import kopf

from contour_plus_operator.constants import (
    CERTIFICATE_KIND,
    DNS_ENDPOINT_KIND,
    SHUTDOWN_GRACE_PERIOD,
)
from contour_plus_operator.errors import ConfigurationError

# Import handler modules to register them with kopf
from contour_plus_operator.handlers import (  # noqa: F401
    httpproxy,
    service,
)
from contour_plus_operator.observability.logging import setup_structured_logging
from contour_plus_operator.observability.metrics import MetricsServer
from contour_plus_operator.resources import register_resource_kinds
from contour_plus_operator.services.controller import HTTPProxyController
from contour_plus_operator.settings import ReconcilerOptions
from contour_plus_operator.settings import settings as operator_settings
from contour_plus_operator.utils.kubernetes import KubernetesResources

# Child watches are registered only for enabled kinds. kopf fails to watch
# resources whose CRD is not installed, so clusters without external-dns or
# cert-manager must not get these handlers.
if DNS_ENDPOINT_KIND in operator_settings.enabled_crds:
    from contour_plus_operator.handlers import dnsendpoint  # noqa: F401
if CERTIFICATE_KIND in operator_settings.enabled_crds:
    from contour_plus_operator.handlers import certificate  # noqa: F401


def configure_logging() -> None:
    """Configure structured logging for the operator based on operator_settings."""
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
    )


def get_watched_namespaces() -> list[str] | None:
    """
    Get the list of namespaces to watch from operator_settings.

    Returns:
        List of namespace names, or None to watch all namespaces
    """
    return operator_settings.watched_namespaces


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Operator startup configuration.

    Validates the configuration, configures peering, builds the HTTPProxy
    controller and starts its workers before any watch event is delivered.
    The controller is stored in the memo for the watch handlers.
    """
    logging.info("Starting Contour Plus Operator...")
    settings.watching.reconnect_backoff = 1.0

    if operator_settings.leader_election:
        # Each pod gets a random priority; the highest one is active
        settings.peering.name = "contour-plus-operator"
        settings.peering.priority = random.randint(0, 32767)
        logging.info(
            f"Peering priority set to {settings.peering.priority} for leader election"
        )
    else:
        settings.peering.standalone = True
        logging.info("Leader election disabled, running standalone")

    try:
        options = ReconcilerOptions.from_settings(operator_settings)
    except ConfigurationError as e:
        logging.error(f"Invalid operator configuration: {e}")
        raise e.as_kopf_error() from e

    watched_namespaces = get_watched_namespaces()
    if watched_namespaces:
        logging.info(f"Watching namespaces: {', '.join(watched_namespaces)}")
    else:
        logging.info("Watching all namespaces (cluster-wide mode)")
    logging.info(
        f"Managing children: DNSEndpoint={options.create_dns_endpoint}, "
        f"Certificate={options.create_certificate}"
    )
    if options.certificate_apply_limit > 0:
        logging.info(
            f"Certificate applies limited to {options.certificate_apply_limit}/s"
        )

    controller = HTTPProxyController(
        kube=KubernetesResources(),
        registry=register_resource_kinds(),
        options=options,
        max_concurrent_reconciles=operator_settings.max_concurrent_reconciles,
        retry_channel_size=operator_settings.retry_channel_size,
    )
    await controller.start()
    memo.controller = controller

    # The operator keeps running without metrics if the server cannot start
    memo.metrics_server = None
    try:
        metrics_server = MetricsServer(
            port=operator_settings.metrics_port,
            host=operator_settings.metrics_host,
            readiness=lambda: controller.running,
        )
        await metrics_server.start()
        memo.metrics_server = metrics_server
    except OSError as e:
        logging.error(f"Failed to start metrics server: {e}")

    logging.info("Contour Plus Operator startup completed")


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, **_) -> None:
    """Stop the controller and the metrics server on operator shutdown."""
    logging.info("Contour Plus Operator shutting down...")

    controller: HTTPProxyController | None = memo.get("controller")
    if controller is not None:
        await controller.stop(grace_period=SHUTDOWN_GRACE_PERIOD)

    metrics_server: MetricsServer | None = memo.get("metrics_server")
    if metrics_server is not None:
        await metrics_server.stop()

    logging.info("Contour Plus Operator shutdown completed")


@kopf.on.probe(id="controller")
async def controller_probe(memo: kopf.Memo, **_) -> dict:
    """Report controller state on the kopf liveness endpoint."""
    controller: HTTPProxyController | None = memo.get("controller")
    if controller is None:
        return {"running": False}
    return {
        "running": controller.running,
        "reconcile_queue": len(controller.queue),
        "retry_channel": len(controller.retry_channel)
        if controller.retry_channel is not None
        else 0,
    }


def main() -> None:
    """
    Main entry point for the operator.

    This function:
    1. Configures logging
    2. Determines namespace scope
    3. Runs the kopf operator
    """
    configure_logging()

    watched_namespaces = get_watched_namespaces()
    settings_obj = kopf.OperatorSettings()

    try:
        # Peering and the controller are configured in the startup handler
        if watched_namespaces:
            kopf.run(
                namespaces=watched_namespaces,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
                settings=settings_obj,
            )
        else:
            kopf.run(
                clusterwide=True,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
                settings=settings_obj,
            )
    except KeyboardInterrupt:
        logging.info("Operator stopped by user")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Operator failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
