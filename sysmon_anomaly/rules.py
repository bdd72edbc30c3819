"""
Stateless rule classifiers.
============================
Each check inspects a single event and returns one anomaly or None. Tables
and thresholds come from DetectionConfig (see config.RuleTables,
config.ThresholdConfig, config.TrustPolicy); to add a parent/child rule,
add a name to the table rather than a branch here.

  check_suspicious_parent_child  svchost.exe outside services.exe,
                                 office app spawning a shell
  check_unusual_port             outbound, self-initiated, port >= 49152
  check_untrusted_executable     blocklisted hash, bad signature,
                                 user-writable launch location
"""
from __future__ import annotations

from typing import Optional

from .anomalies import SuspiciousParentChild, UnusualPort, UntrustedExecutable
from .config import DetectionConfig, RuleTables, ThresholdConfig, TrustPolicy
from .events import OutboundNetworkEvent, ProcessCreateEvent, SysmonEvent, basename


def check_suspicious_parent_child(
    event: ProcessCreateEvent,
    rules: Optional[RuleTables] = None,
) -> Optional[SuspiciousParentChild]:
    rules = rules or RuleTables()
    parent_name = basename(event.parent_image)
    child_name = basename(event.image)
    parent_lower = parent_name.lower()
    child_lower = child_name.lower()

    # svchost.exe should only ever be started by the service control manager
    if child_lower == rules.service_host and parent_lower != rules.service_parent:
        return SuspiciousParentChild(
            event=event,
            parent=parent_name,
            child=child_name,
            reason=f"{rules.service_host} is spawned by a non-service process",
        )

    if parent_lower in rules.office_apps and child_lower in rules.shell_processes:
        return SuspiciousParentChild(
            event=event,
            parent=parent_name,
            child=child_name,
            reason="Office application spawned a shell",
        )
    return None


def check_unusual_port(
    event: SysmonEvent,
    thresholds: Optional[ThresholdConfig] = None,
) -> Optional[UnusualPort]:
    """Flag outbound connections the local process opened to a high port."""
    thresholds = thresholds or ThresholdConfig()
    if not isinstance(event, OutboundNetworkEvent) or not event.initiated:
        return None
    if event.destination_port < thresholds.unusual_port_min:
        return None
    return UnusualPort(
        event=event,
        port=event.destination_port,
        process=basename(event.image),
    )


def check_untrusted_executable(
    event: ProcessCreateEvent,
    policy: Optional[TrustPolicy] = None,
) -> Optional[UntrustedExecutable]:
    """
    Evaluate trust signals for the launched image, strongest first.

    Hash and signature failures produce reasons starting with "Invalid",
    which grade High; a user-writable launch location grades Medium.
    """
    policy = policy or TrustPolicy()

    sha256 = event.sha256
    if sha256 and sha256 in policy.blocked_sha256:
        return UntrustedExecutable(
            event=event,
            reason=f"Invalid hash: {basename(event.image)} matches blocklisted SHA256 {sha256}",
        )

    status = (event.signature_status or "").strip()
    if policy.check_signatures and status and status.lower() != "valid":
        return UntrustedExecutable(
            event=event,
            reason=f"Invalid signature: {basename(event.image)} ({status})",
        )

    image_lower = event.image.replace("/", "\\").lower()
    for marker in policy.untrusted_dirs:
        if marker in image_lower:
            location = marker.strip("\\")
            return UntrustedExecutable(
                event=event,
                reason=f"Executable launched from untrusted location: {location} ({basename(event.image)})",
            )
    return None


def classify_process_create(
    event: ProcessCreateEvent,
    cfg: DetectionConfig,
) -> list:
    """Run the per-event process rules in a fixed order."""
    found = []
    untrusted = check_untrusted_executable(event, cfg.trust)
    if untrusted is not None:
        found.append(untrusted)
    chain = check_suspicious_parent_child(event, cfg.rules)
    if chain is not None:
        found.append(chain)
    return found
