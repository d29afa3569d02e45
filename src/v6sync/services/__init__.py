"""Adapters for the prefix source and the firewalls kept in sync with it."""

from v6sync.services.cloud import CloudSecurityRule
from v6sync.services.firewalld import LocalFirewalld, RemoteFirewalld, build_host_target
from v6sync.services.prefix import PrefixSource
from v6sync.services.reconcile import Reconciler, ReconciliationReport, build_reconciler
from v6sync.services.selinux import PolicyDenialMonitor
from v6sync.services.ssh import SSHChannel

__all__ = [
    "CloudSecurityRule",
    "LocalFirewalld",
    "RemoteFirewalld",
    "build_host_target",
    "PrefixSource",
    "Reconciler",
    "ReconciliationReport",
    "build_reconciler",
    "PolicyDenialMonitor",
    "SSHChannel",
]
