"""
v6sync - IPv6 prefix synchroniser.

Keeps an OCI security list rule and the firewalld ipsets of a set of hosts
in step with the IPv6 prefix currently advertised by an upstream router.
"""

__version__ = "1.0.0"
__author__ = "v6sync maintainers"
