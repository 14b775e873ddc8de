"""Chaos tests against a live cluster.

Opt-in: set KUBE_E2E_CHAOS=1. Pods in kube-system are deleted.
"""
