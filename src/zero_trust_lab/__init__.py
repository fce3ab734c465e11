"""Provisioning and teardown tooling for a disposable Azure Zero Trust Lab.

Terraform generators, Azure CLI resource-group cleanup, and Microsoft Graph
user provisioning, each driven from the ``zero-trust-lab`` command line.
"""
