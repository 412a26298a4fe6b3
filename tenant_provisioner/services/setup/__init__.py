"""Setup (provisioning) services.

This package contains the helpers that *provision* external infrastructure for
a tenant (OpenSearch Serverless collections and the policies around them).
"""
