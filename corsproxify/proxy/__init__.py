"""Proxy core: URL resolution, admission policy, header handling and forwarding."""
