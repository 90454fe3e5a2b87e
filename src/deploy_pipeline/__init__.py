"""
re2ect deployment pipeline.

Provisions a single-node k3s host with Terraform, publishes the application
image, rolls it out over SSH + kubectl and verifies the public entry point.
"""

__version__ = "0.1.0"
