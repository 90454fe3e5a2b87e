"""
Infrastructure layer for the deployment pipeline.

Contains the readiness poller, the Terraform provisioner and the SSH/kubectl
channel used for every remote operation against the provisioned host.
"""
