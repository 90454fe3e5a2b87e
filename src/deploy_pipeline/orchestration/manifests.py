"""Kubernetes descriptors for the application: Deployment, Service, Ingress."""
from typing import Any, Dict, List

import yaml

from deploy_pipeline.schemas import DeploymentSpec

CONTAINER_NAME = "app"


def deployment_manifest(spec: DeploymentSpec) -> Dict[str, Any]:
    labels = {"app": spec.name}
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": spec.name, "labels": labels},
        "spec": {
            "replicas": spec.replica_count,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [
                        {
                            "name": CONTAINER_NAME,
                            "image": spec.image_reference,
                            "imagePullPolicy": "Always",
                            "ports": [{"containerPort": spec.container_port}],
                            "resources": {
                                "limits": spec.resource_limits.as_manifest(),
                                "requests": spec.resource_requests.as_manifest(),
                            },
                        }
                    ]
                },
            },
        },
    }


def service_manifest(spec: DeploymentSpec) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": spec.service_name},
        "spec": {
            "type": "ClusterIP",
            "ports": [{"port": spec.service_port, "targetPort": spec.container_port}],
            "selector": {"app": spec.name},
        },
    }


def ingress_manifest(spec: DeploymentSpec) -> Dict[str, Any]:
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": {"name": spec.ingress_name},
        "spec": {
            "rules": [
                {
                    "http": {
                        "paths": [
                            {
                                "path": "/",
                                "pathType": "Prefix",
                                "backend": {
                                    "service": {
                                        "name": spec.service_name,
                                        "port": {"number": spec.service_port},
                                    }
                                },
                            }
                        ]
                    }
                }
            ]
        },
    }


def render_manifests(spec: DeploymentSpec) -> List[Dict[str, Any]]:
    """The full descriptor set, applied together."""
    return [deployment_manifest(spec), service_manifest(spec), ingress_manifest(spec)]


def render_manifests_yaml(spec: DeploymentSpec) -> str:
    """Multi-document YAML for `kubectl apply -f -`."""
    return yaml.safe_dump_all(render_manifests(spec), sort_keys=False, default_flow_style=False)
