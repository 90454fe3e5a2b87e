# cli.py
import json
import logging
import sys
from pathlib import Path

import click

from deploy_pipeline.infrastructure.cluster import KubectlCluster
from deploy_pipeline.infrastructure.remote import RemoteShell
from deploy_pipeline.monitoring.diagnostics import DiagnosticsCollector
from deploy_pipeline.orchestration.manifests import render_manifests_yaml
from deploy_pipeline.orchestration.pipeline import DeploymentPipeline, write_report
from deploy_pipeline.settings import get_settings

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@click.group()
def cli():
    """Provision, deploy and verify the re2ect application"""
    configure_logging(get_settings().log_level)


@cli.command()
@click.option("--report-file", default=None,
              help="Write the JSON run report to this path")
def run(report_file):
    """Run the full deployment pipeline"""
    settings = get_settings()
    result = DeploymentPipeline(settings).run()

    report_file = report_file or settings.report_file
    if report_file:
        write_report(result, report_file)

    click.echo(json.dumps({
        "status": "success" if result.success else "failed",
        "failed_stage": result.failed_stage.value if result.failed_stage else None,
        "reason": result.reason,
        "instance_address": result.instance_address,
        "image_reference": result.image_reference,
    }, indent=2))
    sys.exit(result.exit_code)


@cli.command()
def show_config():
    """Show current configuration"""
    settings = get_settings()

    click.echo("Current Configuration:")
    click.echo(f"  AWS Region: {settings.aws_region}")
    click.echo(f"  Container Port: {settings.container_port}")
    click.echo(f"  Image: {settings.image_reference}")
    click.echo(f"  Registry User: {settings.registry_username or '(unset)'}")
    click.echo(f"  Registry Token: {'(set)' if settings.registry_token else '(unset)'}")
    click.echo(f"  Terraform Dir: {settings.terraform_dir}")
    click.echo(f"  Build Context: {settings.build_context}")
    click.echo(f"  SSH User: {settings.ssh_user}")
    for name in ("ssh_retry", "cluster_api_retry", "publish_retry", "rollout_retry", "verify_retry"):
        policy = getattr(settings, name)
        click.echo(f"  {name}: {policy.max_attempts} x {policy.interval:g}s "
                   f"(per attempt {policy.per_attempt_timeout:g}s, budget {policy.total_budget:g}s)")


@cli.command()
@click.option("--image", default=None, help="Image reference (defaults to the configured one)")
def render_manifests(image):
    """Print the Deployment/Service/Ingress YAML"""
    settings = get_settings()
    spec = settings.deployment_spec(image or settings.image_reference)
    click.echo(render_manifests_yaml(spec))


@cli.command()
@click.option("--address", required=True, help="Public IP of the instance")
@click.option("--key-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="SSH private key; without it cluster probes are skipped")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
def diagnose(address, key_file, as_json):
    """Collect a diagnostics report for an existing instance"""
    settings = get_settings()
    cluster = None
    if key_file:
        remote = RemoteShell(
            address,
            key_file,
            user=settings.ssh_user,
            port=settings.ssh_port,
            connect_timeout=settings.ssh_connect_timeout,
            default_timeout=settings.remote_command_timeout,
        )
        cluster = KubectlCluster(remote, kubectl=settings.kubectl_binary)

    report = DiagnosticsCollector(settings).collect(address, cluster)
    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        click.echo(report.render())


if __name__ == "__main__":
    cli()
