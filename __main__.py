"""
Siteplan - Remix deployment entrypoint.

Compiles the Remix build output into a deployment plan and provisions it:

- **Plan**: the server build is wrapped for edge or regional execution and
  bundled; static assets under ``public/`` get one CloudFront behavior per
  top-level entry behind the dynamic server behavior.
- **Site**: the Remix component provisions S3, CloudFront and Lambda from the
  plan. Every physical name is namespaced by project and stack.

Stack exports: url, bucket_name, distribution_id.
"""

from pathlib import Path

import pulumi

from config import StackConfig
from siteplan import (
    BuildOutput,
    ExecutionMode,
    FunctionBundler,
    NamingPolicy,
    PlanCompiler,
    PlanConfig,
    Remix,
    ServerEntry,
)

WORK_DIR = Path(".siteplan")


def main():
    """
    Compile the plan and create the Remix site.

    Reads config (site_path, edge, sizing, retention), bundles the server
    entry into WORK_DIR, provisions the site and exports its URL.
    """
    config = StackConfig.from_pulumi_config(pulumi.Config())
    policy = NamingPolicy(app=pulumi.get_project(), stage=pulumi.get_stack())

    root = Path(config.site_path).resolve()
    build_output = BuildOutput(
        root=root,
        server_entries=(ServerEntry("server", Path("build/index.js")),),
    )
    compiler = PlanCompiler(FunctionBundler(work_dir=WORK_DIR.resolve(), root=root))
    plan = compiler.compile(
        build_output,
        PlanConfig(
            mode=ExecutionMode.EDGE if config.edge else ExecutionMode.REGIONAL,
            memory_size=config.server_memory_size,
            timeout=config.server_timeout,
        ),
    )

    site = Remix(
        name="Web",
        plan=plan,
        build_output=build_output,
        policy=policy,
        region=config.region,
        log_retention_days=config.log_retention_days,
    )

    for output_name, value in [
        ("url", site.url),
        ("bucket_name", site.bucket_name),
        ("distribution_id", site.distribution_id),
    ]:
        pulumi.export(output_name, value)


if __name__ == "__main__":
    main()
