"""
Remix deployment planning and provisioning.

Pure planning lives in its own modules so it can be used and tested without a
Pulumi stack; the Pulumi-facing pieces build on it:

- **NamingPolicy**: approves or rejects the physical name of every resource
  (enforced for component children by **Component**).
- **FunctionBundler**: bundles a server entry point into one ESM artifact.
- **PlanCompiler**: turns a **BuildOutput** into a validated **Plan** of
  origins, behaviors and functions.
- **LogGroup**: log group with retention, reconciled idempotently.
- **Remix**: provisions S3, CloudFront and Lambda from a Plan.
"""

from siteplan.bundler import BundleOptions, FunctionBundler
from siteplan.component import Component
from siteplan.log_group import LogGroup
from siteplan.naming import NamingPolicy
from siteplan.plan import (
    BuildOutput,
    ExecutionMode,
    Plan,
    PlanCompiler,
    PlanConfig,
    ServerEntry,
)
from siteplan.remix import Remix

__all__ = [
    "BuildOutput",
    "BundleOptions",
    "Component",
    "ExecutionMode",
    "FunctionBundler",
    "LogGroup",
    "NamingPolicy",
    "Plan",
    "PlanCompiler",
    "PlanConfig",
    "Remix",
    "ServerEntry",
]
