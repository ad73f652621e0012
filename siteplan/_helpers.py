"""
Pure helpers for naming, locators and plan overrides. Testable without Pulumi runtime.

Used by the naming policy (prefix_name), the log group reconciler
(log_group_arn) and the plan compiler (static_pattern, transform). No Pulumi
types; all functions accept and return plain Python values so they can be
unit-tested without a Pulumi stack.
"""

import dataclasses
import hashlib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar, Union

T = TypeVar("T")

# Either a partial override merged onto the default value, or a function
# receiving the default and returning the final value (None keeps the default).
Transform = Union[Mapping[str, Any], Callable[[T], Optional[T]]]


def prefix_name(
    app: str,
    stage: str,
    name: str,
    max_len: int = 64,
) -> str:
    """
    Build the physical name ``{app}-{stage}-{name}``.

    Names longer than ``max_len`` are truncated and suffixed with an 8-char
    hash of the full name, so the result is deterministic and still unique
    per (app, stage, name).

    Args:
        app: Application (Pulumi project) name.
        stage: Deployment stage (Pulumi stack) name.
        name: Component-relative logical name.
        max_len: Maximum length accepted by the provider (default 64, the
            Lambda and IAM role limit).

    Returns:
        Namespaced physical name (e.g. "shop-dev-WebServer").
    """
    full = f"{app}-{stage}-{name}"
    if len(full) <= max_len:
        return full
    digest = hashlib.sha256(full.encode()).hexdigest()[:8]
    return f"{full[: max_len - 9]}-{digest}"


def log_group_arn(
    region: str,
    name: str,
) -> str:
    """
    Return the locator of a CloudWatch log group.

    Derived from region and name only (never returned by the API), following
    ``arn:aws:logs:<region>:*:log-group:<name>``.
    """
    return f"arn:aws:logs:{region}:*:log-group:{name}"


def static_pattern(
    entry: Path,
) -> str:
    """
    Return the CDN path pattern for a top-level static asset entry.

    Directories match everything below them (``name/*``); files match
    themselves (``name``).
    """
    return f"{entry.name}/*" if entry.is_dir() else entry.name


def transform(
    override: "Transform[T] | None",
    value: T,
) -> T:
    """
    Apply a caller-supplied override to a generated value.

    Args:
        override: None (identity), a callable receiving ``value`` and
            returning the final value (returning None keeps ``value``, which
            allows in-place edits), or a mapping of fields merged onto
            ``value``.
        value: The generated default (a dataclass instance or a dict).

    Returns:
        The final value.
    """
    if override is None:
        return value
    if callable(override):
        result = override(value)
        return value if result is None else result
    if dataclasses.is_dataclass(value):
        return dataclasses.replace(value, **override)
    return {**value, **override}


def url_host(
    url: str,
) -> str:
    """
    Return the host of an absolute URL (e.g. a Lambda function URL).

    CloudFront custom origins take a bare domain name, without scheme or
    trailing slash.
    """
    return url.split("://", 1)[-1].split("/", 1)[0]


def cloudfront_function_code(
    injections: list[str] | tuple[str, ...],
) -> str:
    """
    Wrap viewer-request injections into a CloudFront Function handler.

    Each injection is a JS statement operating on ``request``; they run in
    order and the (possibly rewritten) request is forwarded.
    """
    body = "\n".join(f"  {statement}" for statement in injections)
    return (
        "function handler(event) {\n"
        "  var request = event.request;\n"
        f"{body}\n"
        "  return request;\n"
        "}"
    )


# Versioned (content-hashed) assets never change; everything else may.
IMMUTABLE_CACHE_CONTROL = "public,max-age=31536000,immutable"
REVALIDATE_CACHE_CONTROL = "public,max-age=0,s-maxage=86400,stale-while-revalidate=8640"


def asset_cache_control(
    key: str,
    versioned_sub_dir: str | None,
) -> str:
    """
    Return the Cache-Control header for an uploaded static asset.

    Args:
        key: Object key relative to the static origin root (POSIX).
        versioned_sub_dir: Top-level directory holding cache-busted files.
    """
    if versioned_sub_dir and key.split("/", 1)[0] == versioned_sub_dir:
        return IMMUTABLE_CACHE_CONTROL
    return REVALIDATE_CACHE_CONTROL
