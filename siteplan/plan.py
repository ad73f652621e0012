"""
Plan compiler: framework build output → CDN origins, behaviors and functions.

The compiled ``Plan`` is provider-agnostic: ``siteplan.remix.Remix`` turns it
into CloudFront, S3 and Lambda resources. Compilation is:

1. Resolve the execution mode (regional unless configured otherwise).
2. Wrap each server entry point in the mode's handler, inject the polyfill
   and bundle it (entries are bundled concurrently).
3. Build origins: the static-asset store always; one compute origin per
   server function in regional mode only. Edge functions cannot be origins;
   in edge mode they run on requests to the static origin instead.
4. Build behaviors, first match wins: the single dynamic behavior first,
   then one cached behavior per top-level static entry in listing order.
5. Apply the caller's transform, then validate every reference.
"""

import os
import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import pulumi

from siteplan._helpers import Transform, static_pattern, transform
from siteplan.bundler import BundleOptions, FunctionBundler

WRAPPER_DIR = Path(__file__).parent / "functions" / "remix-server"
SERVER_BUILD_PLACEHOLDER = "SERVER_BUILD_PATH"

CATCH_ALL = "*"
STATIC_ORIGIN = "s3"
SERVER_CF_FUNCTION = "serverCfFunction"
STATIC_CF_FUNCTION = "staticCfFunction"

# Lambda@Edge origin-request triggers stop after 30 seconds.
EDGE_MAX_TIMEOUT = 30

HOST_HEADER_INJECTION = (
    'request.headers["x-forwarded-host"] = request.headers.host;'
)
# Route files such as "a+b.js" contain characters the path matcher rejects.
URI_ENCODING_INJECTION = (
    "request.uri = request.uri.split('/').map(encodeURIComponent).join('/');"
)


class ExecutionMode(str, Enum):
    EDGE = "edge"
    REGIONAL = "regional"


WRAPPERS: dict[ExecutionMode, str] = {
    ExecutionMode.EDGE: "edge-server.mjs",
    ExecutionMode.REGIONAL: "regional-server.mjs",
}


class CacheType(str, Enum):
    SERVER = "server"
    STATIC = "static"


class OriginKind(str, Enum):
    S3 = "s3"
    SERVER = "server"


class CompileError(Exception):
    pass


class DanglingReferenceError(CompileError):
    pass


@dataclass(frozen=True)
class ServerEntry:
    """
    A server entry point of the build.

    Attributes:
        name: Function name; also names its origin or edge association.
        path: Server build file, relative to the build root or absolute.
        mode: Preferred execution mode, used when the configuration does
            not choose one.
    """

    name: str
    path: Path
    mode: ExecutionMode | None = None


@dataclass(frozen=True)
class BuildOutput:
    """Framework build product consumed read-only by the compiler."""

    root: Path
    server_entries: tuple[ServerEntry, ...]
    static_dir: str = "public"

    def __post_init__(self):
        if not self.server_entries:
            raise ValueError(f"Build output {self.root} has no server entry points")

    @property
    def static_path(self) -> Path:
        return self.root / self.static_dir


@dataclass(frozen=True)
class AssetCopy:
    source: str
    destination: str
    cached: bool
    versioned_sub_dir: str | None = None


@dataclass(frozen=True)
class CompiledFunction:
    """A bundled server function; a new compilation yields new instances."""

    name: str
    handler: str
    artifact: Path
    mode: ExecutionMode
    memory_size: int
    timeout: int
    inject: tuple[Path, ...] = ()
    sourcemap: Path | None = None


@dataclass(frozen=True)
class Origin:
    name: str
    kind: OriginKind
    function: str | None = None
    copy: tuple[AssetCopy, ...] = ()


@dataclass(frozen=True)
class CloudFrontFunction:
    """Lightweight viewer-request rewriter; ``injections`` run in order."""

    name: str
    injections: tuple[str, ...]


@dataclass(frozen=True)
class Behavior:
    cache_type: CacheType
    origin: str
    pattern: str = CATCH_ALL
    cf_function: str | None = None
    edge_function: str | None = None


@dataclass(frozen=True)
class Plan:
    """
    Compiled routing and compute for one site.

    Attributes:
        mode: Execution mode of the server functions.
        origins: Origin name → origin.
        behaviors: Routing rules in evaluation order (first match wins).
        cloudfront_functions: Micro-function name → function.
        edge_functions: Edge association name → compiled function name.
        functions: Compiled function name → function.
    """

    mode: ExecutionMode
    origins: dict[str, Origin]
    behaviors: tuple[Behavior, ...]
    cloudfront_functions: dict[str, CloudFrontFunction] = field(default_factory=dict)
    edge_functions: dict[str, str] = field(default_factory=dict)
    functions: dict[str, CompiledFunction] = field(default_factory=dict)

    @property
    def edge(self) -> bool:
        return self.mode is ExecutionMode.EDGE

    @property
    def server_behavior(self) -> Behavior:
        return next(b for b in self.behaviors if b.cache_type is CacheType.SERVER)

    @property
    def static_behaviors(self) -> tuple[Behavior, ...]:
        return tuple(b for b in self.behaviors if b.cache_type is CacheType.STATIC)


@dataclass(frozen=True)
class PlanConfig:
    """
    Caller configuration for compilation.

    Attributes:
        mode: Execution mode; None falls back to the entries' preference,
            then to regional.
        memory_size: Server function memory in MB.
        timeout: Server function timeout in seconds (clamped in edge mode).
        links: Link values exposed to server functions.
        static_injection: Request rewrite attached to every static behavior.
        transform: Override applied to the generated plan before validation.
    """

    mode: ExecutionMode | None = None
    memory_size: int = 1024
    timeout: int = 20
    links: dict[str, str] = field(default_factory=dict)
    static_injection: str = URI_ENCODING_INJECTION
    transform: Transform[Plan] | None = None


def resolve_mode(config: PlanConfig, output: BuildOutput) -> ExecutionMode:
    if config.mode is not None:
        return config.mode
    preferred = (entry.mode for entry in output.server_entries if entry.mode)
    return next(preferred, ExecutionMode.REGIONAL)


def list_static_entries(output: BuildOutput) -> list[Path]:
    """Top-level static entries in directory-listing (byte-wise name) order."""
    static = output.static_path
    if not static.is_dir():
        pulumi.log.warn(f"No static assets directory at {static}")
        return []
    return sorted(static.iterdir(), key=lambda entry: entry.name)


def validate_plan(plan: Plan) -> Plan:
    """
    Check that every reference in ``plan`` resolves.

    Raises:
        DanglingReferenceError: A behavior, origin or edge association
            names something missing from the plan.
        CompileError: The plan does not have exactly one dynamic behavior.
    """

    def require(name: str | None, pool: dict, what: str, owner: str) -> None:
        if name is not None and name not in pool:
            raise DanglingReferenceError(f'{owner} references unknown {what} "{name}"')

    for index, behavior in enumerate(plan.behaviors):
        owner = f'Behavior #{index} ("{behavior.pattern}")'
        require(behavior.origin, plan.origins, "origin", owner)
        require(behavior.cf_function, plan.cloudfront_functions, "CloudFront function", owner)
        require(behavior.edge_function, plan.edge_functions, "edge function", owner)
    for origin in plan.origins.values():
        require(origin.function, plan.functions, "function", f'Origin "{origin.name}"')
    for name, function in plan.edge_functions.items():
        require(function, plan.functions, "function", f'Edge function "{name}"')

    dynamic = [b for b in plan.behaviors if b.cache_type is CacheType.SERVER]
    if len(dynamic) != 1:
        raise CompileError(f"Expected one server behavior, found {len(dynamic)}")
    return plan


class PlanCompiler:
    """
    Compiles a BuildOutput into a validated Plan.

    Args:
        bundler: Bundles each wrapped server entry point.
        wrapper_dir: Directory holding the handler wrappers and polyfill.
    """

    def __init__(self, bundler: FunctionBundler, wrapper_dir: Path = WRAPPER_DIR):
        self.bundler = bundler
        self.wrapper_dir = wrapper_dir

    def compile(self, output: BuildOutput, config: PlanConfig | None = None) -> Plan:
        config = config or PlanConfig()
        mode = resolve_mode(config, output)
        functions = self.compile_functions(output, config, mode)

        origins = {
            STATIC_ORIGIN: Origin(
                STATIC_ORIGIN,
                OriginKind.S3,
                copy=(AssetCopy(output.static_dir, "", True, "build"),),
            )
        }
        edge_functions: dict[str, str] = {}
        server = functions[0]
        if mode is ExecutionMode.EDGE:
            edge_functions = {fn.name: fn.name for fn in functions}
            dynamic = Behavior(
                CacheType.SERVER,
                origin=STATIC_ORIGIN,
                cf_function=SERVER_CF_FUNCTION,
                edge_function=server.name,
            )
        else:
            for fn in functions:
                origins[fn.name] = Origin(fn.name, OriginKind.SERVER, function=fn.name)
            dynamic = Behavior(
                CacheType.SERVER, origin=server.name, cf_function=SERVER_CF_FUNCTION
            )

        static = [
            Behavior(
                CacheType.STATIC,
                origin=STATIC_ORIGIN,
                pattern=static_pattern(entry),
                cf_function=STATIC_CF_FUNCTION,
            )
            for entry in list_static_entries(output)
        ]

        plan = Plan(
            mode=mode,
            origins=origins,
            behaviors=(dynamic, *static),
            cloudfront_functions={
                SERVER_CF_FUNCTION: CloudFrontFunction(
                    SERVER_CF_FUNCTION, (HOST_HEADER_INJECTION,)
                ),
                STATIC_CF_FUNCTION: CloudFrontFunction(
                    STATIC_CF_FUNCTION, (config.static_injection,)
                ),
            },
            edge_functions=edge_functions,
            functions={fn.name: fn for fn in functions},
        )
        plan = validate_plan(transform(config.transform, plan))
        pulumi.log.info(
            f"Compiled {mode.value} plan with {len(plan.behaviors)} behaviors"
        )
        return plan

    def compile_functions(
        self,
        output: BuildOutput,
        config: PlanConfig,
        mode: ExecutionMode,
    ) -> list[CompiledFunction]:
        """Wrap and bundle every server entry, preserving entry order."""
        timeout = config.timeout
        if mode is ExecutionMode.EDGE and timeout > EDGE_MAX_TIMEOUT:
            pulumi.log.warn(
                f"Edge functions time out after {EDGE_MAX_TIMEOUT}s; "
                f"clamping timeout {timeout}s"
            )
            timeout = EDGE_MAX_TIMEOUT

        polyfill = output.root / "build" / "polyfill.mjs"
        wrappers = [self.prepare_wrapper(output, entry, mode) for entry in output.server_entries]
        options = BundleOptions(links=dict(config.links), inject=[polyfill])

        def build(item: tuple[ServerEntry, Path]) -> CompiledFunction:
            entry, wrapper = item
            result = self.bundler.bundle(entry.name, wrapper, options)
            return CompiledFunction(
                name=entry.name,
                handler="index.handler",
                artifact=result.handler.parent,
                mode=mode,
                memory_size=config.memory_size,
                timeout=timeout,
                inject=(polyfill,),
                sourcemap=result.sourcemap,
            )

        items = list(zip(output.server_entries, wrappers))
        with ThreadPoolExecutor(max_workers=len(items)) as pool:
            return list(pool.map(build, items))

    def prepare_wrapper(
        self,
        output: BuildOutput,
        entry: ServerEntry,
        mode: ExecutionMode,
    ) -> Path:
        """
        Write the mode's handler wrapper and the polyfill into ``<root>/build``.

        The wrapper imports the entry's server build; the polyfill is injected
        ahead of all other bundled code.
        """
        build_dir = output.root / "build"
        build_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.wrapper_dir / "polyfill.mjs", build_dir / "polyfill.mjs")

        server_build = Path(os.path.relpath(output.root / entry.path, build_dir)).as_posix()
        if not server_build.startswith("."):
            server_build = f"./{server_build}"
        template = (self.wrapper_dir / WRAPPERS[mode]).read_text()
        wrapper = build_dir / f"{entry.name}.mjs"
        wrapper.write_text(template.replace(SERVER_BUILD_PLACEHOLDER, server_build))
        return wrapper
