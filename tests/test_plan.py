"""Tests for the plan compiler"""

from dataclasses import replace
from pathlib import Path

import pytest

from siteplan.bundler import BuildRequest, BuildResult, FunctionBundler
from siteplan.plan import (
    CATCH_ALL,
    EDGE_MAX_TIMEOUT,
    HOST_HEADER_INJECTION,
    STATIC_CF_FUNCTION,
    STATIC_ORIGIN,
    URI_ENCODING_INJECTION,
    Behavior,
    BuildOutput,
    CacheType,
    CompileError,
    DanglingReferenceError,
    ExecutionMode,
    OriginKind,
    Plan,
    PlanCompiler,
    PlanConfig,
    ServerEntry,
    validate_plan,
)


class RecordingBackend:
    def __init__(self):
        self.requests: list[BuildRequest] = []

    def build(self, request: BuildRequest) -> BuildResult:
        self.requests.append(request)
        request.outfile.parent.mkdir(parents=True, exist_ok=True)
        request.outfile.write_text("")
        return BuildResult(output_files=[request.outfile])


@pytest.fixture
def site(tmp_path):
    root = tmp_path / "site"
    (root / "build").mkdir(parents=True)
    (root / "build" / "index.js").write_text("export const routes = {};")
    public = root / "public"
    (public / "images").mkdir(parents=True)
    (public / "a.txt").write_text("a")
    return BuildOutput(root=root, server_entries=(ServerEntry("server", Path("build/index.js")),))


@pytest.fixture
def backend():
    return RecordingBackend()


@pytest.fixture
def compiler(tmp_path, site, backend):
    return PlanCompiler(FunctionBundler(tmp_path / "work", site.root, backend))


def _patterns(plan: Plan) -> list[str]:
    return [behavior.pattern for behavior in plan.behaviors]


class TestBehaviors:
    def test_dynamic_first_then_static_in_listing_order(self, compiler, site):
        plan = compiler.compile(site, PlanConfig(mode=ExecutionMode.REGIONAL))
        assert _patterns(plan) == [CATCH_ALL, "a.txt", "images/*"]
        assert [b.cache_type for b in plan.behaviors] == [
            CacheType.SERVER,
            CacheType.STATIC,
            CacheType.STATIC,
        ]

    def test_static_behaviors_route_to_assets_with_uri_encoding(self, compiler, site):
        plan = compiler.compile(site)
        for behavior in plan.static_behaviors:
            assert behavior.origin == STATIC_ORIGIN
            assert behavior.cf_function == STATIC_CF_FUNCTION
        assert plan.cloudfront_functions[STATIC_CF_FUNCTION].injections == (
            URI_ENCODING_INJECTION,
        )

    def test_static_injection_is_configurable(self, compiler, site):
        plan = compiler.compile(site, PlanConfig(static_injection="request.uri = '/';"))
        assert plan.cloudfront_functions[STATIC_CF_FUNCTION].injections == (
            "request.uri = '/';",
        )

    def test_no_static_entries_leaves_only_dynamic(self, compiler, site):
        for entry in sorted(site.static_path.rglob("*"), reverse=True):
            if entry.is_dir():
                entry.rmdir()
            else:
                entry.unlink()
        plan = compiler.compile(site)
        assert _patterns(plan) == [CATCH_ALL]

    def test_missing_static_directory_leaves_only_dynamic(self, compiler, site):
        plan = compiler.compile(replace(site, static_dir="assets"))
        assert _patterns(plan) == [CATCH_ALL]


class TestModes:
    def test_defaults_to_regional(self, compiler, site):
        assert compiler.compile(site).mode is ExecutionMode.REGIONAL

    def test_entry_preference_used_when_unconfigured(self, compiler, site):
        entry = ServerEntry("server", Path("build/index.js"), ExecutionMode.EDGE)
        plan = compiler.compile(replace(site, server_entries=(entry,)))
        assert plan.edge

    def test_regional_server_is_an_origin(self, compiler, site):
        plan = compiler.compile(site, PlanConfig(mode=ExecutionMode.REGIONAL))
        assert plan.origins["server"].kind is OriginKind.SERVER
        assert plan.origins["server"].function == "server"
        assert plan.server_behavior.origin == "server"
        assert plan.server_behavior.edge_function is None
        assert plan.edge_functions == {}

    def test_edge_server_is_never_an_origin(self, compiler, site):
        plan = compiler.compile(site, PlanConfig(mode=ExecutionMode.EDGE))
        assert set(plan.origins) == {STATIC_ORIGIN}
        assert all(o.kind is OriginKind.S3 for o in plan.origins.values())
        assert plan.server_behavior.origin == STATIC_ORIGIN
        assert plan.server_behavior.edge_function == "server"
        assert plan.edge_functions == {"server": "server"}

    def test_server_behavior_normalizes_host_header(self, compiler, site):
        for mode in ExecutionMode:
            plan = compiler.compile(site, PlanConfig(mode=mode))
            cf_function = plan.cloudfront_functions[plan.server_behavior.cf_function]
            assert cf_function.injections == (HOST_HEADER_INJECTION,)

    def test_static_origin_copies_public_with_versioned_build(self, compiler, site):
        [copy] = compiler.compile(site).origins[STATIC_ORIGIN].copy
        assert (copy.source, copy.destination, copy.cached) == ("public", "", True)
        assert copy.versioned_sub_dir == "build"


class TestFunctions:
    def test_wrapper_selected_by_mode(self, compiler, site, backend):
        compiler.compile(site, PlanConfig(mode=ExecutionMode.EDGE))
        wrapper = site.root / "build" / "server.mjs"
        assert backend.requests[0].entry_points == [wrapper.resolve()]
        source = wrapper.read_text()
        assert "event.Records[0].cf.request" in source
        assert 'from "./index.js"' in source

        compiler.compile(site, PlanConfig(mode=ExecutionMode.REGIONAL))
        assert "event.Records" not in wrapper.read_text()

    def test_polyfill_injected(self, compiler, site, backend):
        plan = compiler.compile(site)
        polyfill = site.root / "build" / "polyfill.mjs"
        assert polyfill.exists()
        assert backend.requests[0].inject == [polyfill]
        assert plan.functions["server"].inject == (polyfill,)

    def test_compiled_function_fields(self, compiler, site, tmp_path):
        plan = compiler.compile(
            site, PlanConfig(memory_size=2048, timeout=10, links={"Api": "x"})
        )
        fn = plan.functions["server"]
        assert fn.handler == "index.handler"
        assert fn.artifact == tmp_path / "work" / "artifacts" / "server-src"
        assert (fn.memory_size, fn.timeout) == (2048, 10)
        assert fn.mode is ExecutionMode.REGIONAL

    def test_edge_timeout_is_clamped(self, compiler, site):
        plan = compiler.compile(site, PlanConfig(mode=ExecutionMode.EDGE, timeout=60))
        assert plan.functions["server"].timeout == EDGE_MAX_TIMEOUT

    def test_each_compilation_yields_new_functions(self, compiler, site):
        first = compiler.compile(site).functions["server"]
        second = compiler.compile(site).functions["server"]
        assert first is not second

    def test_entries_bundled_in_order(self, compiler, site, backend):
        (site.root / "build" / "admin.js").write_text("")
        entries = (
            ServerEntry("server", Path("build/index.js")),
            ServerEntry("admin", Path("build/admin.js")),
        )
        plan = compiler.compile(replace(site, server_entries=entries))
        assert list(plan.functions) == ["server", "admin"]
        assert plan.server_behavior.origin == "server"
        assert {r.outfile.parent.name for r in backend.requests} == {"server-src", "admin-src"}

    def test_missing_wrapper_assets_fail_before_bundling(self, tmp_path, site, backend):
        compiler = PlanCompiler(
            FunctionBundler(tmp_path / "work", site.root, backend),
            wrapper_dir=tmp_path / "no-wrappers",
        )
        with pytest.raises(FileNotFoundError):
            compiler.compile(site)
        assert backend.requests == []


class TestTransform:
    def test_override_applied_before_validation(self, compiler, site):
        plan = compiler.compile(
            site, PlanConfig(transform=lambda p: replace(p, behaviors=p.behaviors[:1]))
        )
        assert _patterns(plan) == [CATCH_ALL]

    def test_dangling_override_is_rejected(self, compiler, site):
        def add_bad_behavior(plan):
            bad = Behavior(CacheType.STATIC, origin="nowhere", pattern="x/*")
            return replace(plan, behaviors=(*plan.behaviors, bad))

        with pytest.raises(DanglingReferenceError):
            compiler.compile(site, PlanConfig(transform=add_bad_behavior))


class TestValidatePlan:
    def _plan(self, **changes) -> Plan:
        base = Plan(
            mode=ExecutionMode.REGIONAL,
            origins={},
            behaviors=(Behavior(CacheType.SERVER, origin="missing"),),
        )
        return replace(base, **changes)

    def test_unknown_origin(self):
        with pytest.raises(DanglingReferenceError, match='origin "missing"'):
            validate_plan(self._plan())

    def test_unknown_edge_function(self, compiler, site):
        plan = compiler.compile(site, PlanConfig(mode=ExecutionMode.EDGE))
        with pytest.raises(DanglingReferenceError):
            validate_plan(replace(plan, edge_functions={"server": "gone"}))

    def test_unknown_cloudfront_function(self, compiler, site):
        plan = compiler.compile(site)
        with pytest.raises(DanglingReferenceError):
            validate_plan(replace(plan, cloudfront_functions={}))

    def test_requires_exactly_one_dynamic_behavior(self, compiler, site):
        plan = compiler.compile(site)
        with pytest.raises(CompileError):
            validate_plan(replace(plan, behaviors=plan.static_behaviors))


class TestBuildOutput:
    def test_requires_a_server_entry(self, tmp_path):
        with pytest.raises(ValueError):
            BuildOutput(root=tmp_path, server_entries=())

