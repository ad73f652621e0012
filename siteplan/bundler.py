"""
Function bundler: one self-contained ESM artifact per compute entry point.

``FunctionBundler.bundle`` hands a single build request to a compile backend
(``EsbuildBackend`` by default, a thin wrapper around the ``esbuild`` CLI)
and returns the artifact path plus the relocated source map, if any.

Link values are serialized at build time into a banner that assigns the
global ``$SITEPLAN_LINKS`` object before any bundled code runs; a caller
banner is appended after it.

Source maps are generated unless ``sourcemap=False``. With the default
(``None``) the map is moved out of the artifact directory into
``<work>/artifacts/<name>-map`` so it is not shipped with the function;
``sourcemap=True`` keeps it next to the artifact.
"""

import json
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import pulumi

LINKS_GLOBAL = "$SITEPLAN_LINKS"


class BuildFailure(Exception):
    """Bundling one entry point failed; ``errors`` holds readable messages."""

    def __init__(self, errors: list[str]):
        super().__init__("\n".join(errors))
        self.errors = errors


class HandlerNotFoundError(BuildFailure):
    pass


class CompileDiagnosticsError(BuildFailure):
    pass


class BackendError(BuildFailure):
    pass


@dataclass(frozen=True)
class Diagnostic:
    text: str
    file: str = ""
    line: int | None = None
    column: int | None = None
    line_text: str = ""

    def format(self) -> str:
        if not self.file:
            return self.text
        return f"{self.file}:{self.line}: {self.text}\n  {self.line} │ {self.line_text}"


class BackendDiagnostics(Exception):
    """Raised by a backend when compilation reports errors."""

    def __init__(self, diagnostics: list[Diagnostic]):
        super().__init__(f"{len(diagnostics)} build error(s)")
        self.diagnostics = diagnostics


@dataclass(frozen=True)
class BuildRequest:
    entry_points: list[Path]
    outfile: Path
    platform: str = "node"
    format: str = "esm"
    target: str = "esnext"
    define: dict[str, str] = field(default_factory=dict)
    inject: list[Path] = field(default_factory=list)
    banner: str = ""
    sourcemap: bool = True
    minify: bool = False
    loader: dict[str, str] = field(default_factory=dict)
    main_fields: tuple[str, ...] = ("module", "main")
    keep_names: bool = True
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BuildResult:
    """Absolute paths of the files written, and the backend's metafile."""

    output_files: list[Path]
    metafile: dict[str, Any] = field(default_factory=dict)


class BuildBackend(Protocol):
    def build(self, request: BuildRequest) -> BuildResult: ...


_ERROR_RE = re.compile(r"^\S*\s*\[ERROR\]\s+(?P<text>.+)$")
_LOCATION_RE = re.compile(r"^\s+(?P<file>[^\s].*?):(?P<line>\d+):(?P<column>\d+):$")
_SOURCE_RE = re.compile(r"^\s+\d+\s+│\s?(?P<line_text>.*)$")


def parse_esbuild_errors(stderr: str) -> list[Diagnostic]:
    """Parse esbuild's human-readable error log (``--color=false``)."""
    diagnostics: list[Diagnostic] = []
    current: dict[str, Any] | None = None
    for raw in stderr.splitlines():
        if match := _ERROR_RE.match(raw):
            if current:
                diagnostics.append(Diagnostic(**current))
            current = {"text": match["text"]}
        elif current is None:
            continue
        elif "file" not in current and (match := _LOCATION_RE.match(raw)):
            current.update(
                file=match["file"],
                line=int(match["line"]),
                column=int(match["column"]),
            )
        elif "file" in current and "line_text" not in current and (
            match := _SOURCE_RE.match(raw)
        ):
            current["line_text"] = match["line_text"]
    if current:
        diagnostics.append(Diagnostic(**current))
    return diagnostics


class EsbuildBackend:
    """Compile backend running the ``esbuild`` executable once per request."""

    def __init__(self, executable: str = "esbuild", cwd: Path | None = None):
        self.executable = executable
        self.cwd = cwd or Path.cwd()

    def command(self, request: BuildRequest, metafile: Path) -> list[str]:
        args = [
            self.executable,
            *(str(entry) for entry in request.entry_points),
            "--bundle",
            f"--platform={request.platform}",
            f"--format={request.format}",
            f"--target={request.target}",
            f"--main-fields={','.join(request.main_fields)}",
            f"--outfile={request.outfile}",
            f"--metafile={metafile}",
            "--log-level=error",
            "--color=false",
        ]
        if request.keep_names:
            args.append("--keep-names")
        if request.sourcemap:
            args.append("--sourcemap")
        if request.minify:
            args.append("--minify")
        if request.banner:
            args.append(f"--banner:js={request.banner}")
        args += [f"--define:{key}={value}" for key, value in request.define.items()]
        args += [f"--inject:{path}" for path in request.inject]
        args += [f"--loader:{ext}={loader}" for ext, loader in request.loader.items()]
        for key, value in request.extra.items():
            flag = "--" + key.replace("_", "-")
            args.append(flag if value is True else f"{flag}={value}")
        return args

    def build(self, request: BuildRequest) -> BuildResult:
        metafile = request.outfile.with_name(f"{request.outfile.name}.meta.json")
        proc = subprocess.run(
            self.command(request, metafile),
            cwd=self.cwd,
            capture_output=True,
            text=True,
            check=False,
        )
        if proc.returncode != 0:
            diagnostics = parse_esbuild_errors(proc.stderr)
            if diagnostics:
                raise BackendDiagnostics(diagnostics)
            raise RuntimeError(proc.stderr.strip() or f"esbuild exited {proc.returncode}")

        meta = json.loads(metafile.read_text())
        metafile.unlink()
        outputs = [(self.cwd / key).resolve() for key in meta.get("outputs", {})]
        return BuildResult(output_files=outputs, metafile=meta)


@dataclass(frozen=True)
class BundleOptions:
    """
    Caller options for one bundle.

    Attributes:
        links: Link name → value, exposed to the artifact as a global object.
        banner: JS appended after the links banner.
        inject: Modules prepended to the bundle (e.g. polyfills).
        sourcemap: None relocates the map, True keeps it beside the
            artifact, False disables it.
        minify: Minify the output.
        loader: File extension → loader name.
        extra: Raw backend flags.
    """

    links: dict[str, str] = field(default_factory=dict)
    banner: str = ""
    inject: list[Path] = field(default_factory=list)
    sourcemap: bool | None = None
    minify: bool = False
    loader: dict[str, str] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BundleResult:
    handler: Path
    sourcemap: Path | None = None


class FunctionBundler:
    """
    Bundles compute entry points into ``<work_dir>/artifacts``.

    Args:
        work_dir: Directory receiving artifacts and relocated source maps.
        root: Project root; handlers below it keep their relative path in
            the artifact directory.
        backend: Compile backend (defaults to EsbuildBackend).
    """

    def __init__(
        self,
        work_dir: Path,
        root: Path,
        backend: BuildBackend | None = None,
    ):
        self.work_dir = Path(work_dir)
        self.root = Path(root)
        self.backend = backend or EsbuildBackend(cwd=self.root)

    def bundle(
        self,
        name: str,
        handler: Path | str,
        options: BundleOptions | None = None,
    ) -> BundleResult:
        """
        Build ``handler`` into ``<work>/artifacts/<name>-src``.

        Raises:
            HandlerNotFoundError: ``handler`` does not exist; the backend is
                not invoked.
            CompileDiagnosticsError: The backend reported compile errors.
            BackendError: The backend failed for any other reason.
        """
        options = options or BundleOptions()
        handler = Path(handler)
        artifacts = self.work_dir / "artifacts"
        out = artifacts / f"{name}-src"
        sourcemap_out = artifacts / f"{name}-map"
        shutil.rmtree(out, ignore_errors=True)
        out.mkdir(parents=True)
        sourcemap_out.mkdir(parents=True, exist_ok=True)

        if not handler.exists():
            raise HandlerNotFoundError([f'Could not find file for handler "{handler}"'])

        entry = handler.resolve()
        target = out / self._relative_dir(handler) / "index.mjs"
        links = json.dumps(options.links)
        request = BuildRequest(
            entry_points=[entry],
            outfile=target,
            define={LINKS_GLOBAL: "{}"},
            inject=list(options.inject),
            banner="\n".join([f"globalThis.{LINKS_GLOBAL} = {links};", options.banner]),
            sourcemap=options.sourcemap is not False,
            minify=options.minify,
            loader=dict(options.loader),
            extra=dict(options.extra),
        )

        pulumi.log.debug(f"Bundling {name} from {entry}")
        try:
            result = self.backend.build(request)
        except BackendDiagnostics as exc:
            raise CompileDiagnosticsError(
                [diagnostic.format() for diagnostic in exc.diagnostics]
            ) from exc
        except Exception as exc:
            raise BackendError([str(exc)]) from exc

        sourcemap = None
        if options.sourcemap is None:
            sourcemap = self._move_sourcemap(result, sourcemap_out)
        pulumi.log.debug(f"Bundled {name} into {target}")
        return BundleResult(handler=target, sourcemap=sourcemap)

    def _relative_dir(self, handler: Path) -> Path:
        if handler.is_absolute():
            return Path()
        try:
            return handler.resolve().relative_to(self.root.resolve())
        except ValueError:
            return Path()

    @staticmethod
    def _move_sourcemap(result: BuildResult, destination: Path) -> Path | None:
        source = next(
            (path for path in result.output_files if path.name.endswith(".map")), None
        )
        if source is None:
            return None
        moved = destination / source.name
        shutil.move(source, moved)
        pulumi.log.debug(f"Moved source map to {moved}")
        return moved
