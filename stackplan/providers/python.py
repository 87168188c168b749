"""
Python provider.

Detects requirements.txt, pyproject.toml, Pipfile, setup.py or main.py.

Resolution chains:
    version          env > .python-version > runtime.txt > Pipfile > "3.13"
    package manager  env > uv.lock > poetry.lock > pdm.lock > Pipfile
                     > pyproject tool table > pip
    framework        django > fastapi > flask
    start            framework server > main.py / app.py
"""

from __future__ import annotations

import logging
import posixpath
import re
from typing import TYPE_CHECKING, Any

from stackplan.plan import WHOLE_TREE, BuildPlan, Phase, StepBuilder
from stackplan.resolver import ResolutionChain

from .common import (
    APP_DIR,
    BUILD_STEP,
    INSTALL_STEP,
    PACKAGES_STEP,
    dig,
    first_line,
    read_if_exists,
    toolchain_step,
    version_chain,
)

if TYPE_CHECKING:
    from stackplan.generate.context import GenerateContext

logger = logging.getLogger(__name__)

DEFAULT_PYTHON_VERSION = "3.13"
VENV = ".venv"
VENV_BIN = f"{APP_DIR}/{VENV}/bin"
PORT = "${PORT:-8000}"

_REQUIREMENT_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")
_LOCAL_REQUIREMENT = re.compile(r"^\s*(-e\s|\.{1,2}/|\.\s*$|file:)|@\s*file:")
_REQUIREMENT_INCLUDE = re.compile(r"^\s*(--requirement|--constraint|-r|-c)(?:\s*=\s*|\s*)(\S+)")

# Lock / manifest file -> package manager, in precedence order
_LOCK_FILES = (
    ("uv.lock", "uv"),
    ("poetry.lock", "poetry"),
    ("pdm.lock", "pdm"),
    ("Pipfile", "pipenv"),
)

# pyproject tool table -> package manager
_TOOL_TABLES = (("uv", "uv"), ("poetry", "poetry"), ("pdm", "pdm"))

_MANAGERS: dict[str, dict[str, Any]] = {
    "pip": {
        "manifests": ["requirements.txt"],
        "cache": ("pip", "/opt/pip-cache"),
        "env": {"PIP_CACHE_DIR": "/opt/pip-cache", "PIP_DISABLE_PIP_VERSION_CHECK": "1"},
    },
    "uv": {
        "manifests": ["pyproject.toml", "uv.lock", ".python-version"],
        "cache": ("uv", "/opt/uv-cache"),
        "env": {"UV_CACHE_DIR": "/opt/uv-cache", "UV_PROJECT_ENVIRONMENT": f"{APP_DIR}/{VENV}"},
        "command": "uv sync --locked --no-dev --no-install-project",
    },
    "poetry": {
        "manifests": ["pyproject.toml", "poetry.lock"],
        "cache": ("poetry", "/opt/poetry-cache"),
        "env": {"POETRY_CACHE_DIR": "/opt/poetry-cache", "POETRY_VIRTUALENVS_IN_PROJECT": "true"},
        "command": "poetry install --no-interaction --no-ansi --only main --no-root",
    },
    "pdm": {
        "manifests": ["pyproject.toml", "pdm.lock"],
        "cache": ("pdm", "/opt/pdm-cache"),
        "env": {"PDM_CACHE_DIR": "/opt/pdm-cache"},
        "command": "pdm install --check --prod --no-editable --no-self",
    },
    "pipenv": {
        "manifests": ["Pipfile", "Pipfile.lock"],
        "cache": ("pipenv", "/opt/pipenv-cache"),
        "env": {"PIPENV_CACHE_DIR": "/opt/pipenv-cache", "PIPENV_VENV_IN_PROJECT": "1"},
    },
}


class PythonProvider:
    """Plans virtualenv-based installs for pip, uv, poetry, pdm and pipenv projects."""

    @property
    def name(self) -> str:
        return "python"

    def detect(self, ctx: GenerateContext) -> bool:
        return bool(
            ctx.app.existing(["requirements.txt", "pyproject.toml", "Pipfile", "setup.py", "main.py"])
        )

    def initialize(self, ctx: GenerateContext) -> None:
        ctx.metadata.set("pythonPackageManager", self.package_manager_chain().resolve(ctx))

        dependencies = _dependency_names(ctx)
        framework = self.framework_chain(dependencies).resolve(ctx)
        if framework:
            ctx.metadata.set("pythonFramework", framework)
        ctx.metadata.set_flag("pythonGunicorn", "gunicorn" in dependencies)
        ctx.metadata.set_flag("pythonLocalDependencies", _has_local_dependencies(ctx))

    def plan(self, ctx: GenerateContext) -> None:
        version = self.version_chain().resolve(ctx)
        ctx.metadata.set("pythonVersion", version)
        manager = ctx.metadata.get("pythonPackageManager")
        if manager not in _MANAGERS:
            logger.warning(f"Unsupported Python package manager '{manager}', using pip")
            manager = "pip"
        settings = _MANAGERS[manager]

        tools = {"python": version}
        if manager in ("uv", "poetry", "pdm", "pipenv"):
            tools[manager] = "latest"
        ctx.plan.add_step(Phase.INSTALL, toolchain_step(tools))

        manifests = settings["manifests"]
        installs_project = False
        if manager == "pip":
            requirement_files = _requirement_files(ctx)
            manifests = requirement_files or manifests
            installs_project = not requirement_files and bool(
                ctx.app.existing(["pyproject.toml", "setup.py"])
            )
        full_tree = bool(ctx.metadata.get("pythonLocalDependencies")) or installs_project
        cache_purpose, cache_path = settings["cache"]
        install = (
            StepBuilder(INSTALL_STEP)
            .depends_on(PACKAGES_STEP)
            .inputs(*ctx.caches.install_inputs(manifests, full_tree))
            .env(settings["env"])
            .cache(ctx.caches.mount(cache_purpose, cache_path))
            .outputs(VENV)
        )
        if manager in ("pip", "pipenv"):
            install.exec(f"python -m venv {APP_DIR}/{VENV}")
        install.path(VENV_BIN)
        command = ctx.env.install_cmd or self._install_command(ctx, manager, installs_project)
        if command:
            install.exec(command)
        else:
            logger.debug("[python] no requirements or project file, skipping dependency install")
        ctx.plan.add_step(Phase.INSTALL, install)

        build = StepBuilder(BUILD_STEP).depends_on(INSTALL_STEP).inputs(WHOLE_TREE).outputs(WHOLE_TREE)
        if ctx.env.build_cmd:
            build.exec(ctx.env.build_cmd)
        ctx.plan.add_step(Phase.BUILD, build)

        ctx.plan.add_deploy_path(VENV_BIN)
        ctx.plan.set_deploy_env("PYTHONUNBUFFERED", "1")
        ctx.plan.set_deploy_env("PYTHONDONTWRITEBYTECODE", "1")
        ctx.plan.set_deploy_env("VIRTUAL_ENV", f"{APP_DIR}/{VENV}")

        ctx.start_command_default = self.start_chain()

    def cleanse_plan(self, plan: BuildPlan) -> BuildPlan:
        return plan

    def start_command_help(self) -> str:
        return (
            "No start command was found. Add a Procfile with a 'web:' entry, "
            "a main.py, or set STACKPLAN_START_CMD (e.g. 'gunicorn app:app')."
        )

    def _install_command(
        self, ctx: GenerateContext, manager: str, installs_project: bool
    ) -> str | None:
        if manager == "pipenv":
            if ctx.app.has_file("Pipfile.lock"):
                return "pipenv install --deploy --ignore-pipfile"
            return "pipenv install --skip-lock"
        if manager == "pip":
            if installs_project:
                return "pip install ."
            if ctx.app.has_file("requirements.txt"):
                return "pip install -r requirements.txt"
            return None
        return _MANAGERS[manager]["command"]

    # ==================== Chains ====================

    def version_chain(self) -> ResolutionChain:
        return (
            version_chain("python", lambda c: c.env.python_version, DEFAULT_PYTHON_VERSION)
            .then(".python-version", lambda c: _first_line_of(c, ".python-version"))
            .then("runtime.txt", _runtime_txt_version)
            .then("Pipfile", _pipfile_version)
        )

    def package_manager_chain(self) -> ResolutionChain:
        chain = ResolutionChain("python.package_manager", default="pip").then(
            "env", lambda c: c.env.package_manager
        )
        for lock_file, manager in _LOCK_FILES:
            chain.then(lock_file, lambda c, f=lock_file, m=manager: m if c.app.has_file(f) else None)
        chain.then("pyproject.toml", _pyproject_tool_manager)
        return chain

    def framework_chain(self, dependencies: set[str]) -> ResolutionChain:
        return (
            ResolutionChain("python.framework")
            .then(
                "django",
                lambda c: "django"
                if "django" in dependencies and c.app.has_file("manage.py")
                else None,
            )
            .then("fastapi", lambda c: "fastapi" if "fastapi" in dependencies else None)
            .then("flask", lambda c: "flask" if "flask" in dependencies else None)
        )

    def start_chain(self) -> ResolutionChain:
        return (
            ResolutionChain("python.start")
            .then("framework", _framework_start)
            .then("main.py", lambda c: "python main.py" if c.app.has_file("main.py") else None)
            .then("app.py", lambda c: "python app.py" if c.app.has_file("app.py") else None)
        )


def _first_line_of(ctx: GenerateContext, rel: str) -> str | None:
    text = read_if_exists(ctx, rel)
    return first_line(text) if text else None


def _runtime_txt_version(ctx: GenerateContext) -> str | None:
    line = _first_line_of(ctx, "runtime.txt")
    if not line:
        return None
    return line.removeprefix("python-")


def _pipfile_version(ctx: GenerateContext) -> str | None:
    if not ctx.app.has_file("Pipfile"):
        return None
    version = dig(ctx.app.read_toml("Pipfile"), "requires", "python_version")
    return version if isinstance(version, str) else None


def _pyproject_tool_manager(ctx: GenerateContext) -> str | None:
    if not ctx.app.has_file("pyproject.toml"):
        return None
    tools = dig(ctx.app.read_toml("pyproject.toml"), "tool") or {}
    for table, manager in _TOOL_TABLES:
        if table in tools:
            return manager
    return None


def _requirement_name(line: str) -> str | None:
    match = _REQUIREMENT_NAME.match(line)
    return match.group(1).lower().replace("_", "-") if match else None


def _requirement_files(
    ctx: GenerateContext,
    rel: str = "requirements.txt",
    constraints: bool = True,
    seen: list[str] | None = None,
) -> list[str]:
    """
    A requirements file plus every file it includes with -r / -c, in include order.

    Included paths are relative to the including file, as pip reads them.
    Remote includes and paths outside the tree are skipped. With
    constraints=False only -r / --requirement includes are followed.
    """
    files = seen if seen is not None else []
    if rel in files or not ctx.app.has_file(rel):
        return files
    files.append(rel)

    for line in ctx.app.read_text(rel).splitlines():
        match = _REQUIREMENT_INCLUDE.match(line)
        if not match:
            continue
        option, target = match.groups()
        if not constraints and option in ("-c", "--constraint"):
            continue
        if "://" in target:
            continue
        included = posixpath.normpath(posixpath.join(posixpath.dirname(rel), target))
        if included == ".." or included.startswith("../"):
            logger.warning(f"[python] '{rel}' includes '{target}' outside the project, skipping")
            continue
        _requirement_files(ctx, included, constraints, files)
    return files


def _dependency_names(ctx: GenerateContext) -> set[str]:
    names: set[str] = set()

    for rel in _requirement_files(ctx, constraints=False):
        for line in ctx.app.read_text(rel).splitlines():
            if line.strip().startswith(("#", "-")):
                continue
            name = _requirement_name(line)
            if name:
                names.add(name)

    if ctx.app.has_file("pyproject.toml"):
        pyproject = ctx.app.read_toml("pyproject.toml")
        for requirement in dig(pyproject, "project", "dependencies") or []:
            name = _requirement_name(requirement)
            if name:
                names.add(name)
        poetry_deps = dig(pyproject, "tool", "poetry", "dependencies") or {}
        names.update(key.lower() for key in poetry_deps if key.lower() != "python")

    if ctx.app.has_file("Pipfile"):
        names.update(key.lower() for key in dig(ctx.app.read_toml("Pipfile"), "packages") or {})

    return names


def _has_local_dependencies(ctx: GenerateContext) -> bool:
    for rel in _requirement_files(ctx):
        if any(_LOCAL_REQUIREMENT.search(line) for line in ctx.app.read_text(rel).splitlines()):
            return True

    if ctx.app.has_file("pyproject.toml"):
        pyproject = ctx.app.read_toml("pyproject.toml")
        if dig(pyproject, "tool", "uv", "workspace") is not None:
            return True
        tables = [
            dig(pyproject, "tool", "uv", "sources") or {},
            dig(pyproject, "tool", "poetry", "dependencies") or {},
        ]
        for table in tables:
            for spec in table.values():
                if isinstance(spec, dict) and ("path" in spec or spec.get("workspace")):
                    return True

    if ctx.app.has_file("Pipfile"):
        for spec in (dig(ctx.app.read_toml("Pipfile"), "packages") or {}).values():
            if isinstance(spec, dict) and "path" in spec:
                return True
    return False


def _module_with(ctx: GenerateContext, marker: str) -> str | None:
    """First of main.py / app.py containing the marker, as a module name."""
    for candidate in ("main.py", "app.py"):
        text = read_if_exists(ctx, candidate)
        if text is not None and marker in text:
            return candidate.removesuffix(".py")
    return None


def _framework_start(ctx: GenerateContext) -> str | None:
    framework = ctx.metadata.get("pythonFramework")
    gunicorn = ctx.metadata.get("pythonGunicorn")

    if framework == "django":
        wsgi = ctx.app.find_files("*/wsgi.py")
        if gunicorn and wsgi:
            module = wsgi[0].removesuffix(".py").replace("/", ".")
            return f"gunicorn --bind 0.0.0.0:{PORT} {module}:application"
        return f"python manage.py runserver 0.0.0.0:{PORT}"

    if framework == "fastapi":
        module = _module_with(ctx, "FastAPI(")
        if module:
            return f"uvicorn {module}:app --host 0.0.0.0 --port {PORT}"

    if framework == "flask":
        module = _module_with(ctx, "Flask(")
        if module and gunicorn:
            return f"gunicorn --bind 0.0.0.0:{PORT} {module}:app"
        if module:
            return f"python {module}.py"
    return None
