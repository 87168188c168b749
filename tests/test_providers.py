"""
Tests for the language providers, run through the full generation pass.
"""

import pytest

from stackplan.errors import MissingStartCommandWarning
from stackplan.generate import generate_build_plan
from stackplan.plan import WHOLE_TREE, CacheSharing, Phase, StartCommandStatus, cleanse_plan


def commands(step) -> list[str]:
    return [command.display() for command in step.commands]


@pytest.fixture
def plan_for(make_app):
    def _plan(files: dict, env: dict | None = None):
        return generate_build_plan(make_app(files), env)

    return _plan


# =============================================================================
# Go
# =============================================================================


class TestGoProvider:
    @pytest.fixture
    def go_app(self):
        return {
            "go.mod": "module example.com/api\n\ngo 1.22\n",
            "go.sum": "",
            "main.go": "package main\n",
        }

    def test_plan(self, plan_for, go_app):
        result = plan_for(go_app)
        plan = result.plan

        assert result.provider == "golang"
        assert plan.phases == [Phase.INSTALL, Phase.BUILD]
        assert commands(plan.step("packages")) == ["$ mise use --global go@1.22"]

        install = plan.step("install")
        assert install.inputs == ("go.mod", "go.sum")
        assert install.cache_ids == ("golang:go-mod",)
        assert commands(install) == ["$ go mod download"]

        build = plan.step("build")
        assert build.depends_on == ("install",)
        assert build.inputs == (WHOLE_TREE,)
        assert build.env == {"CGO_ENABLED": "0"}
        assert commands(build) == ['$ go build -ldflags="-w -s" -o out .']
        assert build.outputs == ("out",)

        assert plan.deploy.start_command == "./out"
        assert plan.deploy.start_command_source == "provider"

    def test_version_override(self, plan_for, go_app):
        result = plan_for(go_app, {"STACKPLAN_GO_VERSION": "1.21"})
        assert result.metadata["goVersion"] == "1.21"

    def test_default_version(self, plan_for):
        result = plan_for({"go.mod": "module x\n"})
        assert result.metadata["goVersion"] == "1.23"

    def test_cmd_layout(self, plan_for):
        result = plan_for({"go.mod": "module x\n\ngo 1.22\n", "cmd/server/main.go": ""})
        assert commands(result.plan.step("build")) == [
            '$ go build -ldflags="-w -s" -o out ./cmd/server'
        ]

    def test_local_replace_copies_tree(self, plan_for):
        result = plan_for(
            {
                "go.mod": "module x\n\ngo 1.22\n\nreplace example.com/lib => ../lib\n",
                "main.go": "",
            }
        )
        assert result.metadata["goLocalReplace"] is True
        assert result.plan.step("install").inputs == (WHOLE_TREE,)

    def test_main_go_without_module(self, plan_for):
        result = plan_for({"main.go": "package main\n"})
        assert result.plan.step("install") is None
        assert result.plan.step("build").depends_on == ("packages",)

    def test_disabled_caches_merge_install_steps(self, plan_for, go_app):
        result = plan_for(go_app, {"STACKPLAN_DISABLE_CACHES": "1"})
        plan = result.plan

        install = plan.layer(Phase.INSTALL).steps
        assert [s.id for s in install] == ["packages"]
        assert commands(install[0]) == ["$ mise use --global go@1.22", "$ go mod download"]
        assert all(not step.caches for step in plan.steps())
        assert plan.step("build").depends_on == ("packages",)

    def test_merged_plan_is_stable_under_cleanse(self, plan_for, go_app):
        plan = plan_for(go_app, {"STACKPLAN_DISABLE_CACHES": "1"}).plan
        again = cleanse_plan(plan)
        assert again == plan
        assert again.to_json() == plan.to_json()


# =============================================================================
# Rust
# =============================================================================


class TestRustProvider:
    def test_plan(self, plan_for):
        result = plan_for(
            {
                "Cargo.toml": '[package]\nname = "api"\nversion = "0.1.0"\n',
                "Cargo.lock": "",
                "src/main.rs": "fn main() {}\n",
            }
        )
        plan = result.plan

        assert result.provider == "rust"
        assert result.metadata["rustVersion"] == "1.85"

        install = plan.step("install")
        assert install.inputs == ("Cargo.toml", "Cargo.lock")
        assert install.cache_ids == ("rust:registry", "rust:git")
        assert commands(install) == ["$ cargo fetch"]

        build = plan.step("build")
        assert commands(build) == [
            "$ cargo build --release",
            "$ mkdir -p bin && cp target/release/api bin/",
        ]
        target = [c for c in build.caches if c.id == "rust:target"][0]
        assert target.sharing == CacheSharing.LOCKED
        assert build.outputs == ("bin/api",)

        assert plan.deploy.start_command == "./bin/api"

    def test_bin_target_and_toolchain(self, plan_for):
        result = plan_for(
            {
                "Cargo.toml": (
                    '[package]\nname = "api"\n\n[[bin]]\nname = "server"\npath = "src/server.rs"\n'
                ),
                "rust-toolchain.toml": '[toolchain]\nchannel = "1.80.0"\n',
            }
        )
        assert result.metadata["rustVersion"] == "1.80.0"
        assert result.plan.deploy.start_command == "./bin/server"

    def test_workspace_without_package(self, plan_for):
        with pytest.warns(MissingStartCommandWarning):
            result = plan_for({"Cargo.toml": '[workspace]\nmembers = ["crates/*"]\n'})

        assert result.metadata["rustWorkspace"] is True
        assert result.plan.step("install").inputs == (WHOLE_TREE,)
        assert result.plan.deploy.status == StartCommandStatus.UNSET

    def test_workspace_member_override(self, plan_for):
        result = plan_for(
            {"Cargo.toml": '[workspace]\nmembers = ["crates/*"]\n'},
            {"STACKPLAN_WORKSPACE": "worker"},
        )
        assert result.plan.deploy.start_command == "./bin/worker"

    def test_rust_version_inherited_from_workspace(self, plan_for):
        result = plan_for(
            {
                "Cargo.toml": (
                    '[workspace]\nmembers = ["."]\n\n'
                    '[workspace.package]\nrust-version = "1.80"\n\n'
                    '[package]\nname = "api"\nrust-version.workspace = true\n'
                ),
            }
        )
        assert result.metadata["rustVersion"] == "1.80"
        assert commands(result.plan.step("packages")) == ["$ mise use --global rust@1.80"]
        assert result.plan.deploy.start_command == "./bin/api"

    def test_inherited_rust_version_without_workspace_value(self, plan_for):
        result = plan_for(
            {"Cargo.toml": '[workspace]\n\n[package]\nname = "api"\nrust-version.workspace = true\n'}
        )
        assert result.metadata["rustVersion"] == "1.85"


# =============================================================================
# Python
# =============================================================================


class TestPythonProvider:
    def test_flask_with_gunicorn(self, plan_for, flask_app):
        result = plan_for(flask_app)
        plan = result.plan

        assert result.provider == "python"
        assert result.metadata["pythonPackageManager"] == "pip"
        assert result.metadata["pythonFramework"] == "flask"
        assert result.metadata["pythonGunicorn"] is True

        install = plan.step("install")
        assert install.inputs == ("requirements.txt",)
        assert install.cache_ids == ("python:pip",)
        assert commands(install) == [
            "$ python -m venv /app/.venv",
            "PATH += /app/.venv/bin",
            "$ pip install -r requirements.txt",
        ]
        assert install.outputs == (".venv",)

        assert plan.deploy.start_command == "gunicorn --bind 0.0.0.0:${PORT:-8000} app:app"
        assert plan.deploy.paths == ("/app/.venv/bin",)
        assert plan.deploy.env["PYTHONUNBUFFERED"] == "1"

    def test_uv_fastapi(self, plan_for):
        result = plan_for(
            {
                "pyproject.toml": '[project]\nname = "svc"\ndependencies = ["fastapi>=0.110", "uvicorn"]\n',
                "uv.lock": "",
                ".python-version": "3.12\n",
                "main.py": "from fastapi import FastAPI\napp = FastAPI()\n",
            }
        )
        plan = result.plan

        assert result.metadata["pythonPackageManager"] == "uv"
        assert result.metadata["pythonVersion"] == "3.12"
        assert commands(plan.step("packages")) == [
            "$ mise use --global python@3.12",
            "$ mise use --global uv@latest",
        ]
        install = plan.step("install")
        assert install.inputs == ("pyproject.toml", "uv.lock", ".python-version")
        assert commands(install)[-1] == "$ uv sync --locked --no-dev --no-install-project"
        assert plan.deploy.start_command == "uvicorn main:app --host 0.0.0.0 --port ${PORT:-8000}"

    def test_django(self, plan_for):
        result = plan_for(
            {
                "requirements.txt": "Django==5.0\ngunicorn\n",
                "manage.py": "",
                "mysite/wsgi.py": "",
            }
        )
        assert result.metadata["pythonFramework"] == "django"
        assert (
            result.plan.deploy.start_command
            == "gunicorn --bind 0.0.0.0:${PORT:-8000} mysite.wsgi:application"
        )

    def test_local_requirement_copies_tree(self, plan_for):
        result = plan_for({"requirements.txt": "-e ./libs/core\nflask\n", "main.py": ""})
        assert result.metadata["pythonLocalDependencies"] is True
        assert result.plan.step("install").inputs == (WHOLE_TREE,)

    def test_pyproject_without_lock_installs_project(self, plan_for):
        result = plan_for(
            {
                "pyproject.toml": '[project]\nname = "svc"\ndependencies = ["requests>=2"]\n',
                "main.py": "print('hi')\n",
            }
        )
        install = result.plan.step("install")
        assert install.inputs == (WHOLE_TREE,)
        assert commands(install)[-1] == "$ pip install ."
        assert result.plan.deploy.start_command == "python main.py"

    def test_script_only_tree_skips_dependency_install(self, plan_for):
        result = plan_for({"main.py": "print('hi')\n"})
        install = result.plan.step("install")
        assert install.inputs == ()
        assert commands(install) == ["$ python -m venv /app/.venv", "PATH += /app/.venv/bin"]
        assert result.plan.deploy.start_command == "python main.py"

    def test_script_only_tree_keeps_install_override(self, plan_for):
        result = plan_for({"main.py": ""}, {"STACKPLAN_INSTALL_CMD": "pip install requests"})
        assert commands(result.plan.step("install"))[-1] == "$ pip install requests"

    def test_setup_py_installs_project(self, plan_for):
        result = plan_for({"setup.py": "from setuptools import setup\nsetup()\n", "main.py": ""})
        install = result.plan.step("install")
        assert install.inputs == (WHOLE_TREE,)
        assert commands(install)[-1] == "$ pip install ."

    def test_included_requirement_files_are_inputs(self, plan_for):
        result = plan_for(
            {
                "requirements.txt": "-r requirements/base.txt\n-c constraints.txt\n",
                "requirements/base.txt": "flask\n",
                "constraints.txt": "django==5.0\n",
                "app.py": "from flask import Flask\napp = Flask(__name__)\n",
            }
        )
        install = result.plan.step("install")
        assert install.inputs == ("requirements.txt", "requirements/base.txt", "constraints.txt")
        assert commands(install)[-1] == "$ pip install -r requirements.txt"
        assert result.metadata["pythonFramework"] == "flask"

    def test_nested_includes_resolve_relative_to_including_file(self, plan_for):
        result = plan_for(
            {
                "requirements.txt": "--requirement requirements/prod.txt\n",
                "requirements/prod.txt": "-r base.txt\ngunicorn\n",
                "requirements/base.txt": "-r prod.txt\nflask\n",
                "app.py": "from flask import Flask\napp = Flask(__name__)\n",
            }
        )
        assert result.plan.step("install").inputs == (
            "requirements.txt",
            "requirements/prod.txt",
            "requirements/base.txt",
        )
        assert result.metadata["pythonGunicorn"] is True
        assert result.plan.deploy.start_command == "gunicorn --bind 0.0.0.0:${PORT:-8000} app:app"

    def test_local_requirement_in_included_file_copies_tree(self, plan_for):
        result = plan_for(
            {"requirements.txt": "-r base.txt\n", "base.txt": "-e ./libs/core\n", "main.py": ""}
        )
        assert result.metadata["pythonLocalDependencies"] is True
        assert result.plan.step("install").inputs == (WHOLE_TREE,)

    def test_poetry_from_tool_table(self, plan_for):
        result = plan_for(
            {
                "pyproject.toml": (
                    '[tool.poetry]\nname = "svc"\n\n'
                    '[tool.poetry.dependencies]\npython = "^3.12"\nflask = "^3.0"\n'
                ),
                "app.py": "from flask import Flask\napp = Flask(__name__)\n",
            }
        )
        assert result.metadata["pythonPackageManager"] == "poetry"
        assert result.metadata["pythonFramework"] == "flask"
        assert result.plan.deploy.start_command == "python app.py"

    def test_version_from_runtime_txt(self, plan_for):
        result = plan_for({"requirements.txt": "", "runtime.txt": "python-3.11.9\n", "main.py": ""})
        assert result.metadata["pythonVersion"] == "3.11.9"

    def test_no_entrypoint_warns(self, plan_for):
        with pytest.warns(MissingStartCommandWarning, match="python"):
            result = plan_for({"requirements.txt": "requests\n"})
        assert result.start_command_unset
        assert result.warnings


# =============================================================================
# Node
# =============================================================================


class TestNodeProvider:
    def test_express_app(self, plan_for, express_app):
        result = plan_for(express_app)
        plan = result.plan

        assert result.provider == "node"
        assert result.metadata["nodePackageManager"] == "npm"
        assert result.metadata["nodeVersion"] == "22"

        install = plan.step("install")
        assert install.inputs == ("package.json", "package-lock.json")
        assert install.env == {"CI": "true"}
        assert install.cache_ids == ("node:npm",)
        assert commands(install) == ["$ npm ci", "PATH += /app/node_modules/.bin"]

        build = plan.step("build")
        assert commands(build) == ["$ npm run build"]
        assert build.cache_ids == ("node:node-modules",)

        assert plan.deploy.start_command == "npm run start"
        assert plan.deploy.env == {"NODE_ENV": "production"}
        assert plan.deploy.paths == ("/app/node_modules/.bin",)

    def test_lifecycle_hooks_copy_tree(self, plan_for):
        result = plan_for(
            {
                "package.json": {"scripts": {"postinstall": "node scripts/setup.js", "start": "node ."}},
                "package-lock.json": {},
            }
        )
        assert result.metadata["nodeLifecycleHooks"] is True
        assert result.plan.step("install").inputs == (WHOLE_TREE,)

    def test_pnpm_workspace(self, plan_for):
        result = plan_for(
            {
                "package.json": {"scripts": {"start": "node server.js"}},
                "pnpm-lock.yaml": "lockfileVersion: '9.0'\n",
                "pnpm-workspace.yaml": "packages:\n  - 'packages/*'\n",
            }
        )
        plan = result.plan
        assert result.metadata["nodePackageManager"] == "pnpm"
        assert result.metadata["nodeWorkspaces"] is True
        assert commands(plan.step("packages"))[-1] == "$ corepack enable"
        assert plan.step("install").inputs == (WHOLE_TREE,)
        assert commands(plan.step("install"))[0] == "$ pnpm install --frozen-lockfile"
        assert plan.step("install").cache_ids == ("node:pnpm",)
        assert plan.deploy.start_command == "pnpm run start"

    def test_package_manager_field(self, plan_for):
        result = plan_for({"package.json": {"packageManager": "yarn@4.1.0", "main": "index.js"}, "index.js": ""})
        assert result.metadata["nodePackageManager"] == "yarn"
        assert result.plan.deploy.start_command == "node index.js"

    def test_version_sources(self, plan_for):
        result = plan_for({"package.json": {"engines": {"node": ">=20"}}, ".nvmrc": "v18\n", "index.js": ""})
        assert result.metadata["nodeVersion"] == "20"
        assert commands(result.plan.step("packages"))[0] == "$ mise use --global node@20"

        result = plan_for({"package.json": {}, ".nvmrc": "v18.19.0\n", "index.js": ""})
        assert result.metadata["nodeVersion"] == "18.19.0"

    @pytest.mark.parametrize(
        "engines, expected",
        [
            ("20.11.0", "20.11.0"),
            ("v20", "20"),
            (">=18", "18"),
            ("^20.1.0", "20"),
            ("~18.19", "18"),
            ("18.x", "18"),
            (">=18 <21", "18"),
            ("lts/*", "22"),
        ],
    )
    def test_engines_ranges_pinned_to_major(self, plan_for, engines, expected):
        result = plan_for({"package.json": {"engines": {"node": engines}}, "index.js": ""})
        assert result.metadata["nodeVersion"] == expected

    def test_alias_in_nvmrc_falls_through(self, plan_for):
        result = plan_for(
            {"package.json": {}, ".nvmrc": "lts/iron\n", ".node-version": "20.11.1\n", "index.js": ""}
        )
        assert result.metadata["nodeVersion"] == "20.11.1"
        version = next(r for r in result.resolutions if r.name == "node.version")
        assert version.source == ".node-version"

    def test_vite_framework_start(self, plan_for):
        result = plan_for(
            {
                "package.json": {
                    "scripts": {"build": "vite build"},
                    "devDependencies": {"vite": "^5.0.0"},
                }
            }
        )
        plan = result.plan
        assert result.metadata["nodeFramework"] == "vite"
        assert plan.step("build").outputs == (WHOLE_TREE, "dist")
        assert plan.deploy.start_command == "caddy file-server --root dist --listen :${PORT:-80}"
        assert commands(plan.step("install")) == ["$ npm install", "PATH += /app/node_modules/.bin"]

    def test_next_build_cache(self, plan_for):
        result = plan_for(
            {
                "package.json": {
                    "scripts": {"build": "next build"},
                    "dependencies": {"next": "14.2.0", "react": "18.3.0"},
                }
            }
        )
        build = result.plan.step("build")
        assert "node:next" in build.cache_ids
        assert result.plan.deploy.start_command == "npx next start --port ${PORT:-3000}"

    def test_prune_step(self, plan_for, express_app):
        result = plan_for(express_app, {"STACKPLAN_PRUNE_DEPS": "true"})
        plan = result.plan
        assert plan.phases == [Phase.INSTALL, Phase.BUILD, Phase.DEPLOY]
        prune = plan.step("prune")
        assert prune.depends_on == ("build",)
        assert commands(prune) == ["$ npm prune --omit=dev"]

    def test_build_override(self, plan_for, express_app):
        result = plan_for(express_app, {"STACKPLAN_BUILD_CMD": "npm run compile"})
        assert commands(result.plan.step("build")) == ["$ npm run compile"]


# =============================================================================
# Static files, shell scripts and fallback
# =============================================================================


class TestStaticfileProvider:
    def test_root_index(self, plan_for):
        result = plan_for({"index.html": "<h1>hi</h1>"})
        plan = result.plan
        assert result.provider == "staticfile"
        assert result.metadata["staticRoot"] == "."
        assert commands(plan.step("packages")) == ["$ mise use --global caddy@latest"]
        assert plan.deploy.start_command == "caddy file-server --root /app --listen :${PORT:-80}"

    def test_public_dir(self, plan_for):
        result = plan_for({"public/index.html": ""})
        assert result.metadata["staticRoot"] == "public"
        assert result.plan.step("build").inputs == ("public",)

    def test_staticfile_root(self, plan_for):
        result = plan_for({"Staticfile": "root: dist/\n", "dist/index.html": ""})
        assert result.metadata["staticRoot"] == "dist"
        assert "--root /app/dist " in result.plan.deploy.start_command

    def test_env_root(self, plan_for):
        result = plan_for({"site/index.html": ""}, {"STACKPLAN_STATIC_ROOT": "/site/"})
        assert result.provider == "staticfile"
        assert result.metadata["staticRoot"] == "site"


class TestShellProvider:
    def test_start_sh(self, plan_for):
        result = plan_for({"start.sh": "#!/bin/sh\necho hi\n"})
        plan = result.plan
        assert result.provider == "shell"
        assert plan.phases == [Phase.BUILD]
        assert commands(plan.step("build")) == ["$ chmod +x start.sh"]
        assert plan.deploy.start_command == "sh start.sh"

    def test_custom_script(self, plan_for):
        result = plan_for({"run.sh": "#!/bin/sh\n"}, {"STACKPLAN_SHELL_SCRIPT": "run.sh"})
        assert result.provider == "shell"
        assert result.plan.deploy.start_command == "sh run.sh"

    def test_missing_custom_script(self, plan_for):
        with pytest.warns(MissingStartCommandWarning):
            result = plan_for({}, {"STACKPLAN_SHELL_SCRIPT": "missing.sh"})
        assert result.provider == "shell"
        assert result.start_command_unset


class TestFallbackProvider:
    def test_unknown_project(self, plan_for):
        with pytest.warns(MissingStartCommandWarning, match="not recognized"):
            result = plan_for({"README.md": "# hi\n"})
        plan = result.plan
        assert result.provider == "fallback"
        assert plan.step("build").inputs == (WHOLE_TREE,)
        assert plan.deploy.status == StartCommandStatus.UNSET

    def test_override_start(self, plan_for):
        result = plan_for(
            {"server": ""},
            {"STACKPLAN_BUILD_CMD": "make", "STACKPLAN_START_CMD": "./server"},
        )
        assert commands(result.plan.step("build")) == ["$ make"]
        assert result.plan.deploy.start_command == "./server"
        assert result.plan.deploy.start_command_source == "override"
