from __future__ import annotations

import pytest

from imgcopy import cli
from imgcopy.commands import copy as copy_command
from imgcopy.core.errors import RegistryError


class _NoopRegistry:
    def __init__(self, options) -> None:
        self.options = options

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        return None


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    for key in ("IMGCOPY_CONCURRENCY", "IMGCOPY_REGISTRY_USERNAME", "IMGCOPY_LOG_FORMAT"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(copy_command, "Registry", _NoopRegistry)


def test_missing_source_exits_non_zero(capsys) -> None:
    rc = cli.main(["copy", "--to-repo", "dst.example.com/relocated"])

    assert rc == 1
    err = capsys.readouterr().err
    assert "Error: Expected either --lock, --bundle (-b), --image (-i), or --from-tar" in err


def test_tar_to_tar_is_rejected(capsys) -> None:
    rc = cli.main(["copy", "--from-tar", "in.tar", "--to-tar", "out.tar"])

    assert rc == 1
    assert "Cannot use tar src with tar dst" in capsys.readouterr().err


def test_flags_and_environment_build_options(monkeypatch) -> None:
    monkeypatch.setenv("IMGCOPY_CONCURRENCY", "9")
    monkeypatch.setenv("IMGCOPY_REGISTRY_USERNAME", "robot")
    captured = {}

    def _fake_execute(options, registry):
        captured["options"] = options
        captured["registry"] = registry

    monkeypatch.setattr(copy_command, "execute_copy", _fake_execute)

    rc = cli.main(
        [
            "copy",
            "-b",
            "reg.example.com/bundles/app:v1",
            "--to-repo",
            "dst.example.com/relocated",
            "--registry-password",
            "hunter2",
            "--no-registry-verify-certs",
        ]
    )

    assert rc == 0
    options = captured["options"]
    assert options.bundle_src == "reg.example.com/bundles/app:v1"
    assert options.repo_dst == "dst.example.com/relocated"
    assert options.concurrency == 9
    assert options.registry.username == "robot"
    assert options.registry.password == "hunter2"
    assert options.registry.verify_certs is False
    assert captured["registry"].options == options.registry


def test_concurrency_flag_overrides_environment(monkeypatch) -> None:
    monkeypatch.setenv("IMGCOPY_CONCURRENCY", "9")
    captured = {}
    monkeypatch.setattr(
        copy_command, "execute_copy", lambda options, registry: captured.update(options=options)
    )

    rc = cli.main(["copy", "-i", "reg.example.com/a:v1", "--to-tar", "out.tar", "--concurrency", "2"])

    assert rc == 0
    assert captured["options"].concurrency == 2


def test_registry_errors_are_reported(monkeypatch, capsys) -> None:
    def _fail(options, registry):
        raise RegistryError("fetching manifest reg.example.com/a:v1: UNAUTHORIZED", 401)

    monkeypatch.setattr(copy_command, "execute_copy", _fail)

    rc = cli.main(["copy", "-i", "reg.example.com/a:v1", "--to-tar", "out.tar"])

    assert rc == 1
    assert "Error: fetching manifest reg.example.com/a:v1: UNAUTHORIZED (status 401)" in (
        capsys.readouterr().err
    )


def test_copy_requires_subcommand() -> None:
    with pytest.raises(SystemExit):
        cli.main([])
