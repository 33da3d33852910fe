from __future__ import annotations

import json
from pathlib import Path
import subprocess

import pytest

from tfprov.config import ProviderSettings
from tfprov.errors import DestroyFailed, OutputParseFailed, ToolUnavailable, ToolVersionUnsupported
from tfprov.proc import RunArgs
from tfprov.terraform import TerraformCli, parse_version

MODULE = Path("/work/project/infra")


def _result(*, args: list[str], returncode: int, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=args, returncode=returncode, stdout=stdout, stderr=stderr)


def test_version_returns_installed_version() -> None:
    calls: list[list[str]] = []

    def runner(args: RunArgs) -> subprocess.CompletedProcess[str]:
        calls.append(args.cmd)
        return _result(args=args.cmd, returncode=0, stdout=json.dumps({"terraform_version": "1.6.2", "platform": "linux_amd64"}))

    assert TerraformCli(runner=runner).version() == "1.6.2"
    assert calls == [["terraform", "version", "-json"]]


def test_version_uses_configured_executable() -> None:
    calls: list[list[str]] = []

    def runner(args: RunArgs) -> subprocess.CompletedProcess[str]:
        calls.append(args.cmd)
        return _result(args=args.cmd, returncode=0, stdout=json.dumps({"terraform_version": "1.5.0"}))

    TerraformCli(settings=ProviderSettings(terraform_path="/opt/bin/terraform"), runner=runner).version()
    assert calls[0][0] == "/opt/bin/terraform"


def test_version_nonzero_exit_means_tool_unavailable() -> None:
    def runner(args: RunArgs) -> subprocess.CompletedProcess[str]:
        return _result(args=args.cmd, returncode=127, stderr="terraform: command not found")

    with pytest.raises(ToolUnavailable) as exc_info:
        TerraformCli(runner=runner).version()
    assert exc_info.value.diagnostic == "terraform: command not found"


@pytest.mark.parametrize("stdout", ["Terraform v1.1.7", json.dumps({"version": "1.1.7"}), json.dumps({"terraform_version": "dev"})])
def test_version_rejects_unexpected_payloads(stdout: str) -> None:
    def runner(args: RunArgs) -> subprocess.CompletedProcess[str]:
        return _result(args=args.cmd, returncode=0, stdout=stdout)

    with pytest.raises(ToolVersionUnsupported):
        TerraformCli(runner=runner).version()


def test_parse_version_ignores_prerelease_suffix() -> None:
    assert parse_version("1.7.0-beta1") == (1, 7, 0)
    assert parse_version("v1.1.7") == (1, 1, 7)
    with pytest.raises(ValueError):
        parse_version("1.7")


def test_parse_version_chains_non_numeric_components() -> None:
    with pytest.raises(ValueError) as exc_info:
        parse_version("1.x.7")
    assert isinstance(exc_info.value.__cause__, ValueError)


def test_apply_uses_plan_artifact_and_var_file() -> None:
    seen: list[RunArgs] = []

    def runner(args: RunArgs) -> subprocess.CompletedProcess[str]:
        seen.append(args)
        return _result(args=args.cmd, returncode=0, stdout="Apply complete! Resources: 1 added, 0 changed, 0 destroyed.")

    out = TerraformCli(runner=runner).apply(
        MODULE,
        var_file=Path("/work/project/.azure/dev/main.tfvars.json"),
        plan_file=Path("/work/project/.azure/dev/main.tfplan"),
        state_file=Path("/work/project/.azure/dev/terraform.tfstate"),
    )

    assert out.text.startswith("Apply complete!")
    assert seen[0].cmd == [
        "terraform",
        f"-chdir={MODULE}",
        "apply",
        "-var-file=/work/project/.azure/dev/main.tfvars.json",
        "-state=/work/project/.azure/dev/terraform.tfstate",
        "/work/project/.azure/dev/main.tfplan",
    ]
    assert seen[0].interactive is True


def test_destroy_failure_carries_stderr() -> None:
    def runner(args: RunArgs) -> subprocess.CompletedProcess[str]:
        return _result(args=args.cmd, returncode=1, stderr="Error: deleting Resource Group: context deadline exceeded")

    with pytest.raises(DestroyFailed) as exc_info:
        TerraformCli(runner=runner).destroy(MODULE, force_delete=True)
    assert exc_info.value.retryable is True
    assert "context deadline exceeded" in str(exc_info.value)


def test_output_preserves_complex_types_verbatim() -> None:
    payload = {
        "SUBNETS": {"sensitive": False, "type": ["list", "string"], "value": ["a", "b"]},
        "DB_PASSWORD": {"sensitive": True, "type": "string", "value": "p@ss"},
    }

    def runner(args: RunArgs) -> subprocess.CompletedProcess[str]:
        assert "-json" in args.cmd
        return _result(args=args.cmd, returncode=0, stdout=json.dumps(payload))

    outputs = TerraformCli(runner=runner).output(MODULE)

    assert outputs["SUBNETS"].type == ["list", "string"]
    assert outputs["SUBNETS"].value == ["a", "b"]
    assert outputs["DB_PASSWORD"].sensitive is True


def test_output_invalid_json_is_a_parse_failure() -> None:
    def runner(args: RunArgs) -> subprocess.CompletedProcess[str]:
        return _result(args=args.cmd, returncode=0, stdout="No outputs found")

    with pytest.raises(OutputParseFailed) as exc_info:
        TerraformCli(runner=runner).output(MODULE)
    assert exc_info.value.result.stdout == "No outputs found"
