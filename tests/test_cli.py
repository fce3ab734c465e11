import io
import json
import logging
import os

import httpx
import pytest

from helpers import FakeRunner, ScriptedPrompt
from zero_trust_lab import cli
from zero_trust_lab.audit import InMemoryAuditStore, JsonAuditLogger
from zero_trust_lab.config import LabConfig
from zero_trust_lab.console import Confirmer, Console


@pytest.fixture
def terraform_installed(monkeypatch):
    monkeypatch.setattr("zero_trust_lab.commands.shutil.which", lambda name: f"/usr/bin/{name}")


def fake_context(lab_config, runner, graph_session=None):
    def factory(args, console, prompt):
        return cli.CliContext(
            config=lab_config,
            console=console,
            confirmer=Confirmer(prompt=prompt, assume_yes=getattr(args, "yes", False)),
            audit=JsonAuditLogger(name="zero_trust_lab.cli-tests", level=logging.CRITICAL, stream=io.StringIO()),
            runner=runner,
            graph_session=graph_session,
        )

    return factory


def test_no_command_prints_help_and_succeeds(capsys):
    assert cli.main([]) == 0
    assert "usage: zero-trust-lab" in capsys.readouterr().out


def test_users_without_subcommand_prints_help(capsys):
    assert cli.main(["users"]) == 0
    assert "create" in capsys.readouterr().out


def test_help_flag_exits_zero():
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--help"])
    assert excinfo.value.code == 0


def test_missing_terraform_is_fatal(monkeypatch, console, output, lab_config):
    monkeypatch.setattr("zero_trust_lab.commands.shutil.which", lambda name: None)

    code = cli.main(["deploy", "--yes"], console=console, context_factory=fake_context(lab_config, FakeRunner()))

    assert code == 1
    assert "terraform is not installed" in output.getvalue()


def test_exhausted_azure_ad_retries_exit_one(terraform_installed, console, output, lab_config):
    runner = FakeRunner()
    runner.fail("apply")
    lab_config.generator("azure_ad").retry_delay_seconds = 0

    code = cli.main(["deploy", "--yes"], console=console, context_factory=fake_context(lab_config, runner))

    assert code == 1
    assert len(runner.commands("apply")) == 3
    assert "azure_ad deployment failed after 3 attempt(s)" in output.getvalue()


def test_deploy_summary(terraform_installed, console, output, lab_config):
    code = cli.main(
        ["deploy", "--target", "storage", "--yes"],
        console=console,
        context_factory=fake_context(lab_config, FakeRunner()),
    )

    assert code == 0
    assert "Summary: 1 succeeded, 0 failed, 0 skipped" in output.getvalue()


def test_unknown_target_exit_one(terraform_installed, console, output, lab_config):
    code = cli.main(
        ["destroy", "--target", "network"],
        console=console,
        context_factory=fake_context(lab_config, FakeRunner()),
    )
    assert code == 1
    assert "[-] Unknown generator(s): network\n" in output.getvalue()


def test_full_cleanup_requires_destroy(terraform_installed, console, output, lab_config):
    runner = FakeRunner()
    code = cli.main(
        ["full-cleanup"],
        prompt=ScriptedPrompt("destroy"),
        console=console,
        context_factory=fake_context(lab_config, runner),
    )

    assert code == 0
    assert runner.calls == []
    assert "Cleanup cancelled" in output.getvalue()


def test_delete_state_with_yes_uses_real_context(tmp_path, monkeypatch, console):
    state = tmp_path / "generators" / "storage" / "terraform.tfstate"
    state.parent.mkdir(parents=True)
    state.write_text("{}", encoding="utf-8")
    config_file = tmp_path / "lab.yaml"
    config_file.write_text("root: .\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    code = cli.main(["--config", str(config_file), "delete-state", "--yes"], console=console)

    assert code == 0
    assert not state.exists()


def test_users_generate(tmp_path, monkeypatch, console):
    monkeypatch.chdir(tmp_path)

    code = cli.main(
        ["users", "generate", "--count", "2", "--domain", "lab.test", "--output", "users.csv"],
        console=console,
    )

    assert code == 0
    assert (tmp_path / "users.csv").read_text(encoding="utf-8").splitlines()[1] == (
        "Lab User 002,labuser002,labuser002@lab.test"
    )


def test_users_create_missing_csv_is_fatal(tmp_path, monkeypatch, console, output):
    monkeypatch.chdir(tmp_path)

    code = cli.main(["users", "create", "--csv", "nope.csv"], console=console)

    assert code == 1
    assert "User CSV not found" in output.getvalue()


def test_users_create_requires_service_principal(tmp_path, monkeypatch, console, output):
    for name in ("ARM_CLIENT_ID", "ARM_CLIENT_SECRET", "ARM_TENANT_ID", "ARM_SUBSCRIPTION_ID"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    (tmp_path / "users.csv").write_text("Alice,alice,alice@lab.test\n", encoding="utf-8")

    code = cli.main(["users", "create", "--csv", "users.csv"], console=console)

    assert code == 1
    assert "ARM_CLIENT_ID" in output.getvalue()


def test_users_delete_declined(tmp_path, console, output):
    csv_path = tmp_path / "users.csv"
    csv_path.write_text("Alice,alice,alice@lab.test\n", encoding="utf-8")

    code = cli.main(
        ["users", "delete", "--csv", str(csv_path)],
        prompt=ScriptedPrompt("yes"),
        console=console,
        context_factory=fake_context(LabConfig(root=tmp_path), FakeRunner()),
    )

    assert code == 0
    assert "Skipping user deletion" in output.getvalue()


def test_env_file_is_loaded_without_overriding_environment(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("ARM_CLIENT_ID=from-file\nARM_TENANT_ID=file-tenant\n", encoding="utf-8")
    monkeypatch.setenv("ARM_CLIENT_ID", "from-shell")
    monkeypatch.delenv("ARM_TENANT_ID", raising=False)
    args = cli.build_parser().parse_args(["--env-file", str(env_file), "orphans"])

    ctx = cli.load_context(args, Console(stream=io.StringIO()), ScriptedPrompt(), audit_stream=io.StringIO())

    assert os.environ["ARM_CLIENT_ID"] == "from-shell"
    assert os.environ["ARM_TENANT_ID"] == "file-tenant"
    assert isinstance(ctx.config, LabConfig)
    os.environ.pop("ARM_TENANT_ID", None)


def test_suppressed_warnings_are_summarised(terraform_installed, console, output, lab_config):
    runner = FakeRunner()
    runner.fail("apply", times=1)
    lab_config.generator("azure_ad").retry_delay_seconds = 0

    def factory(args, console, prompt):
        ctx = fake_context(lab_config, runner)(args, console, prompt)
        ctx.audit.store = InMemoryAuditStore()
        return ctx

    code = cli.main(["deploy", "--target", "azure_ad", "--yes"], console=console, context_factory=factory)

    assert code == 0
    assert "1 warning event(s) recorded" in output.getvalue()


def test_malformed_config_is_fatal(tmp_path, console, output):
    config_file = tmp_path / "lab.yaml"
    config_file.write_text("generators: [\n", encoding="utf-8")

    code = cli.main(["--config", str(config_file), "delete-state", "--yes"], console=console)

    assert code == 1
    assert "is not valid YAML" in output.getvalue()


def test_policies_requires_azure_cli(monkeypatch, console, output, lab_config):
    monkeypatch.setattr("zero_trust_lab.commands.shutil.which", lambda name: None)

    code = cli.main(["policies"], console=console, context_factory=fake_context(lab_config, FakeRunner()))

    assert code == 1
    assert "az is not installed" in output.getvalue()


def test_orphans_without_azure_cli_is_only_a_warning(console, output, lab_config):
    runner = FakeRunner(binaries=("terraform",))

    code = cli.main(["orphans", "--yes"], console=console, context_factory=fake_context(lab_config, runner))

    assert code == 0
    assert "Azure CLI not found" in output.getvalue()
    assert runner.calls == []


class FakeConfidentialApp:
    def __init__(self, client_id, client_credential, authority, token_cache):
        pass

    def acquire_token_for_client(self, scopes):
        return {"access_token": "token", "expires_in": 3600}


@pytest.fixture
def service_principal(monkeypatch):
    for name in ("ARM_CLIENT_ID", "ARM_CLIENT_SECRET", "ARM_TENANT_ID", "ARM_SUBSCRIPTION_ID"):
        monkeypatch.setenv(name, f"{name.lower()}-value")
    monkeypatch.setattr("zero_trust_lab.auth.msal.ConfidentialClientApplication", FakeConfidentialApp)


def test_users_create_generates_password_and_reports_tally(service_principal, tmp_path, console, output):
    csv_path = tmp_path / "users.csv"
    csv_path.write_text(
        "Alice,alice,alice@lab.test\nBob,bob,bob@lab.test\nbroken,row\n",
        encoding="utf-8",
    )
    bodies = []

    def handler(request):
        body = json.loads(request.content)
        bodies.append(body)
        if body["mailNickname"] == "bob":
            return httpx.Response(400, json={"error": {"message": "Password does not meet complexity"}})
        return httpx.Response(201, json={"id": "new"})

    session = httpx.Client(transport=httpx.MockTransport(handler))

    code = cli.main(
        ["users", "create", "--csv", str(csv_path)],
        console=console,
        context_factory=fake_context(LabConfig(root=tmp_path), FakeRunner(), graph_session=session),
    )

    text = output.getvalue()
    assert code == 0
    assert "generated initial password" in text
    assert len(bodies) == 2
    assert bodies[0]["passwordProfile"]["password"] in text
    assert "User creation: 1 succeeded, 1 failed, 0 skipped, 1 invalid row(s) ignored" in text
    assert session.is_closed


def test_users_delete_counts_missing_users_as_skipped(service_principal, tmp_path, console, output):
    csv_path = tmp_path / "users.csv"
    csv_path.write_text("Alice,alice,alice@lab.test\nBob,bob,bob@lab.test\n", encoding="utf-8")
    deleted = []

    def handler(request):
        deleted.append(request.url.path)
        if request.url.path.endswith("bob@lab.test"):
            return httpx.Response(404, json={"error": {"code": "Request_ResourceNotFound"}})
        return httpx.Response(204)

    session = httpx.Client(transport=httpx.MockTransport(handler))

    code = cli.main(
        ["users", "delete", "--csv", str(csv_path)],
        prompt=ScriptedPrompt("DELETE"),
        console=console,
        context_factory=fake_context(LabConfig(root=tmp_path), FakeRunner(), graph_session=session),
    )

    assert code == 0
    assert sorted(deleted) == ["/v1.0/users/alice@lab.test", "/v1.0/users/bob@lab.test"]
    assert "User deletion: 1 succeeded, 0 failed, 1 skipped, 0 invalid row(s) ignored" in output.getvalue()
    assert session.is_closed


def test_zero_throttle_is_rejected(service_principal, tmp_path, console, output):
    csv_path = tmp_path / "users.csv"
    csv_path.write_text("Alice,alice,alice@lab.test\n", encoding="utf-8")
    session = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(201, json={})))

    code = cli.main(
        ["users", "create", "--csv", str(csv_path), "--throttle", "0"],
        console=console,
        context_factory=fake_context(LabConfig(root=tmp_path), FakeRunner(), graph_session=session),
    )

    assert code == 1
    assert "throttle_limit must be at least 1" in output.getvalue()
