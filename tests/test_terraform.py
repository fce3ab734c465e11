import json

from zero_trust_lab.terraform import TerraformWorkspace


def _state(*resources):
    return json.dumps({"version": 4, "resources": list(resources)})


def test_configuration_and_state_detection(tmp_path, runner):
    workspace = TerraformWorkspace("storage", tmp_path / "storage", runner)
    assert not workspace.exists()
    assert not workspace.has_configuration()

    workspace.path.mkdir()
    assert workspace.exists()
    assert not workspace.has_configuration()

    (workspace.path / "main.tf").write_text("", encoding="utf-8")
    assert workspace.has_configuration()
    assert not workspace.has_state()

    (workspace.path / "terraform.tfstate").write_text("{}", encoding="utf-8")
    assert workspace.has_state()


def test_commands_run_inside_generator_directory(tmp_path, runner):
    workspace = TerraformWorkspace("azure_ad", tmp_path, runner)

    workspace.init()
    workspace.plan()
    workspace.apply()
    workspace.destroy()

    assert runner.calls == [
        ["terraform", "init", "-input=false"],
        ["terraform", "plan", "-input=false", "-out=tfplan"],
        ["terraform", "apply", "-input=false", "-auto-approve"],
        ["terraform", "destroy", "-input=false", "-auto-approve"],
    ]
    assert set(runner.cwds) == {tmp_path}


def test_tracked_resource_groups_reads_local_state(tmp_path, runner):
    (tmp_path / "terraform.tfstate").write_text(
        _state(
            {
                "type": "azurerm_resource_group",
                "instances": [{"attributes": {"name": "PurpleCloud-Storage"}}],
            },
            {
                "type": "azurerm_storage_account",
                "instances": [
                    {"attributes": {"name": "purplecloudsa", "resource_group_name": "ZeroTrust-Data"}}
                ],
            },
            {"type": "azuread_user", "instances": [{"attributes": {"display_name": "Lab User"}}]},
        ),
        encoding="utf-8",
    )

    workspace = TerraformWorkspace("storage", tmp_path, runner)

    assert workspace.tracked_resource_groups() == {"PurpleCloud-Storage", "ZeroTrust-Data"}


def test_tracked_resource_groups_tolerates_missing_or_corrupt_state(tmp_path, runner):
    workspace = TerraformWorkspace("storage", tmp_path, runner)
    assert workspace.tracked_resource_groups() == set()

    (tmp_path / "terraform.tfstate").write_text("{not json", encoding="utf-8")
    assert workspace.tracked_resource_groups() == set()


def test_clean_state_removes_state_caches_and_plans(tmp_path, runner):
    (tmp_path / "main.tf").write_text("", encoding="utf-8")
    (tmp_path / "terraform.tfstate").write_text("{}", encoding="utf-8")
    (tmp_path / "terraform.tfstate.backup").write_text("{}", encoding="utf-8")
    (tmp_path / "tfplan").write_text("", encoding="utf-8")
    (tmp_path / "apply.tfplan").write_text("", encoding="utf-8")
    providers = tmp_path / ".terraform" / "providers"
    providers.mkdir(parents=True)
    (providers / "azurerm").write_text("", encoding="utf-8")

    removed = TerraformWorkspace("storage", tmp_path, runner).clean_state()

    assert sorted(p.name for p in tmp_path.iterdir()) == ["main.tf"]
    assert tmp_path / ".terraform" in removed
    assert tmp_path / "terraform.tfstate.backup" in removed


def test_clean_state_on_missing_directory(tmp_path, runner):
    assert TerraformWorkspace("storage", tmp_path / "absent", runner).clean_state() == []
