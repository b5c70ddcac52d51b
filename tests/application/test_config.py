from sprout.application.config import resolve_config


def test_defaults_follow_vault(mock_home, mock_vault):
    config = resolve_config({"root_input": mock_vault})
    assert config.vault_root == mock_vault.resolve()
    assert config.data_file == mock_vault.resolve() / ".sprout" / "data.json"
    assert config.backup_dir == config.data_file.parent / "backups"
    assert config.port == 8777


def test_single_file_input_uses_parent_as_vault(mock_home, mock_vault):
    note = mock_vault / "note.md"
    note.write_text("Q|q|\nA|a|\n")
    config = resolve_config({"root_input": note})
    assert config.vault_root == mock_vault.resolve()
    assert config.root_input == note.resolve()


def test_configured_vault_kept_for_nested_file(mock_home, mock_vault):
    sub = mock_vault / "sub"
    sub.mkdir()
    note = sub / "n.md"
    note.write_text("")
    config = resolve_config({"vault_root": mock_vault, "root_input": note})
    assert config.vault_root == mock_vault.resolve()


def test_none_overrides_are_ignored(mock_home, mock_vault, monkeypatch):
    monkeypatch.setenv("SPROUT_MAX_BACKUPS", "4")
    config = resolve_config({"root_input": mock_vault, "max_backups": None})
    assert config.max_backups == 4


def test_env_beats_toml_and_cli_beats_env(mock_home, mock_vault, monkeypatch):
    cfg_dir = mock_home / ".config" / "sprout"
    cfg_dir.mkdir(parents=True)
    (cfg_dir / "config.toml").write_text(f'vault_root = "{mock_vault}"\nport = 9001\nmax_backups = 3\n')
    monkeypatch.setenv("SPROUT_PORT", "9002")

    config = resolve_config({"max_backups": 7})

    assert config.vault_root == mock_vault.resolve()
    assert config.root_input == mock_vault.resolve()
    assert config.port == 9002
    assert config.max_backups == 7


def test_explicit_data_file(mock_home, mock_vault, tmp_path):
    data = tmp_path / "elsewhere" / "sprout.json"
    config = resolve_config({"root_input": mock_vault, "data_file": data})
    assert config.data_file == data.resolve()
    assert config.backup_dir == data.resolve().parent / "backups"
