from fedreceiver import config


def test_load_config__defaults(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(config, "ROOT_DIR", tmp_path)

    loaded = config.load_config()

    assert loaded == config.Config()
    assert loaded.ap_log_unknown is False
    assert loaded.max_fetches_per_delivery == 12


def test_load_config(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(config, "ROOT_DIR", tmp_path)
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "fedreceiver.toml").write_text(
        "\n".join(
            [
                "ap_log_unknown = true",
                'unhandled_activities_dir = "/var/lib/fedreceiver/samples"',
                "inbox_workers = 2",
                "",
                "[[blocked_servers]]",
                'hostname = "spam.example"',
                'reason = "spam"',
            ]
        )
    )

    loaded = config.load_config()

    assert loaded.ap_log_unknown is True
    assert loaded.unhandled_activities_dir == "/var/lib/fedreceiver/samples"
    assert loaded.inbox_workers == 2
    assert [server.hostname for server in loaded.blocked_servers] == [
        "spam.example"
    ]
