from spreadbot.config.settings import Settings, load_settings


def test_defaults_are_dry_run(monkeypatch) -> None:
    for name in ("DRY_RUN", "BOT_PROFILE", "STORE_BACKEND", "TICK_INTERVAL_SEC", "POLY_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    s = load_settings(env_file=None)
    assert isinstance(s, Settings)
    assert s.dry_run is True
    assert s.profile == "b5-5m"
    assert s.store_backend == "local"
    assert s.tick_interval_sec == 1.0
    assert not s.has_api_creds


def test_env_overrides_and_floors(monkeypatch) -> None:
    monkeypatch.setenv("DRY_RUN", "false")
    monkeypatch.setenv("BOT_PROFILE", " B4-5M ")
    monkeypatch.setenv("TICK_INTERVAL_SEC", "0.01")
    monkeypatch.setenv("STATUS_EVERY_TICKS", "0")
    monkeypatch.setenv("RESOLUTION_MODE", "Venue")
    monkeypatch.setenv("POLY_API_KEY", "k")
    monkeypatch.setenv("POLY_API_SECRET", "s")
    monkeypatch.setenv("POLY_API_PASSPHRASE", "p")
    s = load_settings(env_file=None)
    assert s.dry_run is False
    assert s.profile == "b4-5m"
    assert s.tick_interval_sec == 0.2
    assert s.status_every_ticks == 1
    assert s.resolution_mode == "venue"
    assert s.has_api_creds


def test_env_file_is_loaded(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("BANKROLL", "0")
    monkeypatch.delenv("BANKROLL")
    env = tmp_path / "bot.env"
    env.write_text("BANKROLL=250\n")
    s = load_settings(env_file=str(env))
    assert s.bankroll == 250.0
