from backend.scripts import migrate


def test_repo_ships_init_migration_and_seed():
    names = [name for name, _ in migrate.pending_files(set(), include_seeds=True)]
    assert names[0] == "001_init.sql"
    assert "seeds/001_seed.sql" in names


def test_pending_skips_applied_and_orders_by_name(tmp_path, monkeypatch):
    mig = tmp_path / "migrations"
    seeds = tmp_path / "seeds"
    mig.mkdir()
    seeds.mkdir()
    for n in ("002_b.sql", "001_a.sql", "notes.txt"):
        (mig / n).write_text("SELECT 1;")
    (seeds / "001_demo.sql").write_text("SELECT 1;")
    monkeypatch.setattr(migrate, "MIGRATIONS_DIR", mig)
    monkeypatch.setattr(migrate, "SEEDS_DIR", seeds)

    assert [n for n, _ in migrate.pending_files({"001_a.sql"}, include_seeds=False)] == ["002_b.sql"]
    assert [n for n, _ in migrate.pending_files(set(), include_seeds=True)] == [
        "001_a.sql",
        "002_b.sql",
        "seeds/001_demo.sql",
    ]
