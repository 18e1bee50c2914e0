import pytest

from siliboot import cli
from siliboot.orchestrator import EXIT_FATAL, TestRunResult, Verdict

T = 1_700_000_000.0


@pytest.fixture
def parser():
    return cli.build_parser()


def test_test_mode_defaults_to_all(parser):
    args = parser.parse_args(["test"])
    assert args.mode == "all"
    assert args.memory == 128
    assert args.smp == 4
    assert not args.uefi


def test_unknown_mode_rejected(parser):
    with pytest.raises(SystemExit):
        parser.parse_args(["test", "arm64"])


def test_not_repo_root_is_fatal(tmp_path):
    assert cli.main(["--root", str(tmp_path), "build-iso"]) == EXIT_FATAL


def test_build_iso_without_kernel_is_fatal(repo):
    assert cli.main(["--root", str(repo.root), "build-iso"]) == EXIT_FATAL
    assert "MissingArtifact" in repo.build_log.read_text()


def test_build_iso(repo, make_kernel, fake_tools):
    make_kernel("release", T)
    assert cli.main(["--root", str(repo.root), "build-iso"]) == 0
    assert repo.image.exists()
    assert "=== CREANDO ISO ===" in repo.build_log.read_text()


@pytest.mark.parametrize("verdict,code", [
    (Verdict.PASS, 0),
    (Verdict.FAIL, 1),
    (Verdict.INFRA_ERROR, 2),
])
def test_emulated_exit_codes(repo, monkeypatch, verdict, code):
    monkeypatch.setattr(cli, "run_emulated", lambda cfg: TestRunResult("emulated", verdict))
    assert cli.main(["--root", str(repo.root), "test", "emulated"]) == code


def test_all_skips_native_on_foreign_host(repo, monkeypatch):
    from siliboot import orchestrator
    monkeypatch.setattr(orchestrator.platform, "machine", lambda: "aarch64")
    monkeypatch.setattr(cli, "run_emulated", lambda cfg: TestRunResult("emulated", Verdict.PASS))
    assert cli.main(["--root", str(repo.root), "test", "all"]) == 0
    assert "tests nativos omitidos" in repo.build_log.read_text()


def test_all_reports_worst_code(repo, monkeypatch):
    monkeypatch.setattr(cli, "run_native", lambda cfg: TestRunResult("native", Verdict.FAIL))
    monkeypatch.setattr(cli, "run_emulated",
                        lambda cfg: TestRunResult("emulated", Verdict.INFRA_ERROR))
    assert cli.main(["--root", str(repo.root), "test"]) == 2


def test_check_reports_missing_tools(monkeypatch, tmp_path):
    for var in ("SILIBOOT_QEMU", "SILIBOOT_XORRISO", "SILIBOOT_LIMINE_DEPLOY", "SILIBOOT_CARGO"):
        monkeypatch.setenv(var, str(tmp_path / "missing"))
    assert cli.main(["check"]) == EXIT_FATAL


def test_inspect_image(tmp_path, hybrid_image, capsys):
    img = tmp_path / "silicium.iso"
    img.write_bytes(hybrid_image())
    assert cli.main(["inspect", str(img)]) == 0
    out = capsys.readouterr().out
    assert "Arranque EFI       ✓" in out


def test_inspect_unpatched_image(tmp_path, hybrid_image):
    img = tmp_path / "silicium.iso"
    img.write_bytes(hybrid_image(boot_code=False))
    assert cli.main(["inspect", str(img)]) == 1


def test_diagnose(tmp_path, capsys):
    log = tmp_path / "debug.log"
    log.write_text("check_exception old: 0xffffffff new 0x8\nTriple fault\n")
    assert cli.main(["diagnose", str(log)]) == 1
    assert "TRIPLE FAULT" in capsys.readouterr().out


def test_clean(repo, make_kernel, fake_tools):
    make_kernel("debug", T)
    cli.main(["--root", str(repo.root), "build-iso"])
    assert cli.main(["--root", str(repo.root), "clean"]) == 0
    assert not repo.image.exists()
