import os
import struct
import sys
import textwrap
from pathlib import Path

import pytest

from siliboot import common, iso
from siliboot.config import HarnessConfig, Layout
from siliboot.errors import CommandFailed

ISECT = 2048
BOOT_CODE = b'\xfa\x31\xc0\x8e\xd8\x8e\xc0\x8e\xd0\xbc\x00\x7c'


def _hybrid_image(boot_code=True, legacy=True, efi=True, sectors=32) -> bytes:
    buf = bytearray(sectors * ISECT)
    if boot_code:
        buf[0:len(BOOT_CODE)] = BOOT_CODE
    buf[0x1BE + 4] = 0xcd
    if efi:
        buf[0x1BE + 16 + 4] = 0xef
    buf[0x1FE:0x200] = b'\x55\xAA'

    pvd = 16 * ISECT
    buf[pvd] = 1
    buf[pvd + 1:pvd + 6] = b'CD001'
    buf[pvd + 6] = 1
    struct.pack_into('<I', buf, pvd + 80, sectors)
    struct.pack_into('>I', buf, pvd + 84, sectors)

    brd = 17 * ISECT
    buf[brd + 1:brd + 6] = b'CD001'
    buf[brd + 6] = 1
    buf[brd + 7:brd + 30] = b'EL TORITO SPECIFICATION'
    struct.pack_into('<I', buf, brd + 71, 19)

    term = 18 * ISECT
    buf[term] = 0xFF
    buf[term + 1:term + 6] = b'CD001'

    cat = 19 * ISECT
    buf[cat] = 0x01
    buf[cat + 1] = 0x00 if legacy else 0xEF
    buf[cat + 30:cat + 32] = b'\x55\xAA'
    buf[cat + 32] = 0x88
    if efi and legacy:
        buf[cat + 64] = 0x91
        buf[cat + 65] = 0xEF
        struct.pack_into('<H', buf, cat + 66, 1)
        buf[cat + 96] = 0x88
    return bytes(buf)


@pytest.fixture
def hybrid_image():
    """Fabrica bytes de una ISO híbrida mínima (MBR + PVD + El Torito)."""
    return _hybrid_image


@pytest.fixture(autouse=True)
def _no_build_log():
    common.set_log_file(None)
    yield
    common.set_log_file(None)


@pytest.fixture
def repo(tmp_path) -> Layout:
    """Repositorio falso con Limine y limine.cfg en su sitio."""
    (tmp_path / "README.md").write_text("# silicium\n")
    limine = tmp_path / "bin" / "src" / "limine"
    limine.mkdir(parents=True)
    (limine / "limine-cd-efi.bin").write_bytes(b"EFI-STAGE" * 64)
    (limine / "limine-cd.bin").write_bytes(b"CD-STAGE" * 64)
    (limine / "limine.sys").write_bytes(b"LIMINE-SYS" * 64)
    cfg = tmp_path / "iso" / "boot"
    cfg.mkdir(parents=True)
    (cfg / "limine.cfg").write_text(
        "TIMEOUT=0\n:Silicium\nPROTOCOL=limine\nKERNEL_PATH=boot:///boot/silicium.elf\n")
    return Layout(tmp_path)


@pytest.fixture
def make_kernel(repo):
    def _make(profile: str, mtime: float, payload: bytes | None = None) -> Path:
        path = repo.artifact(profile)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload or f"\x7fELF-{profile}".encode())
        os.utime(path, (mtime, mtime))
        return path
    return _make


@pytest.fixture
def config(repo) -> HarnessConfig:
    return HarnessConfig(layout=repo, timeout=10.0, echo=False)


class FakeTools:
    """Sustituye xorriso / limine-deploy: escribe y parchea una ISO sintética."""

    def __init__(self):
        self.calls = []
        self.fail_step = None
        self.deploy_patches = True
        self.staged = None

    def __call__(self, cmd, **kwargs):
        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        tool = cmd[0]
        if tool == "xorriso":
            if self.fail_step == "master":
                raise CommandFailed(cmd, 32)
            staging = Path(cmd[cmd.index("-o") - 1])
            self.staged = sorted(p.relative_to(staging).as_posix()
                                 for p in staging.rglob("*") if p.is_file())
            Path(cmd[cmd.index("-o") + 1]).write_bytes(_hybrid_image(boot_code=False))
        elif tool == "limine-deploy":
            if self.fail_step == "deploy":
                raise CommandFailed(cmd, 1)
            if self.deploy_patches:
                with open(cmd[1], "r+b") as f:
                    f.write(BOOT_CODE)
        return None


@pytest.fixture
def fake_tools(monkeypatch) -> FakeTools:
    tools = FakeTools()
    monkeypatch.setattr(iso, "run", tools)
    monkeypatch.setattr(iso, "require_tool", lambda key: key)
    return tools


@pytest.fixture
def emulator():
    """Línea de comandos de un 'emulador' Python que imprime por la consola serie."""
    def _cmd(body: str) -> list:
        return [sys.executable, "-u", "-c", textwrap.dedent(body)]
    return _cmd
