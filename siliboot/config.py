# siliboot/config.py — rutas del repositorio, perfil de VM y marcadores de consola

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from .errors import EnvironmentFailure

# ══════════════════════════════════════════════════════════════════════════════
# RUTAS
# ══════════════════════════════════════════════════════════════════════════════
TARGET_ARCH   = "x86_64"
KERNEL_NAME   = "silicium"
# Orden de prioridad en empates de mtime: el primero gana
PROFILES      = ("release", "debug")


@dataclass(frozen=True)
class Layout:
    root: Path

    @property
    def target(self) -> Path:
        return self.root / "target" / TARGET_ARCH

    def artifact(self, profile: str) -> Path:
        return self.target / profile / KERNEL_NAME

    @property
    def limine_src(self) -> Path:
        return self.root / "bin" / "src" / "limine"

    @property
    def image(self) -> Path:
        return self.root / "bin" / f"{KERNEL_NAME}.iso"

    @property
    def build(self) -> Path:
        return self.root / "bin" / "build"

    @property
    def logs(self) -> Path:
        return self.root / "bin" / "logs"

    @property
    def build_log(self) -> Path:
        return self.logs / "build.log"

    @property
    def serial_log(self) -> Path:
        return self.logs / "serial.log"

    @property
    def debug_log(self) -> Path:
        return self.logs / "debug.log"


def ensure_repo_root(root) -> Layout:
    root = Path(root).resolve()
    if not (root / "README.md").exists():
        raise EnvironmentFailure(
            str(root), "debe ejecutarse desde la raíz del repositorio (falta README.md)")
    return Layout(root)

# ══════════════════════════════════════════════════════════════════════════════
# VM
# ══════════════════════════════════════════════════════════════════════════════
FIRMWARES = ("bios", "uefi")


@dataclass(frozen=True)
class VmProfile:
    memory_mb: int = 128
    cores: int = 4
    firmware: str = "bios"
    headless: bool = True
    trace: bool = False

    def __post_init__(self):
        if self.firmware not in FIRMWARES:
            raise ValueError(f"firmware desconocido: {self.firmware!r}")

# ══════════════════════════════════════════════════════════════════════════════
# MARCADORES
# ══════════════════════════════════════════════════════════════════════════════
# El kernel colorea los prefijos de nivel ("\x1b[1m\x1b[31m[!]\x1b[0m")
ANSI_RE = re.compile(r'\x1b\[[0-9;?]*[A-Za-z]')


def strip_ansi(line: str) -> str:
    return ANSI_RE.sub('', line)


@dataclass(frozen=True)
class Markers:
    passed: tuple = ("[TEST] PASS",)
    failed: tuple = ("[TEST] FAIL", "panicked at")
    # el kernel congela la CPU después de esta línea; el banner de arranque
    # no cuenta, los tests se ejecutan después
    halted: tuple = ("System halted",)

    def verdict(self, line: str) -> str | None:
        """'pass' / 'fail' si la línea lleva un marcador de veredicto."""
        text = strip_ansi(line)
        if any(m in text for m in self.failed):
            return "fail"
        if any(m in text for m in self.passed):
            return "pass"
        return None

    def is_terminal(self, line: str) -> bool:
        text = strip_ansi(line)
        return self.verdict(text) is not None or any(m in text for m in self.halted)

# ══════════════════════════════════════════════════════════════════════════════
# CONFIG COMPLETA
# ══════════════════════════════════════════════════════════════════════════════

@dataclass
class HarnessConfig:
    layout: Layout
    vm: VmProfile = field(default_factory=VmProfile)
    markers: Markers = field(default_factory=Markers)
    profiles: tuple = PROFILES
    strategy: str = "most-recent-wins"
    timeout: float = 60.0
    keep_staging: bool = False
    echo: bool = True

    @classmethod
    def from_root(cls, root=None, **overrides) -> "HarnessConfig":
        root = root if root is not None else os.environ.get("SILIBOOT_ROOT", os.getcwd())
        return cls(layout=ensure_repo_root(root), **overrides)
